"""Tests for convertkit.utils.fs module."""

from __future__ import annotations

import pytest

from convertkit.utils.fs import (
    canonical_format,
    file_extension,
    format_size,
    get_unique_path,
    insert_marker,
    mime_type_for,
    replace_extension,
    resolve_output_path,
    safe_filename,
    write_bytes_atomic,
)


class TestFormatNames:
    """Tests for extension and format helpers."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("photo.PNG", "png"), ("archive.tar.gz", "gz"), ("Makefile", ""), (".bashrc", "")],
    )
    def test_file_extension(self, name, expected):
        assert file_extension(name) == expected

    def test_canonical_format_resolves_aliases(self):
        """Test that dots and case are dropped and aliases resolved."""
        assert canonical_format(".JPEG") == "jpg"
        assert canonical_format("htm") == "html"
        assert canonical_format("webp") == "webp"

    def test_mime_type_for(self):
        assert mime_type_for("png") == "image/png"
        assert mime_type_for(".MD") == "text/markdown"
        assert mime_type_for("xyz") == "application/octet-stream"
        assert mime_type_for("xyz", "image") == "image/xyz"

    def test_replace_extension(self):
        assert replace_extension("photo.png", "webp") == "photo.webp"
        assert replace_extension("my.photo.png", "gif") == "my.photo.gif"
        assert replace_extension("README", "txt") == "README.txt"

    def test_insert_marker(self):
        assert insert_marker("app.js", ".min") == "app.min.js"
        assert insert_marker("Makefile", ".min") == "Makefile.min"
        assert insert_marker(".env", ".min") == ".env.min"


class TestSafeFilename:
    """Tests for safe_filename function."""

    def test_replaces_separators(self):
        """Test that path separators and reserved characters are replaced."""
        assert safe_filename('a/b\\c:d*e?"f<g>h|i') == "a_b_c_d_e__f_g_h_i"

    def test_strips_dots_and_spaces(self):
        assert safe_filename("  ..hidden.txt. ") == "hidden.txt"

    def test_truncates_keeping_extension(self):
        result = safe_filename("x" * 300 + ".webp", max_length=20)
        assert len(result) == 20
        assert result.endswith(".webp")

    def test_empty_becomes_unnamed(self):
        assert safe_filename("...") == "unnamed"


class TestOutputPaths:
    """Tests for output path resolution."""

    def test_unique_path_counter(self, tmp_path):
        (tmp_path / "a.png").write_bytes(b"1")
        (tmp_path / "a_1.png").write_bytes(b"2")

        assert get_unique_path(tmp_path / "a.png") == tmp_path / "a_2.png"
        assert get_unique_path(tmp_path / "b.png") == tmp_path / "b.png"

    @pytest.mark.parametrize(
        ("on_conflict", "expected"),
        [("rename", "out_1.webp"), ("overwrite", "out.webp"), ("skip", None)],
    )
    def test_conflict_policies(self, tmp_path, on_conflict, expected):
        (tmp_path / "out.webp").write_bytes(b"old")

        result = resolve_output_path(tmp_path, "out.webp", on_conflict)

        assert result == (tmp_path / expected if expected else None)

    def test_free_name_returned_as_is(self, tmp_path):
        assert resolve_output_path(tmp_path, "new.gif", "skip") == tmp_path / "new.gif"

    def test_write_bytes_atomic(self, tmp_path):
        """Test that parents are created and no temp file is left behind."""
        target = tmp_path / "nested" / "dir" / "out.bin"

        write_bytes_atomic(target, b"payload")
        write_bytes_atomic(target, b"second")

        assert target.read_bytes() == b"second"
        assert [p.name for p in target.parent.iterdir()] == ["out.bin"]


class TestFormatSize:
    """Tests for format_size function."""

    @pytest.mark.parametrize(
        ("size", "expected"),
        [(0, "0.0 B"), (512, "512.0 B"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5.0 MB")],
    )
    def test_units(self, size, expected):
        assert format_size(size) == expected
