"""Tests for the convert and formats commands."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from convertkit import __version__
from convertkit.cli.commands.convert import _resolve_category, _worker_kinds
from convertkit.cli.main import app
from convertkit.core.categories import Category


class TestAppOptions:
    """Tests for top-level options."""

    def test_version(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["-h"])

        assert result.exit_code == 0
        for command in ("convert", "batch", "formats"):
            assert command in result.output


class TestFormatsCommand:
    """Tests for the formats command."""

    def test_lists_categories(self, cli_runner: CliRunner, isolated_settings) -> None:  # noqa: ARG002
        result = cli_runner.invoke(app, ["formats"])

        assert result.exit_code == 0
        for category in Category:
            assert category.value in result.output

    def test_limits_come_from_config(self, cli_runner: CliRunner, isolated_settings: Path) -> None:
        (isolated_settings / "convertkit.yaml").write_text("limits:\n  image_mb: 3\n")

        result = cli_runner.invoke(app, ["formats"])

        assert "3 MB" in result.output


class TestConvertCommand:
    """Tests for the convert command."""

    def test_text_to_html(self, cli_runner: CliRunner, isolated_settings: Path) -> None:
        """Test that a direct document transform writes the output file."""
        source = isolated_settings / "notes.txt"
        source.write_text("First line\nSecond line\n", encoding="utf-8")
        out_dir = isolated_settings / "out"

        result = cli_runner.invoke(app, ["convert", str(source), "--to", "html", "-o", str(out_dir)])

        assert result.exit_code == 0, result.output
        assert "Converted" in result.output
        html = (out_dir / "notes.html").read_text(encoding="utf-8")
        assert "<p>First line</p>" in html

    def test_rename_on_conflict(self, cli_runner: CliRunner, isolated_settings: Path) -> None:
        source = isolated_settings / "notes.md"
        source.write_text("# Notes\n", encoding="utf-8")
        out_dir = isolated_settings / "out"
        out_dir.mkdir()
        (out_dir / "notes.txt").write_text("older")

        result = cli_runner.invoke(app, ["convert", str(source), "-t", "txt", "-o", str(out_dir)])

        assert result.exit_code == 0, result.output
        assert (out_dir / "notes.txt").read_text() == "older"
        assert (out_dir / "notes_1.txt").read_text(encoding="utf-8") == "Notes\n"

    def test_default_output_dir(self, cli_runner: CliRunner, isolated_settings: Path) -> None:
        source = isolated_settings / "readme.md"
        source.write_text("plain", encoding="utf-8")

        result = cli_runner.invoke(app, ["convert", str(source), "--to", "txt"])

        assert result.exit_code == 0, result.output
        assert (isolated_settings / "output" / "readme.txt").exists()

    def test_unknown_category(self, cli_runner: CliRunner, isolated_settings: Path) -> None:
        source = isolated_settings / "data.xyz"
        source.write_bytes(b"123")

        result = cli_runner.invoke(app, ["convert", str(source), "--to", "png"])

        assert result.exit_code == 1
        assert "Cannot tell the category" in result.output

    def test_target_required(self, cli_runner: CliRunner, isolated_settings: Path) -> None:
        source = isolated_settings / "photo.png"
        source.write_bytes(b"png")

        result = cli_runner.invoke(app, ["convert", str(source)])

        assert result.exit_code == 1
        assert "--to is required" in result.output

    def test_validation_error_reported(self, cli_runner: CliRunner, isolated_settings: Path) -> None:
        """Test that a rejected request exits 1 with a readable message."""
        source = isolated_settings / "notes.txt"
        source.write_text("x")

        result = cli_runner.invoke(app, ["convert", str(source), "--to", "docx", "-c", "document"])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_invalid_category_option(self, cli_runner: CliRunner, isolated_settings: Path) -> None:
        source = isolated_settings / "notes.txt"
        source.write_text("x")

        result = cli_runner.invoke(app, ["convert", str(source), "-c", "spreadsheet"])

        assert result.exit_code != 0


class TestHelpers:
    """Tests for convert command helpers."""

    def test_resolve_category_prefers_option(self) -> None:
        assert _resolve_category(Path("app.js"), None, "minify") is Category.MINIFY

    def test_resolve_category_guesses(self) -> None:
        assert _resolve_category(Path("clip.mp4"), "gif", None) is Category.VIDEO
        assert _resolve_category(Path("song.wav"), "mp3", None) is Category.AUDIO
        assert _resolve_category(Path("a.js"), None, None) is None

    def test_worker_kinds(self) -> None:
        assert _worker_kinds(Category.IMAGE, "png", "webp") == ["image"]
        assert _worker_kinds(Category.DOCUMENT, "pdf", "md") == ["document"]
        assert _worker_kinds(Category.DOCUMENT, "txt", "html") == []
        assert _worker_kinds(Category.AUDIO, "wav", "mp3") == []
        assert _worker_kinds(Category.MINIFY, "js", "js") == ["minify"]
