"""Tests for document conversions."""

import pytest

from convertkit.backends.document import (
    DEFAULT_DOCUMENT_TITLE,
    DocumentBackend,
    html_to_text,
    markdown_to_html,
    text_to_html,
    wrap_html,
)
from convertkit.exceptions import BackendError


@pytest.fixture
def backend() -> DocumentBackend:
    return DocumentBackend()


@pytest.fixture
def sample_pdf(backend) -> bytes:
    """A two-section PDF laid out from HTML."""
    return backend.render_pdf(
        wrap_html("<p>First paragraph of the report.</p><p>Second paragraph.</p>")
    )


class TestHelpers:
    """Tests for the text helpers."""

    def test_text_to_html_one_paragraph_per_line(self):
        assert text_to_html("a < b\n\nsecond\n") == "<p>a &lt; b</p>\n<p>second</p>"

    def test_html_to_text_drops_scripts(self):
        markup = "<html><head><style>p{}</style></head><body><h1>Title</h1>"
        markup += "<script>alert(1)</script><p>Body &amp; more</p></body></html>"

        assert html_to_text(markup) == "Title\n\nBody & more\n"

    def test_html_to_text_keeps_inline_runs(self):
        assert html_to_text("<p>Some <b>bold</b> text<br>next line</p>") == (
            "Some bold text\nnext line\n"
        )

    def test_markdown_to_html(self):
        out = markdown_to_html("# Heading\n\nSome *text*.")
        assert "<h1>Heading</h1>" in out
        assert "<em>text</em>" in out

    def test_wrap_html_escapes_title(self):
        out = wrap_html("<p>x</p>", title="A & B")
        assert "<title>A &amp; B</title>" in out
        assert out.startswith("<!DOCTYPE html>")


class TestTextConversions:
    """Tests for conversions between txt, md and html."""

    def test_txt_to_md_is_verbatim(self, backend):
        assert backend.convert(b"plain text\n", "txt", "md") == b"plain text\n"

    def test_txt_to_html(self, backend):
        out = backend.convert(b"Hello\r\nWorld", "txt", "html").decode()
        assert "<p>Hello</p>\n<p>World</p>" in out

    def test_md_to_txt(self, backend):
        out = backend.convert(b"# Title\n\nSome **bold** text.", "md", "txt").decode()
        assert out == "Title\n\nSome bold text.\n"

    def test_md_to_html(self, backend):
        out = backend.convert(b"- one\n- two", "md", "html").decode()
        assert "<li>one</li>" in out

    def test_html_to_txt(self, backend):
        assert backend.convert(b"<p>One</p><p>Two</p>", "html", "txt") == b"One\n\nTwo\n"

    def test_html_to_md(self, backend):
        out = backend.convert(b"<h1>Title</h1><p>Some <b>bold</b> text</p>", "html", "md").decode()
        assert "# Title" in out
        assert "**bold**" in out

    def test_identical_formats_rejected(self, backend):
        with pytest.raises(BackendError, match="Unsupported document conversion"):
            backend.convert(b"x", "txt", "txt")

    def test_progress_reported(self, backend):
        seen: list[int] = []
        backend.convert(b"x", "txt", "html", on_progress=lambda p, m: seen.append(p))
        assert seen == [10, 100]


class TestPdf:
    """Tests for PDF input and output."""

    def test_render_pdf(self, sample_pdf):
        assert sample_pdf.startswith(b"%PDF")

    def test_extract_pages(self, backend, sample_pdf):
        title, pages = backend.extract_pdf_pages(sample_pdf)

        assert title == DEFAULT_DOCUMENT_TITLE
        assert len(pages) == 1
        assert "First paragraph of the report." in pages[0]

    def test_pdf_to_md(self, backend, sample_pdf):
        out = backend.convert(sample_pdf, "pdf", "md").decode()

        assert out.startswith(f"# {DEFAULT_DOCUMENT_TITLE}\n")
        assert "## Page 1" in out
        assert "Second paragraph." in out

    def test_pdf_to_html(self, backend, sample_pdf):
        out = backend.convert(sample_pdf, "pdf", "html").decode()

        assert '<section class="page">' in out
        assert "<h2>Page 1</h2>" in out

    def test_pdf_to_txt(self, backend, sample_pdf):
        out = backend.convert(sample_pdf, "pdf", "txt").decode()
        assert "First paragraph of the report." in out

    def test_txt_to_pdf(self, backend):
        out = backend.convert(b"Line one\nLine two", "txt", "pdf")

        assert out.startswith(b"%PDF")
        _, pages = backend.extract_pdf_pages(out)
        assert "Line one" in pages[0]

    def test_pdf_progress_ends_at_100(self, backend, sample_pdf):
        seen: list[int] = []
        backend.convert(sample_pdf, "pdf", "txt", on_progress=lambda p, m: seen.append(p))

        assert seen[0] == 10
        assert seen[-1] == 100
        assert seen == sorted(seen)

    def test_corrupted_pdf(self, backend):
        with pytest.raises(BackendError, match="corrupted or not a valid PDF file"):
            backend.convert(b"this is not a pdf", "pdf", "txt")
