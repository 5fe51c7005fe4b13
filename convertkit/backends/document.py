"""Document conversions between PDF, plain text, HTML and Markdown.

PDF text is read with PyMuPDF (with optional Tesseract OCR for scanned
pages) and PDFs are written with PyMuPDF's Story layout engine. HTML is
parsed with BeautifulSoup, Markdown is rendered with markdown-it and
HTML is turned back into Markdown with MarkItDown.
"""

from __future__ import annotations

import html
import io
import re
from collections.abc import Mapping
from typing import Any

from bs4 import BeautifulSoup
from markdown_it import MarkdownIt

from convertkit.backends.base import BackendProgress, BaseBackend, report
from convertkit.config.constants import DEFAULT_OCR_LANGUAGE, DOCUMENT_FORMATS
from convertkit.exceptions import BackendError
from convertkit.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_DOCUMENT_TITLE = "Converted PDF Document"

_BLANK_LINES = re.compile(r"\n\s*\n+")

# Elements that start a new line of text
_BLOCK_TAGS = [
    "address", "article", "aside", "blockquote", "dd", "div", "dl", "dt",
    "figcaption", "figure", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "li",
    "ol", "p", "pre", "section", "table", "tr", "ul",
]

_markitdown_instance = None


def _get_markitdown() -> Any:
    """Get or create the shared MarkItDown instance."""
    global _markitdown_instance
    if _markitdown_instance is None:
        from markitdown import MarkItDown

        _markitdown_instance = MarkItDown()
    return _markitdown_instance


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace").replace("\r\n", "\n")


def _paragraphs(text: str) -> list[str]:
    """Split text into paragraphs on blank lines, joining wrapped lines."""
    paragraphs = []
    for block in _BLANK_LINES.split(text.strip()):
        joined = " ".join(line.strip() for line in block.splitlines() if line.strip())
        if joined:
            paragraphs.append(joined)
    return paragraphs


def wrap_html(body: str, title: str = "Document") -> str:
    """Wrap an HTML fragment in a minimal document."""
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>{html.escape(title)}</title>\n"
        "</head>\n<body>\n"
        f"{body}\n"
        "</body>\n</html>\n"
    )


def text_to_html(text: str) -> str:
    """Plain text to HTML, one ``<p>`` per non-empty line."""
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(f"<p>{html.escape(line)}</p>" for line in lines if line)


def html_to_text(markup: str) -> str:
    """Strip tags and decode entities, keeping block structure as line breaks."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript", "template", "title"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")

    lines = [" ".join(line.split()) for line in soup.get_text().splitlines()]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip() + "\n"


def markdown_to_html(text: str) -> str:
    return MarkdownIt("commonmark").render(text)


class DocumentBackend(BaseBackend):
    """Convert between pdf, txt, html and md."""

    name = "document"
    sources = frozenset(DOCUMENT_FORMATS[0])
    targets = frozenset(DOCUMENT_FORMATS[1])

    def __init__(self, ocr_language: str = DEFAULT_OCR_LANGUAGE) -> None:
        self.ocr_language = ocr_language

    def warm_up_ocr(self) -> None:
        """Check that Tesseract language data is available.

        Raises:
            BackendError: If OCR cannot run on this machine
        """
        import pymupdf

        try:
            tessdata = pymupdf.get_tessdata()
        except (RuntimeError, OSError) as e:
            raise BackendError("OCR engine is not available", cause=e) from e
        if not tessdata:
            raise BackendError("OCR engine is not available (Tesseract language data not found)")
        log.debug("OCR engine ready", tessdata=str(tessdata), language=self.ocr_language)

    def convert(
        self,
        data: bytes,
        source_format: str,
        target_format: str,
        options: Mapping[str, Any] | None = None,
        on_progress: BackendProgress | None = None,
    ) -> bytes:
        options = options or {}
        source = source_format.lower()
        target = target_format.lower()
        if not self.supports(source, target) or source == target:
            raise BackendError(f"Unsupported document conversion: {source} to {target}")

        report(on_progress, 10, "Preparing document")

        if source == "pdf":
            title, pages = self.extract_pdf_pages(
                data, use_ocr=bool(options.get("use_ocr", False)), on_progress=on_progress
            )
            output = self._render_pages(pages, title, target)
        else:
            output = self._transform_text(_decode_text(data), source, target)

        if target == "pdf":
            report(on_progress, 80, "Laying out PDF")
            result = self.render_pdf(output)
        else:
            result = output.encode("utf-8")

        report(on_progress, 100)
        return result

    # ------------------------------------------------------------------
    # PDF input
    # ------------------------------------------------------------------

    def extract_pdf_pages(
        self,
        data: bytes,
        use_ocr: bool = False,
        on_progress: BackendProgress | None = None,
    ) -> tuple[str, list[str]]:
        """Extract ``(title, page texts)`` from a PDF."""
        import fitz  # PyMuPDF

        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except RuntimeError as e:
            raise BackendError("The file appears to be corrupted or not a valid PDF file", cause=e) from e
        if len(doc) == 0:
            doc.close()
            raise BackendError("The file appears to be corrupted or not a valid PDF file")

        try:
            report(on_progress, 20, "Document loaded")
            title = (doc.metadata or {}).get("title") or DEFAULT_DOCUMENT_TITLE
            page_count = len(doc)
            pages = []
            for index, page in enumerate(doc, start=1):
                text = page.get_text("text")
                if use_ocr and not text.strip():
                    report(on_progress, 40, f"Running OCR on page {index}")
                    text = self._ocr_page(page)
                pages.append(text)
                report(on_progress, 50 + int(index / page_count * 40))
            return title, pages
        finally:
            doc.close()

    def _ocr_page(self, page: Any) -> str:
        try:
            textpage = page.get_textpage_ocr(language=self.ocr_language, dpi=300, full=True)
        except RuntimeError as e:
            raise BackendError("OCR failed on a scanned page", cause=e) from e
        return page.get_text("text", textpage=textpage)

    def _render_pages(self, pages: list[str], title: str, target: str) -> str:
        if target == "txt":
            return "\n\n".join(page.strip() for page in pages if page.strip()) + "\n"

        if target == "md":
            parts = [f"# {title}\n"]
            for number, page in enumerate(pages, start=1):
                parts.append(f"## Page {number}\n")
                parts.extend(f"{paragraph}\n" for paragraph in _paragraphs(page))
            return "\n".join(parts)

        sections = []
        for number, page in enumerate(pages, start=1):
            body = "\n".join(f"<p>{html.escape(p)}</p>" for p in _paragraphs(page))
            sections.append(f'<section class="page">\n<h2>Page {number}</h2>\n{body}\n</section>')
        document = wrap_html(f"<h1>{html.escape(title)}</h1>\n" + "\n".join(sections), title)
        return document

    # ------------------------------------------------------------------
    # Text input
    # ------------------------------------------------------------------

    def _transform_text(self, text: str, source: str, target: str) -> str:
        """Convert text sources; ``pdf`` targets return HTML for layout."""
        if source == "txt":
            if target == "md":
                return text
            return wrap_html(text_to_html(text))

        if source == "md":
            if target == "txt":
                return html_to_text(markdown_to_html(text))
            return wrap_html(markdown_to_html(text))

        # html
        if target == "txt":
            return html_to_text(text)
        if target == "md":
            return self._html_to_markdown(text)
        return text

    def _html_to_markdown(self, markup: str) -> str:
        from markitdown import StreamInfo

        try:
            result = _get_markitdown().convert_stream(
                io.BytesIO(markup.encode("utf-8")),
                stream_info=StreamInfo(extension=".html", mimetype="text/html", charset="utf-8"),
            )
        except Exception as e:
            log.error("MarkItDown conversion failed", error=str(e))
            raise BackendError("Could not convert HTML to Markdown", cause=e) from e

        markdown = getattr(result, "markdown", None)
        if markdown is None:
            markdown = getattr(result, "text_content", "")
        return markdown.strip() + "\n"

    # ------------------------------------------------------------------
    # PDF output
    # ------------------------------------------------------------------

    def render_pdf(self, markup: str) -> bytes:
        """Lay out HTML onto A4 pages."""
        import fitz  # PyMuPDF

        buffer = io.BytesIO()
        mediabox = fitz.paper_rect("a4")
        where = mediabox + (36, 36, -36, -36)

        try:
            story = fitz.Story(html=markup)
            writer = fitz.DocumentWriter(buffer)
            more = True
            while more:
                device = writer.begin_page(mediabox)
                more, _ = story.place(where)
                story.draw(device)
                writer.end_page()
            writer.close()
        except (RuntimeError, ValueError) as e:
            raise BackendError("Could not generate the PDF document", cause=e) from e

        return buffer.getvalue()
