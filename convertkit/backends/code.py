"""Source code minification and beautification.

Comments and redundant whitespace are removed outside string literals,
and formatting re-indents on braces.
JSON, HTML and XML go through real parsers.
"""

from __future__ import annotations

import io
import json
import re
import tokenize
from collections.abc import Iterator, Mapping
from typing import Any, Literal
from xml.dom import minidom
from xml.parsers.expat import ExpatError

from bs4 import BeautifulSoup

from convertkit.backends.base import BackendProgress, BaseBackend, report
from convertkit.config.constants import CODE_FORMATS, CODE_LANGUAGES
from convertkit.exceptions import BackendError
from convertkit.utils.logging import get_logger

log = get_logger(__name__)

CodeMode = Literal["minify", "unminify"]

INDENT = "  "

# Aliases accepted as explicit ``file_type`` values
_LANGUAGE_NAMES = {
    "js": "javascript",
    "javascript": "javascript",
    "ts": "typescript",
    "typescript": "typescript",
    "css": "css",
    "html": "html",
    "json": "json",
    "xml": "xml",
    "python": "python",
    "py": "python",
    "sql": "sql",
    "markdown": "markdown",
    "md": "markdown",
}

_C_STYLE = {"quotes": "\"'`", "line_comments": ("//",), "block_comments": (("/*", "*/"),)}
_CSS_STYLE = {"quotes": "\"'", "line_comments": (), "block_comments": (("/*", "*/"),)}
_SQL_STYLE = {"quotes": "\"'", "line_comments": ("--",), "block_comments": (("/*", "*/"),)}

_WHITESPACE = re.compile(r"\s+")
_JS_PUNCTUATION = re.compile(r"\s*([{}:;,=+\-*/&|!<>()\[\]?])\s*")
_CSS_PUNCTUATION = re.compile(r"\s*([:;{},>])\s*")
_HTML_COMMENT = re.compile(r"<!--[\s\S]*?-->")
_BETWEEN_TAGS = re.compile(r">\s+<")
_BLANK_RUN = re.compile(r"\n{3,}")
_UNSAFE_XML = ("<!DOCTYPE", "<!ENTITY")

_SQL_CLAUSES = re.compile(
    r"\s*\b(SELECT|FROM|WHERE|GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT|OFFSET|VALUES|SET|"
    r"INSERT\s+INTO|UPDATE|DELETE\s+FROM|UNION(?:\s+ALL)?|"
    r"(?:LEFT|RIGHT|INNER|FULL|CROSS)?\s*(?:OUTER\s+)?JOIN)\b\s*",
    re.IGNORECASE,
)
_SQL_CONDITIONS = re.compile(r"\s+\b(AND|OR)\b\s+", re.IGNORECASE)


def detect_language(file_type: str | None = None, file_extension: str | None = None) -> str | None:
    """Resolve the language from an explicit type or a file extension."""
    if file_type:
        language = _LANGUAGE_NAMES.get(file_type.lower())
        if language:
            return language
    if file_extension:
        return CODE_LANGUAGES.get(file_extension.lower().lstrip("."))
    return None


def _segments(
    source: str,
    quotes: str,
    line_comments: tuple[str, ...],
    block_comments: tuple[tuple[str, str], ...],
) -> Iterator[tuple[str, str]]:
    """Split source into ``("code" | "string" | "comment", text)`` runs."""
    i = 0
    n = len(source)
    code: list[str] = []

    def pending() -> Iterator[tuple[str, str]]:
        if code:
            yield "code", "".join(code)
            code.clear()

    while i < n:
        ch = source[i]

        if ch in quotes:
            j = i + 1
            while j < n and source[j] != ch:
                if source[j] == "\\":
                    j += 1
                elif source[j] == "\n" and ch != "`":
                    break
                j += 1
            yield from pending()
            yield "string", source[i : j + 1]
            i = j + 1
            continue

        comment_end = None
        for start, end in block_comments:
            if source.startswith(start, i):
                k = source.find(end, i + len(start))
                comment_end = n if k < 0 else k + len(end)
                break
        else:
            for marker in line_comments:
                if source.startswith(marker, i):
                    k = source.find("\n", i)
                    comment_end = n if k < 0 else k
                    break

        if comment_end is not None:
            yield from pending()
            yield "comment", source[i:comment_end]
            i = comment_end
            continue

        code.append(ch)
        i += 1

    yield from pending()


def _minify_segments(source: str, style: dict[str, Any], punctuation: re.Pattern[str]) -> str:
    parts = []
    for kind, text in _segments(source, **style):
        if kind == "comment":
            parts.append(" ")
        elif kind == "string":
            parts.append(text)
        else:
            parts.append(_WHITESPACE.sub(" ", text))
    code = "".join(parts)

    # Punctuation spacing is removed outside string literals only
    out = []
    for kind, text in _segments(code, style["quotes"], (), ()):
        out.append(text if kind == "string" else punctuation.sub(r"\1", _WHITESPACE.sub(" ", text)))
    return "".join(out).strip()


def _minify_javascript(source: str) -> str:
    return _minify_segments(source, _C_STYLE, _JS_PUNCTUATION)


def _minify_css(source: str) -> str:
    return _minify_segments(source, _CSS_STYLE, _CSS_PUNCTUATION).replace(";}", "}")


def _strip_html_comments(source: str) -> str:
    previous = None
    while previous != source:
        previous = source
        source = _HTML_COMMENT.sub("", source)
    return source


def _minify_html(source: str) -> str:
    source = _WHITESPACE.sub(" ", _strip_html_comments(source))
    return _BETWEEN_TAGS.sub("><", source).strip()


def _load_json(source: str) -> Any:
    try:
        return json.loads(source)
    except json.JSONDecodeError as e:
        raise BackendError(f"Invalid JSON: {e}", cause=e) from e


def _check_xml(source: str) -> None:
    if any(marker in source for marker in _UNSAFE_XML):
        raise BackendError("XML with DOCTYPE or ENTITY declarations cannot be processed")


def _minify_xml(source: str) -> str:
    _check_xml(source)
    source = _BETWEEN_TAGS.sub("><", _strip_html_comments(source))
    return _WHITESPACE.sub(" ", source).strip()


def _minify_python(source: str) -> str:
    lines = source.splitlines()
    keep: set[int] = set()
    try:
        for tok in tokenize.generate_tokens(io.StringIO(source).readline):
            if tok.type == tokenize.COMMENT:
                row, col = tok.start
                lines[row - 1] = lines[row - 1][:col]
            elif tok.type == tokenize.STRING and tok.end[0] > tok.start[0]:
                # Lines inside multi-line strings are content
                keep.update(range(tok.start[0], tok.end[0] + 1))
    except (tokenize.TokenError, SyntaxError) as e:
        raise BackendError(f"Invalid Python source: {e}", cause=e) from e

    result = [
        line if number in keep else line.rstrip()
        for number, line in enumerate(lines, start=1)
        if number in keep or line.strip()
    ]
    return "\n".join(result) + "\n"


def _minify_sql(source: str) -> str:
    return _minify_segments(source, _SQL_STYLE, re.compile(r"\s*([,;()=])\s*"))


def _minify_markdown(source: str) -> str:
    lines = [line.rstrip() for line in source.splitlines()]
    return _BLANK_RUN.sub("\n\n", "\n".join(lines)).strip() + "\n"


def _format_braces(source: str, style: dict[str, Any]) -> str:
    """Re-indent brace-structured code (JavaScript, TypeScript, CSS)."""
    out: list[str] = []
    line: list[str] = []
    depth = 0
    parens = 0

    def flush() -> None:
        text = "".join(line).strip()
        if text:
            out.append(INDENT * depth + text)
        line.clear()

    for kind, text in _segments(source, **style):
        if kind != "code":
            line.append(text)
            if kind == "comment" and not text.startswith("/*"):
                flush()
            continue

        for ch in text:
            if ch == "\n":
                flush()
            elif ch == "{":
                if line and not line[-1].endswith(" "):
                    line.append(" ")
                line.append("{")
                flush()
                depth += 1
            elif ch == "}":
                flush()
                depth = max(0, depth - 1)
                line.append("}")
            elif ch == ";" and parens == 0:
                line.append(";")
                flush()
            elif ch in "([":
                parens += 1
                line.append(ch)
            elif ch in ")]":
                parens = max(0, parens - 1)
                line.append(ch)
            elif ch.isspace():
                if line and not line[-1].endswith(" "):
                    line.append(" ")
            else:
                if line and line[-1] == "}" and ch not in ",.":
                    # "}" followed by more code on the same line
                    line.append(" ")
                line.append(ch)
    flush()
    return "\n".join(out) + "\n"


def _format_html(source: str) -> str:
    return BeautifulSoup(source, "html.parser").prettify()


def _format_xml(source: str) -> str:
    _check_xml(source)
    try:
        document = minidom.parseString(_BETWEEN_TAGS.sub("><", source.strip()))
    except ExpatError as e:
        raise BackendError(f"Invalid XML: {e}", cause=e) from e
    pretty = document.toprettyxml(indent=INDENT)
    return "\n".join(line for line in pretty.splitlines() if line.strip()) + "\n"


def _format_python(source: str) -> str:
    lines = [line.rstrip() for line in source.splitlines()]
    out: list[str] = []
    for line in lines:
        top_level = line.startswith(("def ", "async def ", "class ", "@"))
        if top_level and out and out[-1] and not out[-1].startswith("@"):
            # Two blank lines before top-level definitions
            while out and not out[-1]:
                out.pop()
            out.extend(["", ""])
        out.append(line)
    return _BLANK_RUN.sub("\n\n\n", "\n".join(out)).strip() + "\n"


def _format_sql(source: str) -> str:
    parts = []
    for kind, text in _segments(source, **_SQL_STYLE):
        if kind == "code":
            text = _WHITESPACE.sub(" ", text)
            text = _SQL_CLAUSES.sub(lambda m: "\n" + _WHITESPACE.sub(" ", m.group(1).upper()) + " ", text)
            text = _SQL_CONDITIONS.sub(lambda m: "\n" + INDENT + m.group(1).upper() + " ", text)
            text = text.replace(";", ";\n")
        elif kind == "comment" and text.startswith("--"):
            text += "\n"
        parts.append(text)
    lines = [line.rstrip() for line in "".join(parts).splitlines()]
    return "\n".join(line for line in lines if line.strip()) + "\n"


def _format_markdown(source: str) -> str:
    out: list[str] = []
    for line in (line.rstrip() for line in source.splitlines()):
        is_heading = line.startswith("#")
        if is_heading and out and out[-1]:
            out.append("")
        if out and out[-1].startswith("#") and line:
            out.append("")
        out.append(line)
    return _BLANK_RUN.sub("\n\n", "\n".join(out)).strip() + "\n"


_MINIFIERS = {
    "javascript": _minify_javascript,
    "typescript": _minify_javascript,
    "css": _minify_css,
    "html": _minify_html,
    "json": lambda source: json.dumps(_load_json(source), separators=(",", ":"), ensure_ascii=False),
    "xml": _minify_xml,
    "python": _minify_python,
    "sql": _minify_sql,
    "markdown": _minify_markdown,
}

_FORMATTERS = {
    "javascript": lambda source: _format_braces(source, _C_STYLE),
    "typescript": lambda source: _format_braces(source, _C_STYLE),
    "css": lambda source: _format_braces(source, _CSS_STYLE),
    "html": _format_html,
    "json": lambda source: json.dumps(_load_json(source), indent=2, ensure_ascii=False) + "\n",
    "xml": _format_xml,
    "python": _format_python,
    "sql": _format_sql,
    "markdown": _format_markdown,
}


def minify(source: str, language: str) -> str:
    """Minify ``source`` written in ``language``; unknown languages pass through."""
    minifier = _MINIFIERS.get(language)
    return minifier(source) if minifier else source


def beautify(source: str, language: str) -> str:
    """Format ``source`` written in ``language``; unknown languages pass through."""
    formatter = _FORMATTERS.get(language)
    return formatter(source) if formatter else source


def size_stats(original_size: int, output_size: int, mode: CodeMode = "minify") -> dict[str, Any]:
    """Size statistics for a code conversion.

    Minify reports the ``reduction``; unminify reports the growth as
    ``difference``. Percentages are relative to the original size.
    """
    if mode == "minify":
        delta = original_size - output_size
        return {
            "original_size": original_size,
            "minified_size": output_size,
            "reduction": delta,
            "percentage": round(delta / original_size * 100, 2) if original_size else 0.0,
        }
    delta = output_size - original_size
    return {
        "original_size": original_size,
        "formatted_size": output_size,
        "difference": delta,
        "percentage": round(delta / original_size * 100, 2) if original_size else 0.0,
    }


class CodeBackend(BaseBackend):
    """Minify or beautify source code, keeping its language."""

    sources = frozenset(CODE_FORMATS)
    targets = frozenset(CODE_FORMATS)

    def __init__(self, mode: CodeMode = "minify") -> None:
        self.mode = mode
        self.name = mode

    def convert(
        self,
        data: bytes,
        source_format: str,
        target_format: str,
        options: Mapping[str, Any] | None = None,
        on_progress: BackendProgress | None = None,
    ) -> bytes:
        options = options or {}
        language = detect_language(
            options.get("file_type"), options.get("file_extension") or source_format
        )
        try:
            source = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise BackendError("The file is not valid UTF-8 text", cause=e) from e

        report(on_progress, 10, f"Processing {language or 'text'}")
        if language is None:
            log.debug("Unknown code language, passing through", source_format=source_format)
            output = source
        elif self.mode == "minify":
            output = minify(source, language)
        else:
            output = beautify(source, language)

        report(on_progress, 100)
        return output.encode("utf-8")
