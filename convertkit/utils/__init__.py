"""Utility module for convertkit."""

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

__all__ = [
    "canonical_format",
    "file_extension",
    "format_size",
    "get_unique_path",
    "insert_marker",
    "mime_type_for",
    "replace_extension",
    "resolve_output_path",
    "safe_filename",
    "write_bytes_atomic",
]
