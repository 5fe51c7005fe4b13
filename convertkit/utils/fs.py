"""File name and file system helpers."""

import itertools
import os
import tempfile
from pathlib import Path

from convertkit.config.constants import FORMAT_ALIASES, MIME_TYPES


def file_extension(name: str) -> str:
    """Lower-cased extension of ``name`` without the dot ("" if none)."""
    suffix = Path(name).suffix
    return suffix[1:].lower() if suffix else ""


def canonical_format(fmt: str) -> str:
    """Normalize a format name (``.JPEG`` -> ``jpg``)."""
    fmt = fmt.lower().lstrip(".")
    return FORMAT_ALIASES.get(fmt, fmt)


def mime_type_for(fmt: str, default_family: str = "application") -> str:
    """MIME type for a format extension."""
    fmt = fmt.lower().lstrip(".")
    if fmt in MIME_TYPES:
        return MIME_TYPES[fmt]
    if default_family == "application":
        return "application/octet-stream"
    return f"{default_family}/{fmt}"


def replace_extension(name: str, target_format: str) -> str:
    """Swap the extension of ``name`` for ``target_format``.

    Example:
        >>> replace_extension("photo.png", "webp")
        'photo.webp'
    """
    path = Path(name)
    stem = path.stem if path.suffix else path.name
    return f"{stem}.{target_format}"


def insert_marker(name: str, marker: str) -> str:
    """Insert ``marker`` before the last extension of ``name``.

    Example:
        >>> insert_marker("app.js", ".min")
        'app.min.js'
        >>> insert_marker("Makefile", ".min")
        'Makefile.min'
    """
    dot = name.rfind(".")
    if dot <= 0:
        return name + marker
    return name[:dot] + marker + name[dot:]


# Characters that are not allowed in file names on some platform
_UNSAFE_CHARS = str.maketrans({c: "_" for c in '/\\:*?"<>|'} | {"\0": None})


def safe_filename(filename: str, max_length: int = 255) -> str:
    """Make ``filename`` safe to create on any platform.

    Separators and reserved characters become ``_``, leading and trailing
    dots and spaces are dropped, and over-long names are cut before the
    extension.
    """
    result = filename.translate(_UNSAFE_CHARS).strip(". ")
    if len(result) > max_length:
        path = Path(result)
        result = path.stem[: max_length - len(path.suffix)] + path.suffix
    return result or "unnamed"


def get_unique_path(path: Path) -> Path:
    """First of ``path``, ``stem_1.ext``, ``stem_2.ext``... that does not exist."""
    if not path.exists():
        return path
    for counter in itertools.count(1):
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        if not candidate.exists():
            return candidate


def resolve_output_path(output_dir: Path, name: str, on_conflict: str = "rename") -> Path | None:
    """Resolve where to write ``name`` inside ``output_dir``.

    Returns None when the target exists and ``on_conflict`` is ``skip``.
    """
    target = output_dir / safe_filename(name)
    if not target.exists() or on_conflict == "overwrite":
        return target
    if on_conflict == "skip":
        return None
    return get_unique_path(target)


def write_bytes_atomic(file_path: Path, data: bytes) -> None:
    """Write ``data`` to a temp file next to ``file_path`` and rename it into place."""
    file_path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=file_path.parent, prefix=f".{file_path.name}.")
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        temp_path.replace(file_path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


def format_size(size: int | float) -> str:
    """Human-readable byte count (``1536`` -> ``1.5 KB``)."""
    value = float(size)
    units = ("B", "KB", "MB", "GB", "TB")
    index = 0
    while abs(value) >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.1f} {units[index]}"
