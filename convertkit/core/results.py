"""Conversion requests, results and ownership of result URLs."""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from convertkit.utils.fs import file_extension, safe_filename
from convertkit.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ConversionRequest:
    """One file to convert. Immutable once dispatched."""

    data: bytes = field(repr=False)
    name: str
    source_format: str
    target_format: str
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def for_file(
        cls,
        data: bytes,
        name: str,
        target_format: str,
        source_format: str | None = None,
        **options: Any,
    ) -> ConversionRequest:
        """Build a request, taking the source format from ``name`` if not given."""
        return cls(
            data=data,
            name=name,
            source_format=(source_format or file_extension(name)).lower(),
            target_format=target_format.lower().lstrip("."),
            options=options,
        )


@dataclass(frozen=True)
class ConversionResult:
    """A successful conversion, served through a revocable URL."""

    name: str
    url: str
    size: int
    mime_type: str
    data: bytes = field(repr=False, default=b"")
    stats: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the ``{name, url, size, type}`` record shown to callers."""
        return {"name": self.name, "url": self.url, "size": self.size, "type": self.mime_type}


class ObjectUrlRegistry:
    """Creates revocable ``file://`` URLs for result bytes.

    Each URL is backed by a file in a private temp directory. ``revoke``
    deletes the file and is idempotent; ``close`` revokes whatever is left
    and removes the directory.

    Example:
        with ObjectUrlRegistry() as urls:
            url = urls.create(data, "photo.webp")
            ...
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir
        self._root: Path | None = None
        self._live: dict[str, Path] = {}
        self._counter = 0
        self.revoked: list[str] = []

    @property
    def root(self) -> Path:
        if self._root is None:
            if self._base_dir is not None:
                self._base_dir.mkdir(parents=True, exist_ok=True)
            self._root = Path(tempfile.mkdtemp(prefix="convertkit-", dir=self._base_dir))
        return self._root

    def create(self, data: bytes, name: str) -> str:
        """Store ``data`` and return a URL for it."""
        self._counter += 1
        path = self.root / f"{self._counter:04d}-{safe_filename(name)}"
        path.write_bytes(data)
        url = path.as_uri()
        self._live[url] = path
        return url

    def revoke(self, url: str) -> bool:
        """Release ``url``; returns False if it was not live."""
        path = self._live.pop(url, None)
        if path is None:
            return False
        path.unlink(missing_ok=True)
        self.revoked.append(url)
        return True

    def revoke_all(self) -> int:
        """Release every live URL; returns how many were released."""
        urls = list(self._live)
        for url in urls:
            self.revoke(url)
        return len(urls)

    def is_live(self, url: str) -> bool:
        return url in self._live

    def path_for(self, url: str) -> Path | None:
        """File backing a live URL."""
        return self._live.get(url)

    def __len__(self) -> int:
        return len(self._live)

    def close(self) -> None:
        count = self.revoke_all()
        if self._root is not None:
            shutil.rmtree(self._root, ignore_errors=True)
            self._root = None
        log.debug("Released result URLs", count=count)

    def __enter__(self) -> ObjectUrlRegistry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
