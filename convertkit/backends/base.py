"""Base backend interface."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any

# (percent, message) reported while a backend works
BackendProgress = Callable[[int, str | None], None]


class BaseBackend(ABC):
    """Abstract base class for format backends.

    Backends are synchronous byte-in/byte-out converters. The orchestrator
    runs them in a worker thread; the background runtime calls them
    directly.
    """

    name: str = "base"
    sources: frozenset[str] = frozenset()
    targets: frozenset[str] = frozenset()

    @abstractmethod
    def convert(
        self,
        data: bytes,
        source_format: str,
        target_format: str,
        options: Mapping[str, Any] | None = None,
        on_progress: BackendProgress | None = None,
    ) -> bytes:
        """Convert ``data`` from ``source_format`` to ``target_format``.

        Args:
            data: Input bytes
            source_format: Source extension (lower case, no dot)
            target_format: Target extension (lower case, no dot)
            options: Backend specific options
            on_progress: Optional progress callback

        Returns:
            Converted bytes

        Raises:
            BackendError: If the input cannot be converted
        """
        pass

    def supports(self, source_format: str, target_format: str) -> bool:
        """Check if this backend handles the format pair."""
        return source_format.lower() in self.sources and target_format.lower() in self.targets


def report(on_progress: BackendProgress | None, percent: int, message: str | None = None) -> None:
    """Call ``on_progress`` if one was given."""
    if on_progress is not None:
        on_progress(percent, message)
