"""Sequential batch conversion with per-item failure isolation."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import anyio

from convertkit.core.categories import Category, infer_source_format
from convertkit.core.orchestrator import ConversionOrchestrator, ProgressListener
from convertkit.core.results import ConversionRequest
from convertkit.exceptions import ConversionError, ErrorKind, ValidationError
from convertkit.utils.fs import format_size
from convertkit.utils.logging import get_logger

log = get_logger(__name__)

# A path on disk, or an in-memory ``(name, data)`` pair
BatchInput = Union[str, Path, tuple[str, bytes]]


@dataclass
class BatchItem:
    """Outcome of one batch entry: a success or ``{original_name, error}``."""

    original_name: str
    original_size: int = 0
    input_data: bytes = field(default=b"", repr=False)
    output_name: str | None = None
    converted_size: int | None = None
    url: str | None = None
    data: bytes | None = field(default=None, repr=False)
    mime_type: str | None = None
    stats: dict[str, Any] | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def size_delta(self) -> int:
        """Bytes saved (negative when the output grew)."""
        if self.converted_size is None:
            return 0
        return self.original_size - self.converted_size

    @property
    def reduction_percent(self) -> float:
        if not self.original_size or self.converted_size is None:
            return 0.0
        return round(self.size_delta / self.original_size * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"original_name": self.original_name, "error": self.error}
        return {
            "original_name": self.original_name,
            "output_name": self.output_name,
            "original_size": self.original_size,
            "converted_size": self.converted_size,
            "url": self.url,
            "type": self.mime_type,
        }


@dataclass
class BatchSummary:
    """Aggregate statistics of a batch."""

    file_count: int = 0
    success_count: int = 0
    total_original_size: int = 0
    total_converted_size: int = 0

    @property
    def failure_count(self) -> int:
        return self.file_count - self.success_count

    @property
    def reduction_percent(self) -> float:
        if self.total_original_size == 0:
            return 0.0
        saved = self.total_original_size - self.total_converted_size
        return round(saved / self.total_original_size * 100, 2)

    def format_summary(self) -> str:
        """Format statistics as a human-readable summary."""
        lines = [f"Complete: {self.success_count} success, {self.failure_count} failed"]
        if self.success_count:
            lines.append(
                f"Size: {format_size(self.total_original_size)} -> "
                f"{format_size(self.total_converted_size)} ({self.reduction_percent:+.2f}% saved)"
            )
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_count": self.file_count,
            "success_count": self.success_count,
            "total_original_size": self.total_original_size,
            "total_converted_size": self.total_converted_size,
        }


@dataclass
class BatchResult:
    """Ordered outcomes of a batch; one item per input, in input order."""

    items: list[BatchItem] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[BatchItem]:
        return iter(self.items)

    def __getitem__(self, index: int) -> BatchItem:
        return self.items[index]

    @property
    def successes(self) -> list[BatchItem]:
        return [item for item in self.items if item.success]

    @property
    def failures(self) -> list[BatchItem]:
        return [item for item in self.items if not item.success]

    @property
    def summary(self) -> BatchSummary:
        successes = self.successes
        return BatchSummary(
            file_count=len(self.items),
            success_count=len(successes),
            total_original_size=sum(item.original_size for item in successes),
            total_converted_size=sum(item.converted_size or 0 for item in successes),
        )

    def view(self, index: int) -> BatchItem:
        """Re-view an item's input and output without converting it again."""
        if not 0 <= index < len(self.items):
            raise IndexError(f"Batch has no item {index} (size {len(self.items)})")
        return self.items[index]


ItemCallback = Callable[[int, BatchItem], None]


class BatchRunner:
    """Drive the orchestrator over many inputs, strictly in order.

    A failing item is recorded and the batch moves on; the batch itself
    never aborts. Starting a new run revokes the URLs of the previous one.
    """

    def __init__(
        self,
        orchestrator: ConversionOrchestrator,
        category: Category | str,
        target_format: str | None = None,
        *,
        options: Mapping[str, Any] | None = None,
        on_item: ItemCallback | None = None,
        on_progress: ProgressListener | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.category = Category(category)
        if target_format is None and not self.category.is_code:
            raise ValidationError(f"A target format is required for {self.category.value} batches")
        self.target_format = target_format
        self.options = dict(options or {})
        self.on_item = on_item
        self.on_progress = on_progress
        self.last_result: BatchResult | None = None

    async def run(self, inputs: Sequence[BatchInput]) -> BatchResult:
        """Convert every input and return one item per input."""
        self._release_previous()

        spec = self.orchestrator.categories[self.category]
        result = BatchResult()
        for index, entry in enumerate(inputs):
            item = await self._run_one(entry, spec)
            result.items.append(item)
            if self.on_item is not None:
                self.on_item(index, item)

        self.last_result = result
        summary = result.summary
        log.info(
            "Batch finished",
            category=self.category.value,
            files=summary.file_count,
            succeeded=summary.success_count,
        )
        return result

    async def _run_one(self, entry: BatchInput, spec: Any) -> BatchItem:
        if isinstance(entry, tuple):
            name, data = entry
        else:
            path = anyio.Path(entry)
            name = path.name
            try:
                data = await path.read_bytes()
            except OSError as e:
                log.warning("Could not read batch input", path=str(entry), error=str(e))
                return BatchItem(
                    original_name=name,
                    error=f"Could not read file: {e.strerror or e}",
                    error_kind=ErrorKind.VALIDATION,
                )

        item = BatchItem(original_name=name, original_size=len(data), input_data=data)
        source_format = infer_source_format(name, spec)
        target_format = self.target_format or source_format
        request = ConversionRequest.for_file(
            data, name, target_format, source_format=source_format, **self.options
        )

        try:
            converted = await self.orchestrator.convert(
                request,
                self.category,
                on_progress=self.on_progress,
                exclusive=False,
                supersede=False,
            )
        except ConversionError as e:
            item.error = e.message
            item.error_kind = e.kind
            return item

        item.output_name = converted.name
        item.converted_size = converted.size
        item.url = converted.url
        item.data = converted.data
        item.mime_type = converted.mime_type
        item.stats = converted.stats
        return item

    def _release_previous(self) -> None:
        if self.last_result is None:
            return
        for item in self.last_result:
            if item.url is not None:
                self.orchestrator.urls.revoke(item.url)
        self.last_result = None
