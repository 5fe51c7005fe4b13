"""Session scope owning workers, the orchestrator and result URLs."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from convertkit.core.batch import BatchInput, BatchResult, BatchRunner, ItemCallback
from convertkit.core.categories import Category
from convertkit.core.orchestrator import ConversionOrchestrator, ProgressListener
from convertkit.core.results import ConversionRequest, ConversionResult, ObjectUrlRegistry
from convertkit.core.worker import TransportFactory, WorkerKind, WorkerLifecycleManager, create_worker
from convertkit.exceptions import InitializationError
from convertkit.utils.logging import get_logger

if TYPE_CHECKING:
    from convertkit.backends import FFmpegTranscoder
    from convertkit.config.settings import ConvertkitSettings

log = get_logger(__name__)


class ConversionSession:
    """Owns every resource a conversion scope acquires.

    Entering starts one worker per requested kind; leaving terminates them
    and revokes every result URL the session handed out.

    Example:
        async with ConversionSession(kinds=["image"]) as session:
            result = await session.convert(request, Category.IMAGE)
    """

    def __init__(
        self,
        settings: ConvertkitSettings | None = None,
        *,
        kinds: Iterable[WorkerKind | str] | None = None,
        transport_factory: TransportFactory | None = None,
        transcoder: FFmpegTranscoder | None = None,
        wait_ready: bool = False,
    ) -> None:
        """Initialize the session (nothing is started yet).

        Args:
            settings: Configuration (defaults to ``get_settings()``)
            kinds: Worker kinds to start (defaults to ``workers.enabled_kinds``)
            transport_factory: Transport override, used by tests
            transcoder: Media transcoder override
            wait_ready: Wait for every worker's handshake on entry
        """
        from convertkit.config.settings import get_settings

        self.settings = settings or get_settings()
        if kinds is None:
            kinds = self.settings.workers.enabled_kinds
        self.kinds = [WorkerKind(kind) for kind in kinds]
        self.transport_factory = transport_factory
        self.transcoder = transcoder
        self.wait_ready = wait_ready

        self.workers: dict[WorkerKind, WorkerLifecycleManager] = {}
        self.urls = ObjectUrlRegistry()
        self._orchestrator: ConversionOrchestrator | None = None
        self._closed = False

    @property
    def orchestrator(self) -> ConversionOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("Session not started. Use 'async with ConversionSession()'")
        return self._orchestrator

    async def __aenter__(self) -> ConversionSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self) -> None:
        """Start workers and build the orchestrator."""
        if self._orchestrator is not None:
            return

        for kind in self.kinds:
            worker = create_worker(kind, self.settings, self.transport_factory)
            try:
                await worker.start()
            except InitializationError as e:
                # Kept so dispatches fail fast with this error
                log.warning("Worker unavailable", kind=kind.value, error=e.message)
            self.workers[kind] = worker

        if self.wait_ready and self.workers:
            await asyncio.gather(*(worker.wait_ready() for worker in self.workers.values()))

        self._orchestrator = ConversionOrchestrator(
            workers=self.workers,
            urls=self.urls,
            settings=self.settings,
            transcoder=self.transcoder,
        )
        log.debug("Session started", workers=[kind.value for kind in self.workers])

    async def close(self) -> None:
        """Terminate workers and revoke all URLs. Idempotent."""
        if self._closed:
            return
        self._closed = True

        await asyncio.gather(*(worker.terminate() for worker in self.workers.values()))
        if self._orchestrator is not None:
            self._orchestrator.result = None
        self.urls.close()
        log.debug("Session closed")

    async def convert(
        self,
        request: ConversionRequest,
        category: Category | str,
        *,
        on_progress: ProgressListener | None = None,
    ) -> ConversionResult:
        """Convert one request through the session's orchestrator."""
        return await self.orchestrator.convert(request, category, on_progress=on_progress)

    def batch_runner(
        self,
        category: Category | str,
        target_format: str | None = None,
        *,
        options: Mapping[str, Any] | None = None,
        on_item: ItemCallback | None = None,
    ) -> BatchRunner:
        return BatchRunner(
            self.orchestrator, category, target_format, options=options, on_item=on_item
        )

    async def run_batch(
        self,
        inputs: Sequence[BatchInput],
        category: Category | str,
        target_format: str | None = None,
        **kwargs: Any,
    ) -> BatchResult:
        """Convert ``inputs`` in order, isolating per-item failures."""
        return await self.batch_runner(category, target_format, **kwargs).run(inputs)
