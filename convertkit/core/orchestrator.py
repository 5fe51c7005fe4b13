"""Conversion orchestrator: one request at a time, three execution strategies."""

from __future__ import annotations

import functools
from collections.abc import Callable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

import anyio.from_thread
import anyio.to_thread

from convertkit.backends import create_backend, create_transcoder
from convertkit.core.categories import (
    Category,
    CategorySpec,
    ConversionPlan,
    Strategy,
    build_category_table,
    output_name,
    validate_request,
)
from convertkit.core.results import ConversionRequest, ConversionResult, ObjectUrlRegistry
from convertkit.core.watchdog import race
from convertkit.core.worker import ProgressState, WorkerKind, WorkerLifecycleManager, clamp_percent
from convertkit.exceptions import (
    BackendError,
    ConversionError,
    InitializationError,
    ValidationError,
)
from convertkit.utils.fs import mime_type_for
from convertkit.utils.logging import get_logger

if TYPE_CHECKING:
    from convertkit.backends import BaseBackend, FFmpegTranscoder
    from convertkit.config.settings import ConvertkitSettings

log = get_logger(__name__)

ProgressListener = Callable[[ProgressState], None]

# MIME family used for extensions missing from the MIME table
_MIME_FAMILIES = {
    Category.IMAGE: "image",
    Category.AUDIO: "audio",
    Category.VIDEO: "video",
    Category.DOCUMENT: "application",
    Category.MINIFY: "text",
    Category.UNMINIFY: "text",
}


class OrchestratorState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    DISPATCHING = "dispatching"
    FALLING_BACK = "falling_back"
    CONVERTING = "converting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def describe_backend_failure(detail: str, source_format: str, target_format: str) -> str | None:
    """Map raw backend failure text to a user-facing message (None if unknown)."""
    src, tgt = source_format.upper(), target_format.upper()
    lowered = detail.lower()
    if "unsupported codec" in lowered:
        return f"Unsupported codec for {src} to {tgt} conversion"
    if any(marker in lowered for marker in ("invalid data", "cannot identify", "corrupt")):
        return f"The file appears to be corrupted or not a valid {src} file"
    if "output file not generated" in lowered or "empty output" in lowered:
        return f"The {src} to {tgt} conversion produced no output"
    return None


class ConversionOrchestrator:
    """Runs conversion requests and owns their result state.

    At most one top-level conversion runs at a time. The last successful
    result stays available until the next success supersedes it; its URL
    is revoked at that point.

    Example:
        orchestrator = ConversionOrchestrator(workers={WorkerKind.IMAGE: worker}, urls=urls)
        result = await orchestrator.convert(request, Category.IMAGE)
    """

    def __init__(
        self,
        *,
        workers: Mapping[WorkerKind, WorkerLifecycleManager] | None = None,
        urls: ObjectUrlRegistry | None = None,
        settings: ConvertkitSettings | None = None,
        backends: Mapping[str, BaseBackend] | None = None,
        transcoder: FFmpegTranscoder | None = None,
        categories: Mapping[Category, CategorySpec] | None = None,
    ) -> None:
        from convertkit.config.settings import ConvertkitSettings

        self.settings = settings or ConvertkitSettings()
        self.workers = dict(workers or {})
        self.urls = urls or ObjectUrlRegistry()
        self.categories = dict(categories or build_category_table(self.settings.limits))
        self._backends = dict(backends or {})
        self._transcoder = transcoder

        self.state = OrchestratorState.IDLE
        self.transitions: list[OrchestratorState] = []
        self.progress = ProgressState()
        self.result: ConversionResult | None = None
        self.error: ConversionError | None = None
        self.plan: ConversionPlan | None = None

        self._busy = False
        self._listener: ProgressListener | None = None

    @property
    def is_busy(self) -> bool:
        return self._busy

    def _set_state(self, state: OrchestratorState) -> None:
        self.state = state
        self.transitions.append(state)

    def validate(self, request: ConversionRequest, category: Category | str) -> ConversionPlan:
        """Pre-flight checks; never touches a worker.

        Raises:
            ValidationError: If the request can never succeed
        """
        try:
            category = Category(category)
            spec = self.categories[category]
        except (ValueError, KeyError) as e:
            raise ValidationError(f"Unknown category: {category!r}") from e
        kind = category.worker_kind
        return validate_request(request, spec, has_worker=kind is not None and kind in self.workers)

    async def convert(
        self,
        request: ConversionRequest,
        category: Category | str,
        *,
        on_progress: ProgressListener | None = None,
        exclusive: bool = True,
        supersede: bool = True,
    ) -> ConversionResult:
        """Convert one request.

        Args:
            request: File and formats to convert
            category: Category the request belongs to
            on_progress: Receives every ``ProgressState`` update
            exclusive: Serialize the worker dispatch (False for correlated batch use)
            supersede: Make this the current result and revoke the previous one

        Returns:
            The conversion result

        Raises:
            ConversionError: Any failure, with a human-readable message
        """
        if self._busy:
            raise ValidationError("A conversion is already in progress")
        self._busy = True
        self._listener = on_progress
        self.transitions = []
        self.error = None
        self.progress = ProgressState()

        try:
            self._set_state(OrchestratorState.VALIDATING)
            plan = self.validate(request, category)
            self.plan = plan

            data, mime_type, stats = await self._execute(plan, request, exclusive)

            result = self._publish(request, plan, data, mime_type, stats, supersede)
            self._set_state(OrchestratorState.SUCCEEDED)
            self.progress = ProgressState()
            log.info(
                "Conversion succeeded",
                name=request.name,
                output=result.name,
                strategy=plan.strategy.value,
                size=result.size,
            )
            return result
        except ConversionError as e:
            self._fail(e, request)
            raise
        except Exception as e:
            log.error("Unexpected conversion failure", name=request.name, error=str(e), exc_info=True)
            wrapped = BackendError(
                describe_backend_failure(str(e), request.source_format, request.target_format)
                or f"Failed to convert {request.name}",
                cause=e,
            )
            self._fail(wrapped, request)
            raise wrapped from e
        finally:
            self._busy = False
            self._listener = None

    def _fail(self, error: ConversionError, request: ConversionRequest) -> None:
        self.error = error
        self._set_state(OrchestratorState.FAILED)
        log.warning("Conversion failed", name=request.name, kind=error.kind.value, error=error.message)

    async def _execute(
        self, plan: ConversionPlan, request: ConversionRequest, exclusive: bool
    ) -> tuple[bytes, str, dict[str, Any] | None]:
        mime_type = mime_type_for(plan.target_format, _MIME_FAMILIES[plan.category])

        if plan.passthrough:
            self._set_state(OrchestratorState.FALLING_BACK)
            self._set_state(OrchestratorState.CONVERTING)
            self._on_progress(100, None)
            return request.data, mime_type, None

        if plan.strategy is Strategy.BACKGROUND_DISPATCH:
            worker = self.workers.get(plan.worker_kind) if plan.worker_kind else None
            if worker is None:
                raise InitializationError(f"No {plan.category.value} worker is available")
            return await self._dispatch(worker, plan, request, mime_type, exclusive)

        self._set_state(OrchestratorState.FALLING_BACK)
        if plan.strategy is Strategy.TRANSCODE:
            data = await self._transcode(plan, request)
        else:
            data = await self._direct(plan, request)
        if self.state is not OrchestratorState.CONVERTING:
            self._set_state(OrchestratorState.CONVERTING)
        if not data:
            raise BackendError(
                f"The {plan.source_format.upper()} to {plan.target_format.upper()} "
                "conversion produced no output"
            )
        return data, mime_type, None

    async def _dispatch(
        self,
        worker: WorkerLifecycleManager,
        plan: ConversionPlan,
        request: ConversionRequest,
        mime_type: str,
        exclusive: bool,
    ) -> tuple[bytes, str, dict[str, Any] | None]:
        self._set_state(OrchestratorState.DISPATCHING)
        payload = {
            "file": request.data,
            "source_format": plan.source_format,
            "target_format": plan.target_format,
            **dict(request.options),
        }
        if plan.category is Category.IMAGE:
            payload.setdefault("quality", self.settings.image.quality)
        elif plan.category.is_code:
            payload.setdefault("file_extension", plan.source_format)

        try:
            reply = await worker.dispatch(
                payload,
                timeout=self.settings.timeouts.conversion_deadline(request.size),
                on_progress=self._on_progress,
                exclusive=exclusive,
            )
        except BackendError as e:
            log.debug("Worker reported failure", kind=plan.category.value, detail=e.message)
            friendly = describe_backend_failure(e.message, plan.source_format, plan.target_format)
            if friendly is None:
                raise
            raise BackendError(friendly, cause=e) from e

        if self.state is not OrchestratorState.CONVERTING:
            self._set_state(OrchestratorState.CONVERTING)

        data = reply.get("file") if isinstance(reply, dict) else None
        if not isinstance(data, bytes) or not data:
            raise BackendError(
                f"The {plan.source_format.upper()} to {plan.target_format.upper()} "
                "conversion produced no output"
            )
        return data, reply.get("mime_type") or mime_type, reply.get("stats")

    async def _direct(self, plan: ConversionPlan, request: ConversionRequest) -> bytes:
        backend = self._backend_for(plan.category.value)

        def report_from_thread(percent: int, message: str | None) -> None:
            anyio.from_thread.run_sync(self._on_progress, percent, message)

        return await anyio.to_thread.run_sync(
            functools.partial(
                backend.convert,
                request.data,
                plan.source_format,
                plan.target_format,
                dict(request.options),
                on_progress=report_from_thread,
            )
        )

    async def _transcode(self, plan: ConversionPlan, request: ConversionRequest) -> bytes:
        if self._transcoder is None:
            self._transcoder = create_transcoder(self.settings)
        return await race(
            self._transcoder.convert(
                request.data,
                plan.source_format,
                plan.target_format,
                dict(request.options),
                on_progress=self._on_progress,
            ),
            self.settings.timeouts.conversion_deadline(request.size),
            name=f"{plan.category.value.capitalize()} conversion",
        )

    def _backend_for(self, kind: str) -> BaseBackend:
        if kind not in self._backends:
            self._backends[kind] = create_backend(kind, self.settings)
        return self._backends[kind]

    def _on_progress(self, percent: Any, message: str | None) -> None:
        if self.state in (OrchestratorState.DISPATCHING, OrchestratorState.FALLING_BACK):
            self._set_state(OrchestratorState.CONVERTING)
        value = clamp_percent(percent)
        self.progress = ProgressState(
            percent=self.progress.percent if value is None else value,
            message=message if message is not None else self.progress.message,
        )
        if self._listener is not None:
            self._listener(self.progress)

    def _publish(
        self,
        request: ConversionRequest,
        plan: ConversionPlan,
        data: bytes,
        mime_type: str,
        stats: dict[str, Any] | None,
        supersede: bool,
    ) -> ConversionResult:
        name = output_name(request.name, plan.category, plan.target_format)
        result = ConversionResult(
            name=name,
            url=self.urls.create(data, name),
            size=len(data),
            mime_type=mime_type,
            data=data,
            stats=stats,
        )
        if supersede:
            previous, self.result = self.result, result
            if previous is not None:
                self.urls.revoke(previous.url)
        return result

    def reset(self) -> None:
        """Forget the current result (revoking its URL) and any error."""
        if self.result is not None:
            self.urls.revoke(self.result.url)
        self.result = None
        self.error = None
        self.plan = None
        self.progress = ProgressState()
        self.state = OrchestratorState.IDLE
        self.transitions = []
