"""Lifecycle management for one background conversion worker.

A ``WorkerLifecycleManager`` is the handle to a single background execution
context of a given kind. It owns the transport, performs the init handshake,
tracks readiness, dispatches ``convert`` requests with a deadline and a
correlation id, and guarantees teardown.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from convertkit.config.constants import (
    DEFAULT_CONVERSION_TIMEOUT,
    DEFAULT_HANDSHAKE_TIMEOUT,
    DEFAULT_READINESS_GRACE,
)
from convertkit.core.correlator import ProgressCallback, ReplyCorrelator
from convertkit.core.protocol import Envelope, MessageType, convert_message, init_message
from convertkit.core.transport import SubprocessTransport, TransportClosedError, WorkerTransport
from convertkit.core.watchdog import race, wait_for_event
from convertkit.exceptions import (
    BackendError,
    ConversionTimeoutError,
    InitializationError,
    WorkerTerminatedError,
)
from convertkit.utils.logging import get_logger

if TYPE_CHECKING:
    from convertkit.config.settings import ConvertkitSettings

log = get_logger(__name__)


class WorkerKind(str, Enum):
    """Kinds of background worker; one process per kind."""

    IMAGE = "image"
    DOCUMENT = "document"
    MINIFY = "minify"
    UNMINIFY = "unminify"


class Readiness(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressState:
    """Progress of the active operation."""

    percent: int = 0
    message: str = ""


def clamp_percent(value: Any) -> int | None:
    """Coerce a progress payload to an int in [0, 100] (None if not numeric)."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        percent = float(value)
    except (TypeError, ValueError):
        return None
    if percent != percent:  # NaN
        return None
    return int(round(min(100.0, max(0.0, percent))))


TransportFactory = Callable[[WorkerKind], WorkerTransport]


class WorkerLifecycleManager:
    """Owns the full lifetime of one background worker.

    Usage:
        async with WorkerLifecycleManager(WorkerKind.MINIFY) as worker:
            reply = await worker.dispatch({"file": data, ...})
    """

    def __init__(
        self,
        kind: WorkerKind,
        transport_factory: TransportFactory | None = None,
        *,
        init_flags: dict[str, Any] | None = None,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        conversion_timeout: float = DEFAULT_CONVERSION_TIMEOUT,
        readiness_grace: float = DEFAULT_READINESS_GRACE,
    ) -> None:
        """Initialize the manager (no process is started yet).

        Args:
            kind: Worker kind
            transport_factory: Builds the transport; defaults to a worker subprocess
            init_flags: Kind-specific flags sent in the ``init`` envelope
            handshake_timeout: Seconds to wait for ``initialized``
            conversion_timeout: Default deadline for each dispatched request
            readiness_grace: One-off wait for a worker that is still starting up
        """
        self.kind = WorkerKind(kind)
        self.init_flags = init_flags or {}
        self.handshake_timeout = handshake_timeout
        self.conversion_timeout = conversion_timeout
        self.readiness_grace = readiness_grace

        self._transport_factory = transport_factory or (lambda k: SubprocessTransport(k.value))
        self._transport: WorkerTransport | None = None
        self._correlator = ReplyCorrelator()
        self._exclusive = asyncio.Lock()
        self._ready = asyncio.Event()
        self._handshake_task: asyncio.Task[None] | None = None

        self._readiness = Readiness.UNINITIALIZED
        self._handshake_timed_out = False
        self._terminated = False
        # Reset per exclusive request; correlated requests share it, so it
        # shows the latest update from any of them
        self.progress = ProgressState()
        self.last_error: str | None = None

    @property
    def readiness(self) -> Readiness:
        return self._readiness

    @property
    def is_ready(self) -> bool:
        return self._readiness is Readiness.READY and not self._terminated

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    @property
    def transport(self) -> WorkerTransport | None:
        return self._transport

    @property
    def pending_count(self) -> int:
        """Number of dispatched requests still waiting for a reply."""
        return len(self._correlator)

    async def __aenter__(self) -> WorkerLifecycleManager:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.terminate()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create the worker, send ``init`` and arm the handshake watchdog.

        Returns once ``init`` is sent; readiness arrives asynchronously. A
        missed handshake deadline only records a warning.

        Raises:
            InitializationError: If the worker cannot be created.
        """
        if self._terminated:
            raise InitializationError(f"The {self.kind.value} worker has been shut down")
        if self._transport is not None:
            return

        try:
            self._transport = self._transport_factory(self.kind)
            await self._transport.open(self._on_message, self._on_transport_closed)
            self._readiness = Readiness.INITIALIZING
            await self._transport.send(init_message(**self.init_flags))
        except (OSError, TransportClosedError) as e:
            self._readiness = Readiness.FAILED
            self.last_error = f"Could not start the {self.kind.value} worker"
            log.error("Worker creation failed", kind=self.kind.value, error=str(e), exc_info=True)
            raise InitializationError(self.last_error, cause=e) from e

        log.debug("Worker initializing", kind=self.kind.value, flags=self.init_flags)
        self._handshake_task = asyncio.create_task(
            self._watch_handshake(), name=f"{self.kind.value}-handshake"
        )

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until the worker is ready; report whether it is."""
        if self._terminated or self._readiness is Readiness.UNINITIALIZED:
            return False
        if self._readiness is Readiness.FAILED and not self._handshake_timed_out:
            return False
        await wait_for_event(self._ready, self.handshake_timeout if timeout is None else timeout)
        return self.is_ready

    async def terminate(self) -> None:
        """Stop the worker and drop all pending replies. Idempotent."""
        if self._terminated:
            return
        self._terminated = True
        self._ready.clear()

        if self._handshake_task is not None and not self._handshake_task.done():
            self._handshake_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._handshake_task

        dropped = self._correlator.reject_all(WorkerTerminatedError(self.kind.value))
        if self._transport is not None:
            await self._transport.close()

        log.debug("Worker terminated", kind=self.kind.value, dropped_replies=dropped)

    async def _watch_handshake(self) -> None:
        if await wait_for_event(self._ready, self.handshake_timeout):
            return
        if self._readiness is Readiness.INITIALIZING:
            self._readiness = Readiness.FAILED
            self._handshake_timed_out = True
            self.last_error = (
                f"The {self.kind.value} worker did not signal readiness "
                f"within {self.handshake_timeout:g}s"
            )
            log.warning("Worker handshake timed out", kind=self.kind.value)

    def _on_transport_closed(self, reason: str | None) -> None:
        if self._terminated:
            return
        self._readiness = Readiness.FAILED
        self._handshake_timed_out = False
        self._ready.clear()
        self.last_error = f"The {self.kind.value} worker stopped unexpectedly"
        dropped = self._correlator.reject_all(BackendError(self.last_error))
        log.error("Worker lost", kind=self.kind.value, reason=reason, dropped_replies=dropped)

    # ------------------------------------------------------------------
    # Message routing
    # ------------------------------------------------------------------

    def _on_message(self, envelope: Envelope) -> None:
        if self._terminated:
            return

        if envelope.id is not None:
            self._route_reply(envelope)
            return

        if envelope.type is MessageType.INITIALIZED:
            self._readiness = Readiness.READY
            self._handshake_timed_out = False
            self.last_error = None
            self._ready.set()
            log.debug("Worker ready", kind=self.kind.value)
        elif envelope.type is MessageType.PROGRESS:
            self._update_progress(envelope.payload, envelope.message)
        elif envelope.type is MessageType.ERROR:
            text = _error_text(envelope)
            if self._readiness is not Readiness.READY:
                self._readiness = Readiness.FAILED
                self._handshake_timed_out = False
                self.last_error = text
                log.error("Worker initialization failed", kind=self.kind.value, error=text)
            else:
                log.warning("Unsolicited worker error", kind=self.kind.value, error=text)
        else:
            log.debug("Ignoring uncorrelated message", kind=self.kind.value, type=envelope.type)

    def _route_reply(self, envelope: Envelope) -> None:
        assert envelope.id is not None
        if envelope.type is MessageType.PROGRESS:
            if envelope.id in self._correlator:
                percent = self._update_progress(envelope.payload, envelope.message)
                self._correlator.progress(envelope.id, percent, envelope.message)
        elif envelope.type is MessageType.SUCCESS:
            self._correlator.resolve(envelope.id, envelope.payload)
        elif envelope.type is MessageType.ERROR:
            text = _error_text(envelope)
            self._correlator.reject(envelope.id, BackendError(text))
        else:
            log.warning("Unexpected correlated message", kind=self.kind.value, type=envelope.type)

    def _update_progress(self, payload: Any, message: str | None) -> int:
        percent = clamp_percent(payload)
        if percent is None:
            percent = self.progress.percent
        self.progress = ProgressState(
            percent=percent,
            message=message if message is not None else self.progress.message,
        )
        return percent

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        payload: dict[str, Any],
        *,
        timeout: float | None = None,
        on_progress: ProgressCallback | None = None,
        exclusive: bool = True,
    ) -> Any:
        """Send a ``convert`` request and wait for its correlated reply.

        Args:
            payload: ``{file, source_format, target_format, ...options}``
            timeout: Deadline in seconds (defaults to ``conversion_timeout``)
            on_progress: Receives ``(percent, message)`` for this request only
            exclusive: Serialize with other exclusive requests on this worker;
                pass False to keep several requests in flight at once

        Returns:
            The ``success`` payload.

        Raises:
            InitializationError: Worker not ready after the grace wait.
            ConversionTimeoutError: No terminal reply before the deadline.
            BackendError: The worker reported a failure.
        """
        await self._ensure_ready()
        deadline = self.conversion_timeout if timeout is None else timeout
        if exclusive:
            async with self._exclusive:
                return await self._send_and_wait(payload, deadline, on_progress, reset=True)
        return await self._send_and_wait(payload, deadline, on_progress, reset=False)

    async def _ensure_ready(self) -> None:
        if self._terminated:
            raise InitializationError(f"The {self.kind.value} worker has been shut down")
        if self._readiness is Readiness.READY:
            return
        if self._readiness is Readiness.UNINITIALIZED:
            raise InitializationError(f"The {self.kind.value} worker has not been started")
        if self._readiness is Readiness.FAILED and not self._handshake_timed_out:
            raise InitializationError(
                self.last_error or f"The {self.kind.value} worker failed to start"
            )

        # Still starting (or late after the handshake deadline): wait once
        if await wait_for_event(self._ready, self.readiness_grace) and self.is_ready:
            return
        raise InitializationError(
            self.last_error or f"The {self.kind.value} worker is not ready yet"
        )

    async def _send_and_wait(
        self,
        payload: dict[str, Any],
        deadline: float,
        on_progress: ProgressCallback | None,
        reset: bool,
    ) -> Any:
        assert self._transport is not None
        correlation_id, reply = self._correlator.open(on_progress=on_progress)
        if reset:
            self.progress = ProgressState()

        try:
            try:
                await self._transport.send(convert_message(payload, correlation_id))
            except TransportClosedError as e:
                raise InitializationError(
                    f"The {self.kind.value} worker is not running", cause=e
                ) from e

            log.debug(
                "Dispatched conversion",
                kind=self.kind.value,
                correlation_id=correlation_id,
                timeout=deadline,
            )
            return await race(reply, deadline, name=f"{self.kind.value.capitalize()} conversion")
        except ConversionTimeoutError:
            log.warning(
                "Conversion timed out; worker may still be busy",
                kind=self.kind.value,
                correlation_id=correlation_id,
                timeout=deadline,
            )
            raise
        finally:
            self._correlator.discard(correlation_id)


def _error_text(envelope: Envelope) -> str:
    if isinstance(envelope.payload, str) and envelope.payload:
        return envelope.payload
    if envelope.message:
        return envelope.message
    return "Unknown worker error"


def create_worker(
    kind: WorkerKind | str,
    settings: ConvertkitSettings,
    transport_factory: TransportFactory | None = None,
) -> WorkerLifecycleManager:
    """Build a manager for ``kind`` from settings (not started)."""
    kind = WorkerKind(kind)
    init_flags: dict[str, Any] = {}
    if kind is WorkerKind.DOCUMENT:
        init_flags = {
            "enable_ocr": settings.document.enable_ocr,
            "ocr_language": settings.document.ocr_language,
        }

    if transport_factory is None:

        def transport_factory(k: WorkerKind) -> WorkerTransport:
            return SubprocessTransport(
                k.value,
                python_executable=settings.workers.python_executable,
                terminate_timeout=settings.timeouts.terminate,
                log_level=settings.log_level,
            )

    return WorkerLifecycleManager(
        kind,
        transport_factory,
        init_flags=init_flags,
        handshake_timeout=settings.timeouts.handshake,
        conversion_timeout=settings.timeouts.conversion,
        readiness_grace=settings.timeouts.readiness_grace,
    )
