"""Transports carrying envelopes to and from a background worker.

A transport is the "context reference" a worker handle owns. The lifecycle
manager only needs four things from it: open it with a message listener,
send an envelope, learn when it dies, and close it.
"""

from __future__ import annotations

import asyncio
import contextlib
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable

from convertkit.config.constants import DEFAULT_TERMINATE_TIMEOUT
from convertkit.core.protocol import Envelope, decode_envelope, encode_envelope
from convertkit.exceptions import ProtocolError
from convertkit.utils.logging import get_logger

log = get_logger(__name__)

MessageListener = Callable[[Envelope], None]
CloseListener = Callable[[str | None], None]

# Largest single envelope line accepted from a worker (base64 of a big file)
_MAX_LINE_BYTES = 256 * 1024 * 1024


class TransportClosedError(ConnectionError):
    """Sending on a transport whose worker has gone away."""


class WorkerTransport(ABC):
    """Abstract bidirectional envelope channel to one worker."""

    @abstractmethod
    async def open(self, on_message: MessageListener, on_close: CloseListener) -> None:
        """Start the worker and begin delivering its envelopes to ``on_message``.

        ``on_close`` is called once if the worker goes away on its own.
        """

    @abstractmethod
    async def send(self, envelope: Envelope) -> None:
        """Deliver one envelope to the worker."""

    @abstractmethod
    async def close(self) -> None:
        """Stop the worker. Safe to call more than once."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether envelopes can currently be sent."""


class SubprocessTransport(WorkerTransport):
    """Runs ``python -m convertkit.workers.runtime <kind>`` and speaks JSON lines.

    stdin/stdout carry envelopes; the worker's stderr is forwarded into the
    parent log at debug level.
    """

    def __init__(
        self,
        kind: str,
        python_executable: str | None = None,
        terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT,
        log_level: str = "INFO",
    ) -> None:
        self.kind = kind
        self.python_executable = python_executable or sys.executable
        self.terminate_timeout = terminate_timeout
        self.log_level = log_level

        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._closing = False

    @property
    def is_open(self) -> bool:
        return (
            self._process is not None and self._process.returncode is None and not self._closing
        )

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def open(self, on_message: MessageListener, on_close: CloseListener) -> None:
        self._process = await asyncio.create_subprocess_exec(
            self.python_executable,
            "-m",
            "convertkit.workers.runtime",
            self.kind,
            "--log-level",
            self.log_level,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_MAX_LINE_BYTES,
        )
        log.debug("Worker process started", kind=self.kind, pid=self._process.pid)

        self._reader_task = asyncio.create_task(
            self._read_stdout(on_message, on_close), name=f"{self.kind}-worker-reader"
        )
        self._stderr_task = asyncio.create_task(
            self._read_stderr(), name=f"{self.kind}-worker-stderr"
        )

    async def send(self, envelope: Envelope) -> None:
        process = self._process
        if process is None or process.stdin is None or not self.is_open:
            raise TransportClosedError(f"{self.kind} worker is not running")

        async with self._send_lock:
            try:
                process.stdin.write(encode_envelope(envelope))
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise TransportClosedError(f"{self.kind} worker pipe closed") from e

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True

        process = self._process
        if process is not None and process.returncode is None:
            if process.stdin is not None:
                process.stdin.close()
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
            except asyncio.TimeoutError:
                log.warning("Worker did not exit, killing", kind=self.kind, pid=process.pid)
                process.kill()
                await process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if process is not None:
            log.debug("Worker process stopped", kind=self.kind, returncode=process.returncode)

    async def _read_stdout(self, on_message: MessageListener, on_close: CloseListener) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        reason: str | None = None

        while True:
            try:
                line = await stdout.readline()
            except (asyncio.LimitOverrunError, ValueError) as e:
                reason = f"oversized message from worker: {e}"
                break
            if not line:
                break
            try:
                envelope = decode_envelope(line)
            except ProtocolError as e:
                log.warning("Ignoring malformed worker message", kind=self.kind, error=str(e))
                continue
            on_message(envelope)

        if not self._closing:
            if reason is not None and self._process.returncode is None:
                # Still alive, blocked writing the line nobody will read
                self._process.kill()
            returncode = await self._process.wait()
            reason = reason or f"worker exited with code {returncode}"
            log.warning("Worker process went away", kind=self.kind, reason=reason)
            on_close(reason)

    async def _read_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        async for raw in self._process.stderr:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                log.debug("worker", kind=self.kind, line=line)
