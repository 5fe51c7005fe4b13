"""Background worker process.

Started by the parent as ``python -m convertkit.workers.runtime <kind>``.
Reads one envelope per line on stdin, writes replies on stdout, and logs
to stderr. Requests are handled one at a time in arrival order; every
reply echoes the request's correlation id.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterable
from typing import Any, BinaryIO

import typer

from convertkit.backends import BaseBackend, DocumentBackend, create_backend
from convertkit.backends.code import size_stats
from convertkit.config import get_settings
from convertkit.core.protocol import (
    Envelope,
    MessageType,
    decode_envelope,
    encode_envelope,
    error_message,
    initialized_message,
    progress_message,
    success_message,
)
from convertkit.core.worker import WorkerKind
from convertkit.exceptions import BackendError, ProtocolError
from convertkit.utils.fs import mime_type_for
from convertkit.utils.logging import get_logger, setup_worker_logging

log = get_logger(__name__)

_MIME_FAMILIES = {
    WorkerKind.IMAGE: "image",
    WorkerKind.DOCUMENT: "application",
    WorkerKind.MINIFY: "text",
    WorkerKind.UNMINIFY: "text",
}


class WorkerRuntime:
    """Serves ``init`` and ``convert`` envelopes for one worker kind."""

    def __init__(self, kind: WorkerKind | str, backend: BaseBackend, output: BinaryIO) -> None:
        self.kind = WorkerKind(kind)
        self.backend = backend
        self.output = output
        self.initialized = False

    def send(self, envelope: Envelope) -> None:
        self.output.write(encode_envelope(envelope))
        self.output.flush()

    def serve(self, lines: Iterable[bytes]) -> None:
        """Handle envelopes until the input closes."""
        for line in lines:
            if not line.strip():
                continue
            try:
                envelope = decode_envelope(line)
            except ProtocolError as e:
                log.warning("Ignoring malformed envelope", error=str(e))
                continue
            self.handle(envelope)
        log.debug("Input closed, worker exiting")

    def handle(self, envelope: Envelope) -> None:
        if envelope.type is MessageType.INIT:
            self._handle_init(envelope.payload or {})
        elif envelope.type is MessageType.CONVERT:
            self._handle_convert(envelope)
        else:
            log.warning("Unexpected envelope", type=envelope.type.value)

    def _handle_init(self, flags: dict[str, Any]) -> None:
        if self.kind is WorkerKind.DOCUMENT and flags.get("enable_ocr"):
            assert isinstance(self.backend, DocumentBackend)
            if flags.get("ocr_language"):
                self.backend.ocr_language = flags["ocr_language"]
            self.send(progress_message(message="Loading OCR engine"))
            try:
                self.backend.warm_up_ocr()
            except BackendError as e:
                log.error("OCR initialization failed", error=e.message)
                self.send(error_message(e.message))
                return
            self.send(progress_message(message="OCR engine ready"))

        self.initialized = True
        self.send(initialized_message())
        log.debug("Worker initialized", flags=flags)

    def _handle_convert(self, envelope: Envelope) -> None:
        correlation_id = envelope.id
        payload = dict(envelope.payload) if isinstance(envelope.payload, dict) else {}
        data = payload.pop("file", None)
        source = str(payload.pop("source_format", "")).lower()
        target = str(payload.pop("target_format", "") or source).lower()

        if not isinstance(data, bytes):
            self.send(error_message("Invalid convert request: no file data", correlation_id))
            return
        if self.kind is WorkerKind.DOCUMENT and source != "pdf":
            self.send(error_message(f"Unsupported conversion: {source} to {target}", correlation_id))
            return

        def on_progress(percent: int, message: str | None) -> None:
            self.send(progress_message(percent, message, correlation_id))

        log.debug("Converting", source=source, target=target, size=len(data))
        try:
            output = self.backend.convert(data, source, target, payload, on_progress=on_progress)
        except BackendError as e:
            log.warning("Conversion failed", source=source, target=target, error=e.message)
            self.send(error_message(e.message, correlation_id))
            return
        except Exception as e:
            log.error("Conversion crashed", source=source, target=target, error=str(e), exc_info=True)
            self.send(
                error_message(
                    f"Failed to convert {source.upper()} to {target.upper()}", correlation_id
                )
            )
            return

        reply: dict[str, Any] = {
            "file": output,
            "mime_type": mime_type_for(target, _MIME_FAMILIES[self.kind]),
        }
        if self.kind in (WorkerKind.MINIFY, WorkerKind.UNMINIFY):
            reply["stats"] = size_stats(len(data), len(output), self.kind.value)

        self.send(progress_message(100, None, correlation_id))
        self.send(success_message(reply, correlation_id))


def _claim_stdout() -> BinaryIO:
    """Reserve the real stdout for envelopes and send stray prints to stderr."""
    protocol_fd = os.dup(sys.stdout.fileno())
    os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
    sys.stdout = sys.stderr
    return os.fdopen(protocol_fd, "wb")


def main(
    kind: WorkerKind = typer.Argument(..., help="Worker kind to serve."),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level for stderr output."),
) -> None:
    """Run a conversion worker over stdin/stdout."""
    setup_worker_logging(kind.value, log_level)
    output = _claim_stdout()

    backend = create_backend(kind.value, get_settings())
    runtime = WorkerRuntime(kind, backend, output)
    try:
        runtime.serve(sys.stdin.buffer)
    finally:
        output.close()


if __name__ == "__main__":
    typer.run(main)
