"""Pytest configuration and fixtures."""

import io
import os
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from convertkit.core.protocol import (
    Envelope,
    MessageType,
    error_message,
    initialized_message,
    progress_message,
    success_message,
)
from convertkit.core.transport import TransportClosedError, WorkerTransport
from convertkit.core.worker import WorkerKind

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture(scope="session", autouse=True)
def cleanup_after_all_tests():
    """Remove log directories left behind by CLI tests."""
    yield

    logs = PROJECT_ROOT / ".logs"
    if logs.exists():
        shutil.rmtree(logs, ignore_errors=True)


@pytest.fixture
def isolated_settings(tmp_path, monkeypatch):
    """Run in an isolated directory without convertkit.yaml or CONVERTKIT_ env."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("CONVERTKIT_"):
            monkeypatch.delenv(key)

    from convertkit.config.settings import get_settings

    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


Responder = Callable[["FakeTransport", Envelope], None]


class FakeTransport(WorkerTransport):
    """Scripted in-memory worker.

    Records every envelope sent to it. ``auto_init`` answers ``init`` with
    ``initialized``; ``responder`` (if set) is called for each ``convert``
    and may reply through :meth:`reply` at once or later.
    """

    def __init__(
        self,
        kind: WorkerKind = WorkerKind.IMAGE,
        *,
        auto_init: bool = True,
        responder: Responder | None = None,
        fail_open: bool = False,
    ) -> None:
        self.kind = kind
        self.auto_init = auto_init
        self.responder = responder
        self.fail_open = fail_open
        self.sent: list[Envelope] = []
        self.closed = False
        self._on_message: Callable[[Envelope], None] | None = None
        self._on_close: Callable[[str | None], None] | None = None

    @property
    def is_open(self) -> bool:
        return self._on_message is not None and not self.closed

    @property
    def converts(self) -> list[Envelope]:
        """``convert`` envelopes sent so far."""
        return [e for e in self.sent if e.type is MessageType.CONVERT]

    async def open(self, on_message, on_close) -> None:
        if self.fail_open:
            raise OSError("cannot spawn worker")
        self._on_message = on_message
        self._on_close = on_close

    async def send(self, envelope: Envelope) -> None:
        if not self.is_open:
            raise TransportClosedError("fake worker is closed")
        self.sent.append(envelope)
        if envelope.type is MessageType.INIT and self.auto_init:
            self.deliver(initialized_message())
        elif envelope.type is MessageType.CONVERT and self.responder is not None:
            self.responder(self, envelope)

    async def close(self) -> None:
        self.closed = True

    def deliver(self, envelope: Envelope) -> None:
        """Push an envelope to the manager as if the worker sent it."""
        assert self._on_message is not None
        self._on_message(envelope)

    def reply(self, request: Envelope, payload: Any) -> None:
        self.deliver(success_message(payload, request.id))

    def fail(self, request: Envelope, text: str) -> None:
        self.deliver(error_message(text, request.id))

    def crash(self, reason: str = "worker exited with code 1") -> None:
        assert self._on_close is not None
        self.closed = True
        self._on_close(reason)


def _echo(transport: FakeTransport, request: Envelope) -> None:
    """Reply with progress 50 then the input bytes upper-cased."""
    payload = request.payload
    transport.deliver(progress_message(50, "Halfway", request.id))
    transport.deliver(progress_message(100, None, request.id))
    transport.reply(request, {"file": payload["file"].upper()})


@pytest.fixture
def fake_transport_factory():
    """Factory producing one FakeTransport per worker kind, kept for inspection."""
    created: dict[WorkerKind, FakeTransport] = {}

    def make(**kwargs: Any) -> Callable[[WorkerKind], FakeTransport]:
        def factory(kind: WorkerKind) -> FakeTransport:
            transport = FakeTransport(kind, **kwargs)
            created[kind] = transport
            return transport

        factory.created = created  # type: ignore[attr-defined]
        return factory

    return make


@pytest.fixture
def png_bytes() -> bytes:
    """A small RGBA PNG."""
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGBA", (8, 6), (200, 30, 30, 128)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def echo_responder() -> Responder:
    """Responder that reports progress and returns the input upper-cased."""
    return _echo
