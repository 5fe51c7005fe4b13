"""Tests for SubprocessTransport."""

import asyncio
import sys
from pathlib import Path

import pytest

from convertkit.core import transport as transport_module
from convertkit.core.protocol import MessageType, encode_envelope, initialized_message
from convertkit.core.transport import SubprocessTransport

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs an executable script")


def fake_worker(tmp_path: Path, body: str) -> str:
    """Write an executable that stands in for the worker interpreter."""
    script = tmp_path / "fake_worker"
    script.write_text(f"#!{sys.executable}\nimport sys, time\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return str(script)


class TestSubprocessTransport:
    """Tests for the worker subprocess transport."""

    async def test_oversized_line_closes_transport(self, tmp_path: Path, monkeypatch):
        """Test that a line over the limit kills the worker and reports it closed."""
        monkeypatch.setattr(transport_module, "_MAX_LINE_BYTES", 1024)
        ready = encode_envelope(initialized_message())
        executable = fake_worker(
            tmp_path,
            f"sys.stdout.buffer.write({ready!r})\n"
            "sys.stdout.write('x' * 5000 + '\\n')\n"
            "sys.stdout.flush()\n"
            "time.sleep(60)",
        )
        messages = []
        closed = asyncio.Event()
        reasons: list[str | None] = []

        def on_close(reason: str | None) -> None:
            reasons.append(reason)
            closed.set()

        transport = SubprocessTransport("image", python_executable=executable)
        await transport.open(lambda envelope: messages.append(envelope.type), on_close)
        try:
            await asyncio.wait_for(closed.wait(), timeout=10)
        finally:
            await transport.close()

        assert messages == [MessageType.INITIALIZED]
        assert len(reasons) == 1
        assert "oversized message" in reasons[0]
        assert not transport.is_open

    async def test_exit_reports_return_code(self, tmp_path: Path):
        executable = fake_worker(tmp_path, "sys.exit(3)")
        closed = asyncio.Event()
        reasons: list[str | None] = []

        def on_close(reason: str | None) -> None:
            reasons.append(reason)
            closed.set()

        transport = SubprocessTransport("image", python_executable=executable)
        await transport.open(lambda envelope: None, on_close)
        await asyncio.wait_for(closed.wait(), timeout=10)
        await transport.close()

        assert reasons == ["worker exited with code 3"]
