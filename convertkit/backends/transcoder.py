"""Audio and video transcoding through an ffmpeg subprocess.

ffmpeg runs as its own OS process, so transcoding never blocks the event
loop. Progress is read from ``-progress pipe:1`` and scaled by the input
duration that ffmpeg prints on stderr.
"""

from __future__ import annotations

import asyncio
import re
import shutil
import tempfile
from collections import deque
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import anyio

from convertkit.backends.base import BackendProgress, report
from convertkit.config.constants import (
    AUDIO_FORMATS,
    DEFAULT_AUDIO_BITRATE_KBPS,
    DEFAULT_FFMPEG_PATH,
    DEFAULT_GIF_FILTER,
    VIDEO_FORMATS,
)
from convertkit.exceptions import BackendError
from convertkit.utils.logging import get_logger

log = get_logger(__name__)

_DURATION = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

# Audio codecs by target extension
AUDIO_CODECS = {
    "mp3": ["-c:a", "libmp3lame"],
    "ogg": ["-c:a", "libvorbis"],
    "wav": ["-c:a", "pcm_s16le"],
}

# Video codecs by target extension
VIDEO_CODECS = {
    "mp4": [
        "-c:v", "libx264", "-pix_fmt", "yuv420p",
        "-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2",
        "-c:a", "aac", "-movflags", "+faststart",
    ],
    "webm": ["-c:v", "libvpx-vp9", "-b:v", "0", "-crf", "33", "-c:a", "libopus"],
}

# Number of stderr lines kept for error reporting
_STDERR_TAIL = 40


def describe_ffmpeg_failure(stderr: str, source_format: str, target_format: str) -> str:
    """Map ffmpeg stderr output to a user-facing message."""
    src, tgt = source_format.upper(), target_format.upper()
    media = "audio" if target_format in AUDIO_FORMATS[1] else "video"
    if "Unsupported codec" in stderr or "Unknown encoder" in stderr:
        return f"Unsupported {media} codec for {src} to {tgt} conversion"
    if "Invalid data" in stderr or "moov atom not found" in stderr:
        return f"The file appears to be corrupted or not a valid {src} file"
    return f"{media.capitalize()} conversion failed: could not convert {src} to {tgt}"


class FFmpegTranscoder:
    """Transcode audio and video files with ffmpeg."""

    name = "ffmpeg"
    sources = frozenset(AUDIO_FORMATS[0]) | frozenset(VIDEO_FORMATS[0])
    targets = frozenset(AUDIO_FORMATS[1]) | frozenset(VIDEO_FORMATS[1])

    def __init__(
        self,
        ffmpeg_path: str = DEFAULT_FFMPEG_PATH,
        audio_bitrate_kbps: int = DEFAULT_AUDIO_BITRATE_KBPS,
        gif_filter: str = DEFAULT_GIF_FILTER,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.audio_bitrate_kbps = audio_bitrate_kbps
        self.gif_filter = gif_filter

    @property
    def available(self) -> bool:
        """Whether the ffmpeg executable can be found."""
        return shutil.which(self.ffmpeg_path) is not None

    def build_arguments(
        self,
        input_path: Path,
        output_path: Path,
        target_format: str,
        options: Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Command line for one conversion."""
        options = options or {}
        args = [self.ffmpeg_path, "-hide_banner", "-nostdin", "-y", "-i", str(input_path)]

        if target_format in AUDIO_CODECS:
            bitrate = int(options.get("bitrate_kbps", self.audio_bitrate_kbps))
            args += ["-vn", *AUDIO_CODECS[target_format]]
            if target_format != "wav":
                args += ["-b:a", f"{bitrate}k"]
        elif target_format == "gif":
            args += ["-vf", options.get("gif_filter", self.gif_filter), "-loop", "0"]
        elif target_format in VIDEO_CODECS:
            args += VIDEO_CODECS[target_format]
        else:
            raise BackendError(f"Unsupported media format: {target_format}")

        args += ["-progress", "pipe:1", "-nostats", str(output_path)]
        return args

    async def convert(
        self,
        data: bytes,
        source_format: str,
        target_format: str,
        options: Mapping[str, Any] | None = None,
        on_progress: BackendProgress | None = None,
    ) -> bytes:
        """Transcode ``data``; cancelling the call kills ffmpeg.

        Raises:
            BackendError: If ffmpeg is missing, fails or produces nothing
        """
        source = source_format.lower()
        target = target_format.lower()

        with tempfile.TemporaryDirectory(prefix="convertkit-ffmpeg-") as tmp:
            input_path = Path(tmp) / f"input.{source}"
            output_path = Path(tmp) / f"output.{target}"
            await anyio.Path(input_path).write_bytes(data)

            args = self.build_arguments(input_path, output_path, target, options)
            log.debug("Running ffmpeg", args=" ".join(args))
            report(on_progress, 0, "Transcoding")

            try:
                process = await asyncio.create_subprocess_exec(
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as e:
                raise BackendError(
                    f"ffmpeg was not found ({self.ffmpeg_path}); install it to convert media",
                    cause=e,
                ) from e

            state = _ProgressTracker(on_progress)
            try:
                await asyncio.gather(
                    state.read_progress(process.stdout),
                    state.read_stderr(process.stderr),
                )
                returncode = await process.wait()
            finally:
                if process.returncode is None:
                    process.kill()
                    await process.wait()

            stderr = "\n".join(state.stderr_tail)
            if returncode != 0:
                log.error(
                    "ffmpeg failed",
                    source=source,
                    target=target,
                    returncode=returncode,
                    stderr=stderr,
                )
                raise BackendError(describe_ffmpeg_failure(stderr, source, target))

            output = anyio.Path(output_path)
            if not await output.exists() or (await output.stat()).st_size == 0:
                raise BackendError("Output file not generated")

            result = await output.read_bytes()

        report(on_progress, 100)
        return result


class _ProgressTracker:
    """Turns ffmpeg ``-progress`` key/value lines into percentages."""

    def __init__(self, on_progress: BackendProgress | None) -> None:
        self.on_progress = on_progress
        self.duration_us: int | None = None
        self.percent = 0
        self.stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL)

    async def read_stderr(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            self.stderr_tail.append(line)
            if self.duration_us is None:
                match = _DURATION.search(line)
                if match:
                    hours, minutes, seconds = match.groups()
                    total = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
                    self.duration_us = int(total * 1_000_000) or None

    async def read_progress(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        async for raw in stream:
            key, _, value = raw.decode("utf-8", errors="replace").strip().partition("=")
            if key == "progress" and value == "end":
                self._emit(100)
            elif key in ("out_time_us", "out_time_ms") and self.duration_us:
                # out_time_ms is also microseconds in ffmpeg's output
                try:
                    elapsed = int(value)
                except ValueError:
                    continue
                self._emit(min(99, int(elapsed / self.duration_us * 100)))

    def _emit(self, percent: int) -> None:
        if percent > self.percent:
            self.percent = percent
            report(self.on_progress, percent)
