"""Format backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from convertkit.backends.base import BaseBackend
from convertkit.backends.code import CodeBackend
from convertkit.backends.document import DocumentBackend
from convertkit.backends.image import ImageBackend
from convertkit.backends.transcoder import FFmpegTranscoder

if TYPE_CHECKING:
    from convertkit.config.settings import ConvertkitSettings


def create_backend(kind: str, settings: ConvertkitSettings | None = None) -> BaseBackend:
    """Create the in-process backend for a worker kind or category name."""
    from convertkit.config.settings import ConvertkitSettings

    settings = settings or ConvertkitSettings()
    if kind == "image":
        return ImageBackend(quality=settings.image.quality)
    if kind == "document":
        return DocumentBackend(ocr_language=settings.document.ocr_language)
    if kind in ("minify", "unminify"):
        return CodeBackend(mode=kind)
    raise ValueError(f"No in-process backend for {kind!r}")


def create_transcoder(settings: ConvertkitSettings | None = None) -> FFmpegTranscoder:
    """Create the media transcoder from settings."""
    from convertkit.config.settings import ConvertkitSettings

    settings = settings or ConvertkitSettings()
    return FFmpegTranscoder(
        ffmpeg_path=settings.transcoder.ffmpeg_path,
        audio_bitrate_kbps=settings.transcoder.audio_bitrate_kbps,
        gif_filter=settings.transcoder.gif_filter,
    )


__all__ = [
    "BaseBackend",
    "CodeBackend",
    "DocumentBackend",
    "FFmpegTranscoder",
    "ImageBackend",
    "create_backend",
    "create_transcoder",
]
