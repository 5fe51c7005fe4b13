"""Raster image re-encoding with Pillow."""

from __future__ import annotations

import io
from collections.abc import Mapping
from typing import Any

from PIL import Image, UnidentifiedImageError

from convertkit.backends.base import BackendProgress, BaseBackend, report
from convertkit.config.constants import DEFAULT_IMAGE_QUALITY, IMAGE_FORMATS
from convertkit.exceptions import BackendError
from convertkit.utils.logging import get_logger

log = get_logger(__name__)

# Extension -> Pillow save format
PILLOW_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "gif": "GIF",
    "bmp": "BMP",
    "tiff": "TIFF",
}

# Formats without an alpha channel
_OPAQUE_FORMATS = {"jpg", "jpeg", "bmp"}


class ImageBackend(BaseBackend):
    """Re-encode images between raster formats.

    Transparent images are flattened onto white for formats without alpha.
    """

    name = "pillow"
    sources = frozenset(IMAGE_FORMATS[0])
    targets = frozenset(IMAGE_FORMATS[1])

    def __init__(self, quality: int = DEFAULT_IMAGE_QUALITY) -> None:
        self.quality = quality

    def convert(
        self,
        data: bytes,
        source_format: str,
        target_format: str,
        options: Mapping[str, Any] | None = None,
        on_progress: BackendProgress | None = None,
    ) -> bytes:
        options = options or {}
        target = target_format.lower()
        save_format = PILLOW_FORMATS.get(target)
        if save_format is None:
            raise BackendError(f"Unsupported image format: {target_format}")

        report(on_progress, 10, "Decoding image")
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            log.debug("Pillow could not decode input", source=source_format, error=str(e))
            raise BackendError(
                f"The file appears to be corrupted or not a valid {source_format.upper()} file",
                cause=e,
            ) from e

        report(on_progress, 50, "Encoding image")
        img = self._prepare_mode(img, target)

        save_kwargs: dict[str, Any] = {}
        if save_format in ("JPEG", "WEBP"):
            save_kwargs["quality"] = int(options.get("quality", self.quality))

        buffer = io.BytesIO()
        try:
            img.save(buffer, format=save_format, **save_kwargs)
        except (OSError, ValueError) as e:
            raise BackendError(
                f"Could not encode {target_format.upper()} image", cause=e
            ) from e

        report(on_progress, 100)
        return buffer.getvalue()

    @staticmethod
    def _prepare_mode(img: Image.Image, target: str) -> Image.Image:
        has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)

        if target in _OPAQUE_FORMATS:
            if has_alpha:
                rgba = img.convert("RGBA")
                background = Image.new("RGB", rgba.size, (255, 255, 255))
                background.paste(rgba, mask=rgba.split()[3])
                return background
            if img.mode != "RGB":
                return img.convert("RGB")
            return img

        if target == "gif":
            return img.convert("P", palette=Image.Palette.ADAPTIVE) if img.mode not in ("P", "L") else img

        if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
            return img.convert("RGBA" if has_alpha else "RGB")
        return img
