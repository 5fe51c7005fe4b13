"""Tests for the Pillow image backend."""

import io

import pytest
from PIL import Image

from convertkit.backends.image import ImageBackend
from convertkit.exceptions import BackendError


def open_image(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestImageBackend:
    """Tests for ImageBackend.convert()."""

    @pytest.mark.parametrize(
        ("target", "pil_format"),
        [("webp", "WEBP"), ("jpg", "JPEG"), ("gif", "GIF"), ("bmp", "BMP"), ("png", "PNG")],
    )
    def test_targets(self, png_bytes, target, pil_format):
        out = ImageBackend().convert(png_bytes, "png", target)

        img = open_image(out)
        assert img.format == pil_format
        assert img.size == (8, 6)

    def test_alpha_flattened_for_jpeg(self, png_bytes):
        """Test that transparency is composited onto white for opaque formats."""
        out = ImageBackend().convert(png_bytes, "png", "jpg")

        img = open_image(out)
        assert img.mode == "RGB"
        r, g, b = img.getpixel((0, 0))
        assert r > 200 and g > 100

    def test_quality_option(self):
        buffer = io.BytesIO()
        Image.effect_noise((64, 64), 80).convert("RGB").save(buffer, format="PNG")
        backend = ImageBackend(quality=95)

        high = backend.convert(buffer.getvalue(), "png", "jpg")
        low = backend.convert(buffer.getvalue(), "png", "jpg", {"quality": 10})

        assert len(low) < len(high)

    def test_progress(self, png_bytes):
        seen: list[int] = []
        ImageBackend().convert(png_bytes, "png", "webp", on_progress=lambda p, m: seen.append(p))
        assert seen == [10, 50, 100]

    def test_corrupted_input(self):
        with pytest.raises(BackendError, match="corrupted or not a valid PNG file"):
            ImageBackend().convert(b"not an image", "png", "webp")

    def test_unsupported_target(self, png_bytes):
        with pytest.raises(BackendError, match="Unsupported image format"):
            ImageBackend().convert(png_bytes, "png", "svg")

    def test_supports(self):
        backend = ImageBackend()
        assert backend.supports("tiff", "png")
        assert not backend.supports("png", "tiff")
