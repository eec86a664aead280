"""Tests for herostudio.core.images — reference optimisation and cover resize."""

from __future__ import annotations

import base64
import io
import time

import pytest
from PIL import Image

from herostudio.core import images
from herostudio.core.errors import ResizePostProcessFailure
from herostudio.core.images import optimize_reference_image, resize_to_cover, scaled_size
from herostudio.core.models import ReferenceImage, parse_data_uri


def _reference(raw: bytes, mime_type: str = "image/png", description: str | None = None):
    return ReferenceImage(
        data=base64.b64encode(raw).decode("ascii"),
        mime_type=mime_type,
        description=description,
    )


def _size_of(image: ReferenceImage) -> tuple[int, int]:
    with Image.open(io.BytesIO(image.decode())) as picture:
        return picture.size


class TestScaledSize:
    def test_landscape(self):
        assert scaled_size(3000, 1000, 1536) == (1536, 512)

    def test_portrait(self):
        assert scaled_size(1000, 3000, 1536) == (512, 1536)


class TestOptimizeReferenceImage:
    """Downscaling of oversized references, with fallback to the original."""

    @pytest.mark.asyncio
    async def test_large_image_downscaled(self, image_bytes):
        original = _reference(image_bytes(3000, 1000), description="face")
        optimized = await optimize_reference_image(original)

        width, height = _size_of(optimized)
        assert max(width, height) <= 1536
        assert width / height == pytest.approx(3.0, rel=0.01)
        assert optimized.mime_type == "image/jpeg"
        assert optimized.description == "face"

    @pytest.mark.asyncio
    async def test_small_image_unchanged(self, image_bytes):
        original = _reference(image_bytes(100, 100))
        optimized = await optimize_reference_image(original)
        assert optimized is original

    @pytest.mark.asyncio
    async def test_image_at_limit_unchanged(self, image_bytes):
        original = _reference(image_bytes(1536, 1536))
        assert await optimize_reference_image(original) is original

    @pytest.mark.asyncio
    async def test_rgba_input_converted_for_jpeg(self):
        picture = Image.new("RGBA", (2000, 2000), (10, 20, 30, 128))
        buffer = io.BytesIO()
        picture.save(buffer, format="PNG")

        optimized = await optimize_reference_image(_reference(buffer.getvalue()))
        assert optimized.mime_type == "image/jpeg"
        assert _size_of(optimized) == (1536, 1536)

    @pytest.mark.asyncio
    async def test_corrupt_data_falls_back(self):
        original = _reference(b"definitely not an image")
        assert await optimize_reference_image(original) is original

    @pytest.mark.asyncio
    async def test_slow_decode_falls_back(self, monkeypatch, image_bytes):
        def slow(image, max_edge, quality):
            time.sleep(0.5)
            return image.model_copy(update={"mime_type": "image/jpeg"})

        monkeypatch.setattr(images, "_downscale_reference", slow)
        original = _reference(image_bytes(3000, 1000))
        result = await optimize_reference_image(original, timeout=0.05)
        assert result is original

    @pytest.mark.asyncio
    async def test_custom_max_edge(self, image_bytes):
        optimized = await optimize_reference_image(_reference(image_bytes(800, 400)), max_edge=400)
        assert _size_of(optimized) == (400, 200)


class TestResizeToCover:
    """Cover-fit of the final image to a custom canvas."""

    @pytest.mark.asyncio
    async def test_exact_target_size(self, image_uri):
        result = await resize_to_cover(image_uri(1024, 576), 1920, 1200)

        mime_type, payload = parse_data_uri(result)
        assert mime_type == "image/png"
        with Image.open(io.BytesIO(base64.b64decode(payload))) as picture:
            assert picture.size == (1920, 1200)

    @pytest.mark.asyncio
    async def test_crop_is_centered(self):
        # Left half red, right half blue; a square crop from the middle keeps both.
        picture = Image.new("RGB", (400, 100), (255, 0, 0))
        picture.paste((0, 0, 255), (200, 0, 400, 100))
        buffer = io.BytesIO()
        picture.save(buffer, format="PNG")
        uri = "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()

        result = await resize_to_cover(uri, 100, 100)
        _, payload = parse_data_uri(result)
        with Image.open(io.BytesIO(base64.b64decode(payload))) as out:
            out = out.convert("RGB")
            assert out.getpixel((5, 50))[0] > 200
            assert out.getpixel((95, 50))[2] > 200

    @pytest.mark.asyncio
    async def test_invalid_uri_raises(self):
        with pytest.raises(ResizePostProcessFailure):
            await resize_to_cover("not-a-data-uri", 100, 100)

    @pytest.mark.asyncio
    async def test_undecodable_payload_raises(self):
        with pytest.raises(ResizePostProcessFailure):
            await resize_to_cover("data:image/png;base64,QUJD", 100, 100)

    @pytest.mark.asyncio
    async def test_non_positive_target_raises(self, image_uri):
        with pytest.raises(ResizePostProcessFailure):
            await resize_to_cover(image_uri(10, 10), 0, 100)
