"""Reference image optimisation and output resizing.

Two Pillow-based operations bracket every model call:

- **Before**: oversized reference images are downscaled and re-encoded as
  JPEG so the request stays small.  This step can never fail a generation;
  a corrupt or slow-to-decode image is simply sent as-is.
- **After**: when the caller asked for a custom pixel size, the returned
  image is cover-fitted to that box (scaled to cover, then center-cropped).

Pillow work is CPU-bound and blocking, so both operations run in a worker
thread via :func:`asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging

from PIL import Image, ImageOps

from herostudio.core.errors import ResizePostProcessFailure
from herostudio.core.models import ReferenceImage, parse_data_uri, to_data_uri

logger = logging.getLogger(__name__)

MAX_REFERENCE_EDGE = 1536
REFERENCE_JPEG_QUALITY = 85
REFERENCE_TIMEOUT_SECONDS = 5.0


def _load_image(raw: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(raw))
    image.load()
    # Honour camera orientation so width/height match what the user sees.
    return ImageOps.exif_transpose(image)


def scaled_size(width: int, height: int, max_edge: int) -> tuple[int, int]:
    """Scale ``(width, height)`` so the longer edge equals ``max_edge``."""
    if width >= height:
        return max_edge, max(1, round(height * max_edge / width))
    return max(1, round(width * max_edge / height)), max_edge


def _downscale_reference(image: ReferenceImage, max_edge: int, quality: int) -> ReferenceImage:
    """Blocking half of :func:`optimize_reference_image`."""
    picture = _load_image(image.decode())
    width, height = picture.size

    if width <= max_edge and height <= max_edge:
        return image

    new_size = scaled_size(width, height, max_edge)
    resized = picture.resize(new_size, Image.Resampling.LANCZOS)

    # JPEG has no alpha channel.
    if resized.mode != "RGB":
        resized = resized.convert("RGB")

    buffer = io.BytesIO()
    resized.save(buffer, format="JPEG", quality=quality)
    logger.debug(f"Downscaled reference image from {width}x{height} to {new_size[0]}x{new_size[1]}")

    return ReferenceImage(
        data=base64.b64encode(buffer.getvalue()).decode("ascii"),
        mime_type="image/jpeg",
        description=image.description,
    )


async def optimize_reference_image(
    image: ReferenceImage,
    *,
    max_edge: int = MAX_REFERENCE_EDGE,
    quality: int = REFERENCE_JPEG_QUALITY,
    timeout: float = REFERENCE_TIMEOUT_SECONDS,
) -> ReferenceImage:
    """Downscale a reference image whose longer edge exceeds ``max_edge``.

    Images that already fit are returned unchanged (the same object).  Larger
    images come back as a new JPEG-encoded :class:`ReferenceImage` with the
    aspect ratio preserved and the description carried over.

    This coroutine never raises: malformed data, decoder errors and decoding
    that exceeds ``timeout`` seconds all fall back to the original image.

    Args:
        image: Reference image to optimise.  Never mutated.
        max_edge: Longest edge allowed, in pixels.
        quality: JPEG quality for the re-encoded image.
        timeout: Bound on decoding and re-encoding, in seconds.

    Returns:
        The optimised image, or ``image`` itself.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_downscale_reference, image, max_edge, quality),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Reference image compression timed out after {timeout}s; using original.")
    except Exception as e:
        logger.warning(f"Could not load reference image for compression ({e}); using original.")
    return image


def _cover_resize(data_uri: str, target_width: int, target_height: int) -> str:
    parsed = parse_data_uri(data_uri)
    if parsed is None:
        raise ResizePostProcessFailure("Result is not a base64 data URI")

    _, payload = parsed
    try:
        picture = _load_image(base64.b64decode(payload))
        fitted = ImageOps.fit(
            picture,
            (target_width, target_height),
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )
        buffer = io.BytesIO()
        fitted.save(buffer, format="PNG")
    except Exception as e:
        raise ResizePostProcessFailure(f"Could not resize result image: {e}") from e

    return to_data_uri("image/png", buffer.getvalue())


async def resize_to_cover(data_uri: str, target_width: int, target_height: int) -> str:
    """Cover-fit an image data URI to exactly ``target_width`` x ``target_height``.

    The image is scaled so it covers the whole target box and the overflow is
    cropped evenly from both sides.  Output is always PNG.

    Raises:
        ResizePostProcessFailure: If the URI cannot be decoded or resized.
    """
    if target_width <= 0 or target_height <= 0:
        raise ResizePostProcessFailure(
            f"Invalid resize target {target_width}x{target_height}"
        )
    return await asyncio.to_thread(_cover_resize, data_uri, target_width, target_height)
