"""Aspect ratio snapping and output quality tier selection.

The image model only understands a handful of aspect ratio tags and three
discrete quality tiers.  Custom canvas sizes therefore have to be snapped to
the nearest supported ratio, and large canvases need a higher tier or the
model under-samples them before the final cover resize.
"""

from __future__ import annotations

from herostudio.core.models import (
    BackgroundSettings,
    OutputKind,
    Resolution,
    ThumbnailSettings,
)

# Declaration order matters: ties resolve to the earliest entry.
SUPPORTED_ASPECT_RATIOS: dict[str, float] = {
    "16:9": 16 / 9,
    "9:16": 9 / 16,
    "1:1": 1.0,
    "4:3": 4 / 3,
    "3:4": 3 / 4,
}

UHD_THRESHOLD = 2048
QHD_THRESHOLD = 1280


def closest_aspect_ratio(width: int, height: int) -> str:
    """Return the supported aspect ratio tag closest to ``width / height``.

    Args:
        width: Requested width in pixels.
        height: Requested height in pixels.

    Returns:
        One of the keys of :data:`SUPPORTED_ASPECT_RATIOS`.

    Raises:
        ValueError: If either dimension is not positive.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Dimensions must be positive, got {width}x{height}")

    target = width / height
    closest = "16:9"
    min_diff = float("inf")
    for tag, ratio in SUPPORTED_ASPECT_RATIOS.items():
        diff = abs(target - ratio)
        # Strict comparison keeps the first-declared candidate on ties.
        if diff < min_diff:
            min_diff = diff
            closest = tag
    return closest


def upgrade_image_size(width: int, height: int, base: Resolution) -> Resolution:
    """Pick the quality tier for a custom canvas.

    - longest edge > 2048 px: always 4K
    - longest edge > 1280 px: 2K, but only when the caller asked for 1K
    - otherwise the caller's tier is kept
    """
    max_dim = max(width, height)
    if max_dim > UHD_THRESHOLD:
        return Resolution.UHD
    if max_dim > QHD_THRESHOLD and base == Resolution.FHD:
        return Resolution.QHD
    return base


def resolve_output_format(
    settings: BackgroundSettings | ThumbnailSettings,
    output_kind: OutputKind,
) -> tuple[str, Resolution]:
    """Decide the aspect ratio tag and quality tier for one generation.

    Thumbnails are always 16:9 at 1K.  Backgrounds with a custom size snap to
    the closest ratio and may upgrade their tier; otherwise mobile renders
    9:16 and desktop 16:9 at the requested tier.

    Returns:
        Tuple of ``(aspect_ratio_tag, resolution)``.
    """
    if isinstance(settings, ThumbnailSettings):
        return "16:9", Resolution.FHD

    if settings.has_custom_size:
        aspect = closest_aspect_ratio(settings.custom_width, settings.custom_height)
        tier = upgrade_image_size(settings.custom_width, settings.custom_height, settings.resolution)
        return aspect, tier

    if output_kind == OutputKind.MOBILE:
        return "9:16", settings.resolution
    return "16:9", settings.resolution
