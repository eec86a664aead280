"""Style presets for the background generator.

A preset is a named bundle of overrides for :class:`BackgroundSettings`
(lighting, material, grading, depth, lights, floating elements) plus an
art-direction sentence that ends up in the prompt's environment block.

Six predefined presets ship with the application; users can save their own
through the storage layer.  Custom presets capture only the fields listed in
:data:`~herostudio.core.storage.PRESET_FIELDS`, so subject, framing and
output size are never part of a preset.
"""

from __future__ import annotations

from typing import Any

from herostudio.core.models import (
    BackgroundSettings,
    ColorGrading,
    DepthLevel,
    EnvironmentMaterial,
    LightingStyle,
    Preset,
    PresetType,
)
from herostudio.core.storage import PRESET_FIELDS

LIGHT_FIELDS = ("background_tint", "rim_light", "key_light", "volumetric_light", "fill_light")

PREDEFINED_PRESETS: tuple[Preset, ...] = (
    Preset(
        id="preset_smm",
        name="SMM / Agency Dark Neon",
        type=PresetType.PREDEFINED,
        description="Dark background, 3D elements, cyber, digital marketing.",
        prompt_extra=(
            "Agency studio style. Dark background with abstract 3D elements. "
            "Palette: black + vibrant magenta / pink. Mood: bold, modern, tech."
        ),
        icon="🚀",
        color="#ec4899",
        settings={
            "lighting_style": LightingStyle.NEON.value,
            "environment_material": EnvironmentMaterial.NEON_GRID.value,
            "color_grading": ColorGrading.VIBRANT.value,
            "depth_level": DepthLevel.MEDIUM.value,
            "background_tint": {"enabled": True, "color": "#000000", "opacity": 0.8},
            "rim_light": {"enabled": True, "color": "#ff00ff"},
            "volumetric_light": {"enabled": True, "color": "#1a1a2e"},
            "floating_elements": True,
            "floating_elements_description": "Floating abstract 3D elements, neon spheres",
        },
    ),
    Preset(
        id="preset_corporate",
        name="Corporate Authority Clean",
        type=PresetType.PREDEFINED,
        description="Clean, glass, office, B2B trust.",
        prompt_extra=(
            "Professional services style. Clean, blurred background. "
            "Realistic subject with a confident posture. Mood: trust, professionalism."
        ),
        icon="🏢",
        color="#3b82f6",
        settings={
            "lighting_style": LightingStyle.STUDIO.value,
            "environment_material": EnvironmentMaterial.GLASS.value,
            "color_grading": ColorGrading.NEUTRAL.value,
            "depth_level": DepthLevel.HIGH.value,
            "background_tint": {"enabled": False, "color": "#ffffff", "opacity": 0.0},
            "rim_light": {"enabled": True, "color": "#ffffff"},
            "key_light": {"enabled": True, "color": "#ffffff"},
            "floating_elements": False,
        },
    ),
    Preset(
        id="preset_info",
        name="Cinematic Course Creator",
        type=PresetType.PREDEFINED,
        description="Motion design, product launches, technology.",
        prompt_extra=(
            "Motion design / online course style. Technological background with subtle "
            "graphics. Cinematic lighting. Mood: authority, innovation."
        ),
        icon="🎥",
        color="#8b5cf6",
        settings={
            "lighting_style": LightingStyle.CINEMATIC.value,
            "environment_material": EnvironmentMaterial.ABSTRACT.value,
            "color_grading": ColorGrading.COOL.value,
            "depth_level": DepthLevel.MEDIUM.value,
            "rim_light": {"enabled": True, "color": "#60a5fa"},
            "fill_light": {"enabled": True, "color": "#c084fc"},
            "floating_elements": True,
            "floating_elements_description": "Subtle graphics, data lines, HUD",
        },
    ),
    Preset(
        id="preset_luxury",
        name="Luxury & Cashflow",
        type=PresetType.PREDEFINED,
        description="Finance, gold, marble, exclusivity.",
        prompt_extra=(
            "AI + passive income style. Dark background with golden light. "
            "Premium elements (glow, soft particles). Mood: exclusivity, power."
        ),
        icon="💰",
        color="#eab308",
        settings={
            "lighting_style": LightingStyle.GOLDEN.value,
            "environment_material": EnvironmentMaterial.MARBLE.value,
            "color_grading": ColorGrading.WARM.value,
            "depth_level": DepthLevel.MEDIUM.value,
            "background_tint": {"enabled": True, "color": "#1c1917", "opacity": 0.6},
            "rim_light": {"enabled": True, "color": "#fcd34d"},
            "floating_elements": True,
            "floating_elements_description": "Gold particles, magic dust",
        },
    ),
    Preset(
        id="preset_event",
        name="Event / Webinar",
        type=PresetType.PREDEFINED,
        description="Monochrome, geometric, CTA focused.",
        prompt_extra=(
            "Online ad intensive style. Modern geometric background. Strong monochrome "
            "palette. CTA-focused composition. Mood: clarity, action."
        ),
        icon="🎤",
        color="#10b981",
        settings={
            "lighting_style": LightingStyle.STUDIO.value,
            "environment_material": EnvironmentMaterial.CONCRETE.value,
            "color_grading": ColorGrading.VIBRANT.value,
            "depth_level": DepthLevel.LOW.value,
            "background_tint": {"enabled": True, "color": "#064e3b", "opacity": 0.7},
            "rim_light": {"enabled": True, "color": "#34d399"},
            "floating_elements": False,
        },
    ),
    Preset(
        id="preset_authority",
        name="Premium Digital Authority",
        type=PresetType.PREDEFINED,
        description="Futuristic, personal branding, HUDs.",
        prompt_extra=(
            "Digital authority style. Futuristic background with subtle HUDs. "
            "Side lighting with glow. Mood: leadership, status."
        ),
        icon="👑",
        color="#6366f1",
        settings={
            "lighting_style": LightingStyle.CINEMATIC.value,
            "environment_material": EnvironmentMaterial.GLASS.value,
            "color_grading": ColorGrading.MOODY.value,
            "depth_level": DepthLevel.HIGH.value,
            "rim_light": {"enabled": True, "color": "#818cf8"},
            "volumetric_light": {"enabled": True, "color": "#4338ca"},
            "floating_elements": True,
            "floating_elements_description": "Subtle digital interface, tech glow",
        },
    ),
)


def get_predefined_preset(preset_id: str) -> Preset | None:
    return next((p for p in PREDEFINED_PRESETS if p.id == preset_id), None)


def apply_preset(settings: BackgroundSettings, preset: Preset) -> BackgroundSettings:
    """Return a copy of ``settings`` with ``preset`` applied.

    Light overrides are merged into the existing light, so a preset that only
    sets a color keeps the current opacity.  Keys outside the preset field
    set are ignored.  The preset's name, type and art-direction sentence are
    recorded on the result.
    """
    data = settings.model_dump()
    for name, value in preset.settings.items():
        if name not in PRESET_FIELDS:
            continue
        if name in LIGHT_FIELDS and isinstance(value, dict):
            data[name] = {**data[name], **value}
        else:
            data[name] = value

    data["active_preset_name"] = preset.name
    data["active_preset_type"] = preset.type
    data["preset_style_description"] = preset.prompt_extra
    return BackgroundSettings.model_validate(data)


def preset_settings_from(settings: BackgroundSettings) -> dict[str, Any]:
    """Capture the preset-able subset of ``settings`` as JSON-ready data."""
    return settings.model_dump(mode="json", include=set(PRESET_FIELDS))
