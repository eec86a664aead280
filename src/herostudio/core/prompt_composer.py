"""Prompt composition for background and thumbnail generation.

The composer turns an immutable settings snapshot into the instruction text
sent to the image model.  It is pure: no I/O, no clock, no randomness, so
identical inputs always yield byte-identical text.

Branches
--------
Checked in priority order:

1. **Refinement** (refinement text *and* a context image): a short
   edit-in-place instruction quoting the user's text plus the realism and
   identity protocol.  Nothing else from the settings is used; a refinement
   never rebuilds the full scene description.
2. **Background**::

    [Role framing]

    [Fixed: realism / identity protocol]

    ### 1. CAMERA & SUBJECT
    [Desktop thirds rule or mobile centering + headroom]

    ### 2. LIGHTING & ATMOSPHERE
    [Enabled lights only, rendered distinctly]

    ### 3. ENVIRONMENT
    [Niche, details, material, grading, depth, floating elements]

    [Gradient overlay: QUICK mode or FADE style only]

    [Style clone: only with a master style reference]

    [Fixed: negative constraints]

3. **Thumbnail**: role, protocol, context/vibe, avatar layout, lights,
   background material and a quality directive.

Sections are separated by blank lines; optional sections are omitted
entirely rather than left empty.
"""

from __future__ import annotations

from herostudio.core.models import (
    BackgroundSettings,
    GradientDirection,
    LightSource,
    OutputKind,
    StyleMode,
    SubjectPosition,
    ThumbnailSettings,
    UIMode,
)

# ---------------------------------------------------------------------------
# Fixed boilerplate sections.
# ---------------------------------------------------------------------------

REALISM_BLOCK = (
    "### STRICT REALISM PROTOCOL (NO CARTOONS ALLOWED) ###\n"
    "1. STYLE: RAW PHOTOGRAPHY (Sony A7R IV).\n"
    '2. TEXTURE: Skin MUST have visible pores, moles, and micro-texture. NO "smooth plastic" '
    'or "airbrushed" look.\n'
    "3. LIGHTING: Physically based rendering (PBR). Shadows must match the light sources.\n"
    "4. FORBIDDEN: Illustration, Drawing, Painting, Anime, 3D Character Art, Plastic Skin.\n"
    "5. IDENTITY: The face must be a DIGITAL CLONE of the reference."
)

IDENTITY_CLAUSE = "KEEP IDENTITY PRESERVED: the person must remain the exact same individual as in the image."

_NEGATIVE_BLOCK = (
    "### NEGATIVE PROMPT (AVOID):\n"
    "- NO CARTOONS, NO DRAWINGS, NO ILLUSTRATIONS.\n"
    "- NO PLASTIC SKIN.\n"
    "- DO NOT IGNORE SELECTED LIGHT COLORS.\n"
    "- DO NOT CHANGE SUBJECT POSITION.\n"
    "\n"
    "OUTPUT: 8K Raw Photo."
)

_DEFAULT_LIGHTING = "LIGHTING: Professional Studio Lighting (Rembrandt or Split)."

_DEFAULT_FLOATING_PROPS = "Abstract tech shapes, glass shards"

_GRADIENT_DIRECTIONS: dict[GradientDirection, str] = {
    GradientDirection.BOTTOM_UP: "Bottom (Opaque) to Top (Transparent)",
    GradientDirection.TOP_DOWN: "Top (Opaque) to Bottom (Transparent)",
    GradientDirection.LEFT_RIGHT: "Left (Opaque) to Right (Transparent)",
    GradientDirection.RIGHT_LEFT: "Right (Opaque) to Left (Transparent)",
}


def compose_prompt(
    settings: BackgroundSettings | ThumbnailSettings,
    output_kind: OutputKind,
    *,
    has_context_image: bool = False,
    refinement_text: str | None = None,
    ui_mode: UIMode = UIMode.DESIGNER,
) -> str:
    """Compose the instruction text for one generation call.

    Args:
        settings: Background or thumbnail settings; dispatch is on ``settings.kind``.
        output_kind: Desktop, mobile or thumbnail.  Only affects the camera
            block of background prompts.
        has_context_image: Whether a previous result is attached as the base image.
        refinement_text: Literal edit instruction from the user.  Only honoured
            together with a context image.
        ui_mode: Background sub-mode; QUICK forces the gradient overlay.

    Returns:
        The prompt text.
    """
    if refinement_text and refinement_text.strip() and has_context_image:
        return build_refinement_prompt(settings.kind, refinement_text.strip())

    if isinstance(settings, ThumbnailSettings):
        return build_thumbnail_prompt(settings)
    return build_background_prompt(settings, output_kind, ui_mode=ui_mode)


def build_refinement_prompt(kind: str, instruction: str) -> str:
    """Edit-in-place instruction for a follow-up on a previous result."""
    role = "Viral Thumbnail Editor" if kind == "thumbnail" else "Senior Retoucher"
    return (
        f"ROLE: {role}. "
        f'TASK: Edit the provided image strictly following: "{instruction}". '
        f"RULES: 1. {REALISM_BLOCK}\n"
        f"2. {IDENTITY_CLAUSE}"
    )


# ---------------------------------------------------------------------------
# Background prompt.
# ---------------------------------------------------------------------------


def _camera_block(settings: BackgroundSettings, output_kind: OutputKind) -> str:
    if output_kind == OutputKind.MOBILE:
        lines = [
            "- FORMAT: 9:16 Vertical.",
            "- COMPOSITION: Subject CENTERED.",
            "- HEADROOM: Leave clear space above head for UI.",
        ]
    else:
        if settings.position == SubjectPosition.LEFT:
            placement = "Subject MUST be on the LEFT THIRD. Right side EMPTY."
        elif settings.position == SubjectPosition.RIGHT:
            placement = "Subject MUST be on the RIGHT THIRD. Left side EMPTY."
        else:
            placement = "Subject CENTERED."
        lines = [
            "- FORMAT: 16:9 Horizontal.",
            f"- POSITIONING: {settings.position.value.upper()}. {placement}",
            f"- FRAMING: {settings.framing.value}.",
            "- WARNING: Ignore the reference image's position. Use the position specified HERE.",
        ]
    lines.append(f"- SUBJECT DETAILS: {settings.subject_description.strip()}")
    return "### 1. CAMERA & SUBJECT\n" + "\n".join(lines)


def _active_background_lights(settings: BackgroundSettings) -> list[str]:
    lights: list[str] = []
    if settings.rim_light.enabled:
        lights.append(
            f"SOURCE A (Back/Edge): High Intensity RIM LIGHT. Color: {settings.rim_light.color} (Hex). "
            "Purpose: Separation."
        )
    if settings.key_light.enabled:
        lights.append(
            f"SOURCE B (Front/Face): Soft KEY LIGHT. Color: {settings.key_light.color} (Hex). "
            "Purpose: Face illumination."
        )
    if settings.fill_light.enabled:
        lights.append(f"SOURCE C (Fill): Low Intensity FILL. Color: {settings.fill_light.color} (Hex).")
    if settings.volumetric_light.enabled:
        lights.append(
            f"SOURCE D (Atmosphere): Volumetric Fog/Haze. Color: {settings.volumetric_light.color} (Hex)."
        )
    if settings.background_tint.enabled:
        opacity = round(settings.background_tint.opacity * 100)
        lights.append(
            f"SOURCE E (Environment): Background Ambient Tint. Color: {settings.background_tint.color} "
            f"(Hex) at {opacity}% opacity."
        )
    return lights


def _lighting_block(settings: BackgroundSettings) -> str:
    lines = [
        "### 2. LIGHTING & ATMOSPHERE (STRICT ADHERENCE)",
        f"- BASE STYLE: {settings.lighting_style.value}.",
    ]
    lights = _active_background_lights(settings)
    if lights:
        lines.extend(
            [
                "### MULTI-LIGHT SETUP (RENDER ALL DISTINCTLY)",
                "You are a virtual gaffer. Place these SPECIFIC lights in the scene.",
                "DO NOT blend them into one color. If Rim is Red and Key is Blue, "
                "I want to see RED EDGES and BLUE FACE simultaneously.",
            ]
        )
        lines.extend(lights)
    else:
        lines.append(_DEFAULT_LIGHTING)
    return "\n".join(lines)


def _environment_block(settings: BackgroundSettings) -> str:
    lines = [
        "### 3. ENVIRONMENT",
        f"- NICHE: {settings.niche.strip()}.",
        f"- DETAILS: {settings.environment_description.strip()}.",
        f"- MATERIAL: {settings.environment_material.value} (Realistic PBR Texture).",
        f"- COLOR GRADING: {settings.color_grading.value}.",
        f"- DEPTH OF FIELD: {settings.depth_level.value}.",
    ]
    if settings.floating_elements:
        props = settings.floating_elements_description.strip() or _DEFAULT_FLOATING_PROPS
        lines.append(f"- SCENOGRAPHY: Add floating 3D elements ({props}) around the subject.")
        lines.append("- DEPTH: Use Depth of Field (Bokeh) to blur background elements.")
    if settings.preset_style_description and settings.preset_style_description.strip():
        lines.append(f"- ART DIRECTION: {settings.preset_style_description.strip()}")
    return "\n".join(lines)


def _gradient_block(settings: BackgroundSettings) -> str:
    return "\n".join(
        [
            "### UI LAYER (COMPOSITING)",
            "- ACTION: Bake a linear gradient overlay for text readability.",
            f"- COLOR: {settings.gradient_color} (Hex).",
            f"- DIRECTION: {_GRADIENT_DIRECTIONS[settings.gradient_direction]}.",
            "- INTENSITY: Start at 100% opacity, fade to 0%.",
        ]
    )


def build_background_prompt(
    settings: BackgroundSettings,
    output_kind: OutputKind,
    *,
    ui_mode: UIMode = UIMode.DESIGNER,
) -> str:
    """Full scene instruction for a website hero background."""
    parts: list[str] = [
        "ROLE: High-End CGI Artist & Photographer.\n"
        "TASK: Create a Photorealistic Website Hero Background.",
        REALISM_BLOCK,
        _camera_block(settings, output_kind),
        _lighting_block(settings),
        _environment_block(settings),
    ]

    if ui_mode == UIMode.QUICK or settings.style_mode == StyleMode.FADE:
        parts.append(_gradient_block(settings))

    if settings.master_style_reference is not None:
        parts.append(
            "### 4. STYLE REFERENCE\n"
            '- STYLE CLONE: Copy the exact mood, texture quality, and color palette of the '
            '"Reference Style Blueprint" image.'
        )

    parts.append(_NEGATIVE_BLOCK)
    return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Thumbnail prompt.
# ---------------------------------------------------------------------------


def _thumbnail_lights(settings: ThumbnailSettings) -> list[str]:
    named: list[tuple[str, LightSource, str]] = [
        ("RIM LIGHT", settings.rim_light, "Hard Edge Light"),
        ("KEY LIGHT", settings.key_light, "on Face"),
        ("FILL LIGHT", settings.fill_light, "Low Intensity"),
        ("VOLUMETRIC LIGHT", settings.volumetric_light, "Haze/Atmosphere"),
    ]
    return [f"- {label}: {light.color} (Hex) {purpose}." for label, light, purpose in named if light.enabled]


def build_thumbnail_prompt(settings: ThumbnailSettings) -> str:
    """Viral thumbnail instruction; the avatar side leaves room for text."""
    side = "LEFT" if settings.avatar_side == "left" else "RIGHT"

    lighting = ["### LIGHTING (MULTI-SOURCE)", f"- STYLE: {settings.lighting_style.value}."]
    lights = _thumbnail_lights(settings)
    if lights:
        lighting.append("- Render every light source distinctly; do not blend their colors.")
        lighting.extend(lights)

    parts = [
        "ROLE: Viral YouTube Thumbnail Artist.",
        REALISM_BLOCK,
        f"CONTEXT: {settings.project_context.strip()}.\nVIBE: {settings.vibe.value}.",
        "### LAYOUT (STRICT)\n"
        f"- AVATAR: Place on the {side} side.\n"
        "- EXPRESSION: Hyper-real, intense emotion.\n"
        "- SPACE: Leave opposite side EMPTY for text.",
        "\n".join(lighting),
        "### BACKGROUND\n"
        f"- Material: {settings.environment_material.value}.\n"
        f"- Depth: {settings.depth_level.value}.\n"
        "- Quality: Photorealistic 8K.",
    ]
    return "\n\n".join(parts)
