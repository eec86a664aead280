"""Domain models for HeroStudio.

Settings come in two variants that share a handful of fields (lights,
material, lighting style) but are otherwise unrelated, so they are modelled
as a tagged union discriminated by ``kind`` rather than duck-typed:

    Settings = Annotated[BackgroundSettings | ThumbnailSettings, Field(discriminator="kind")]

All settings and image value objects are frozen.  A generation call receives
one immutable snapshot; the reference image optimizer produces new
:class:`ReferenceImage` instances rather than mutating the caller's copies.

Enum values are the English labels that end up in the composed prompt, so
changing a value changes the text sent to the model.
"""

from __future__ import annotations

import base64
import binascii
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enumerations.
# ---------------------------------------------------------------------------


class OutputKind(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    THUMBNAIL = "thumbnail"


class UIMode(str, Enum):
    """Sub-mode of the background generator.

    QUICK always bakes the gradient overlay; DESIGNER only does so when the
    style mode asks for a fade.
    """

    DESIGNER = "designer"
    QUICK = "quick"


class SubjectPosition(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class Framing(str, Enum):
    CLOSEUP = "Close-up (Face)"
    MID = "Medium Shot (Bust)"
    AMERICAN = "American Shot (Knees Up)"


class StyleMode(str, Enum):
    FADE = "fade"
    BLUR = "blur"


class GradientDirection(str, Enum):
    BOTTOM_UP = "bottom-up"
    TOP_DOWN = "top-down"
    LEFT_RIGHT = "left-right"
    RIGHT_LEFT = "right-left"


class Resolution(str, Enum):
    """Output quality tiers understood by the image model."""

    FHD = "1K"
    QHD = "2K"
    UHD = "4K"


class LightingStyle(str, Enum):
    STUDIO = "Clean Studio"
    CINEMATIC = "Cinematic (Dramatic)"
    NEON = "Neon / Cyberpunk"
    NATURAL = "Natural Light (Soft)"
    GOLDEN = "Golden Hour (Sunset)"
    REMBRANDT = "Rembrandt (Classic)"


class ColorGrading(str, Enum):
    NEUTRAL = "Natural / Neutral"
    WARM = "Warm (Welcoming)"
    COOL = "Cool (Technological)"
    MONOCHROME = "Black & White"
    VIBRANT = "Vibrant (Saturated)"
    MOODY = "Moody (Dark)"


class EnvironmentMaterial(str, Enum):
    ABSTRACT = "Abstract / Digital"
    CONCRETE = "Concrete / Industrial"
    WOOD = "Wood / Organic"
    MARBLE = "Marble / Luxury"
    NEON_GRID = "Neon Grid / Tech"
    NATURE = "Foliage / Nature"
    GLASS = "Glass / Corporate"


class DepthLevel(str, Enum):
    LOW = "Sharp Focus (Everything Visible)"
    MEDIUM = "Soft Blur (Default)"
    HIGH = "Intense Bokeh (Blurred Background)"


class ThumbnailVibe(str, Enum):
    CLICKBAIT = "High Impact (Clickbait)"
    EDUCATIONAL = "Educational / Clean"
    GAMING = "Gaming / Energetic"
    VLOG = "Lifestyle / Vlog"
    TECH = "Tech / Review"
    HORROR = "Horror / Mysterious"


class TextEffect(str, Enum):
    NONE = "Normal"
    OUTLINE = "Outline"
    GLOW = "Neon Glow"
    THREE_D = "3D Pop"
    BOX = "Box Background"


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class UsageAction(str, Enum):
    GENERATE = "generate"
    REFINE = "refine"


class PresetType(str, Enum):
    PREDEFINED = "predefined"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# Data URIs.
# ---------------------------------------------------------------------------

_DATA_URI_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


def is_base64(payload: str) -> bool:
    """Whether ``payload`` is non-empty, strict, correctly padded base64."""
    if not payload:
        return False
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def parse_data_uri(uri: str) -> tuple[str, str] | None:
    """Split a ``data:<mime>;base64,<payload>`` URI into ``(mime, payload)``.

    Returns ``None`` for anything that is not a base64 data URI, including
    a payload that does not decode as base64.
    """
    if not uri:
        return None
    match = _DATA_URI_RE.match(uri.strip())
    if not match or not is_base64(match.group(2)):
        return None
    return match.group(1), match.group(2)


def to_data_uri(mime_type: str, payload: str | bytes) -> str:
    """Build a well-formed base64 data URI.

    Args:
        mime_type: MIME type of the payload (e.g. ``"image/png"``).
        payload: Either raw bytes (encoded here) or an already base64-encoded string.
    """
    if isinstance(payload, bytes):
        payload = base64.b64encode(payload).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


# ---------------------------------------------------------------------------
# Value objects.
# ---------------------------------------------------------------------------

HexColor = Annotated[str, Field(pattern=r"^#(?:[0-9a-fA-F]{3}){1,2}$")]


class LightSource(BaseModel):
    """A toggleable light with a hex color and optional opacity."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    color: HexColor = "#ffffff"
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)


class ReferenceImage(BaseModel):
    """A user-supplied image steering the model (identity, environment or style)."""

    model_config = ConfigDict(frozen=True)

    data: str = Field(..., description="Base64-encoded image payload (no data URI header).")
    mime_type: str = Field(default="image/png")
    description: str | None = None

    @field_validator("data")
    @classmethod
    def _must_be_base64(cls, value: str) -> str:
        if not is_base64(value):
            raise ValueError("data must be base64-encoded")
        return value

    @classmethod
    def from_data_uri(cls, uri: str, description: str | None = None) -> ReferenceImage:
        parsed = parse_data_uri(uri)
        if parsed is None:
            raise ValueError("Reference image must be a base64 data URI")
        mime_type, payload = parsed
        return cls(data=payload, mime_type=mime_type, description=description)

    def to_data_uri(self) -> str:
        return to_data_uri(self.mime_type, self.data)

    def decode(self) -> bytes:
        return base64.b64decode(self.data)


class BackgroundSettings(BaseModel):
    """Settings for a website hero background (desktop or mobile)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["background"] = "background"

    # Subject
    subject_description: str = ""
    position: SubjectPosition = SubjectPosition.RIGHT

    # Context
    niche: str = ""
    environment_description: str = ""
    environment_material: EnvironmentMaterial = EnvironmentMaterial.ABSTRACT
    depth_level: DepthLevel = DepthLevel.MEDIUM
    floating_elements: bool = True
    floating_elements_description: str = ""

    # Color & light
    lighting_style: LightingStyle = LightingStyle.STUDIO
    color_grading: ColorGrading = ColorGrading.NEUTRAL
    background_tint: LightSource = Field(
        default_factory=lambda: LightSource(enabled=False, color="#000000", opacity=0.5)
    )
    rim_light: LightSource = Field(default_factory=lambda: LightSource(enabled=True, color="#4ade80"))
    fill_light: LightSource = Field(default_factory=lambda: LightSource(enabled=True, color="#3b82f6"))
    volumetric_light: LightSource = Field(default_factory=LightSource)
    key_light: LightSource = Field(default_factory=LightSource)
    framing: Framing = Framing.MID

    # Style
    style_mode: StyleMode = StyleMode.BLUR
    gradient_color: HexColor = "#000000"
    gradient_direction: GradientDirection = GradientDirection.BOTTOM_UP

    # Output
    resolution: Resolution = Resolution.FHD
    use_custom_size: bool = False
    custom_width: int = Field(default=1920, ge=0, le=8192)
    custom_height: int = Field(default=1080, ge=0, le=8192)

    # Preset tracking and style cloning
    active_preset_name: str | None = None
    active_preset_type: PresetType | None = None
    preset_style_description: str | None = None
    master_style_reference: ReferenceImage | None = None

    @property
    def has_custom_size(self) -> bool:
        return self.use_custom_size and self.custom_width > 0 and self.custom_height > 0


class ThumbnailSettings(BaseModel):
    """Settings for a video thumbnail (always 16:9)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["thumbnail"] = "thumbnail"

    # Text
    main_text: str = ""
    secondary_text: str = ""
    text_color: HexColor = "#FFFFFF"
    text_effect: TextEffect = TextEffect.OUTLINE

    # Layout
    avatar_side: Literal["left", "right"] = "right"

    # Basic style
    vibe: ThumbnailVibe = ThumbnailVibe.CLICKBAIT
    project_context: str = ""
    accent_color: HexColor = "#FF0000"

    # Advanced
    environment_material: EnvironmentMaterial = EnvironmentMaterial.ABSTRACT
    depth_level: DepthLevel = DepthLevel.MEDIUM
    lighting_style: LightingStyle = LightingStyle.CINEMATIC
    volumetric_light: LightSource = Field(default_factory=LightSource)
    key_light: LightSource = Field(default_factory=lambda: LightSource(enabled=True, color="#ffffff"))
    rim_light: LightSource = Field(default_factory=lambda: LightSource(enabled=True, color="#FF0000"))
    fill_light: LightSource = Field(default_factory=lambda: LightSource(enabled=False, color="#3b82f6"))


Settings = Annotated[BackgroundSettings | ThumbnailSettings, Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Accounts and accounting.
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Profile record owned by the relational store.

    The generation pipeline reads it for the quota check and key gating; it
    never writes ``role`` or ``image_limit``.
    """

    id: str
    email: str = ""
    role: Role = Role.USER
    image_limit: int = 10
    images_generated: int = 0
    allowed_system_key: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageRecord(BaseModel):
    """One billed generation.  Append-only."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    action: UsageAction
    resolution: Resolution
    tokens_input: int = 0
    tokens_output: int = 0
    cost: float = 0.0
    created_at: datetime = Field(default_factory=_utcnow)
    id: str | None = None


class UsageSummary(BaseModel):
    user_id: str
    images_generated: int = 0
    refines_used: int = 0
    total_images: int = 0
    tokens_input: int = 0
    tokens_output: int = 0
    tokens_total: int = 0
    estimated_cost: float = 0.0


class Preset(BaseModel):
    """A named bundle of background settings overrides."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: PresetType = PresetType.CUSTOM
    description: str = ""
    prompt_extra: str = ""
    settings: dict[str, Any] = Field(default_factory=dict)
    icon: str = ""
    color: str = "#9ca3af"
