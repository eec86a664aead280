"""Pydantic request and response models for the HeroStudio API.

These models define the JSON schema for every API endpoint.  FastAPI uses
them for automatic request validation, serialisation, and OpenAPI
documentation generation.

Models
------
GenerateRequest
    Payload for ``POST /api/generate``.
PromptCompileRequest
    Payload for ``POST /api/prompt/compile`` (prompt preview, no model call).
PresetCreateRequest
    Payload for ``POST /api/presets``.
ImageLimitRequest, SystemKeyAccessRequest, GlobalKeyRequest
    Payloads for the admin routes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from herostudio.core.models import (
    BackgroundSettings,
    OutputKind,
    ReferenceImage,
    Settings,
    UIMode,
    parse_data_uri,
)

MAX_IMAGES_PER_ROLE = 3


class ImageUpload(BaseModel):
    """One reference image sent by the client.

    Attributes:
        data_uri: ``data:<mime>;base64,<payload>`` of the image.
        description: Optional instruction (only used for style references).
    """

    data_uri: str = Field(..., description="Base64 data URI of the image.")
    description: str | None = Field(
        default=None,
        description="What to take from this reference (style images only).",
    )

    @field_validator("data_uri")
    @classmethod
    def _must_be_data_uri(cls, value: str) -> str:
        if parse_data_uri(value) is None:
            raise ValueError("data_uri must be a base64 data URI")
        return value

    def to_reference(self) -> ReferenceImage:
        return ReferenceImage.from_data_uri(self.data_uri, self.description)


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Attributes:
        settings: Background or thumbnail settings, discriminated by ``kind``.
        output_kind: ``desktop``, ``mobile`` or ``thumbnail``.
        subject_images: Identity references (up to 3).
        style_images: Secondary vibe references (up to 3).
        environment_images: Texture/material references (up to 3).
        context_image_url: Previous result to edit, as a data URI.
        refinement_text: Edit instruction applied to the context image.
        ui_mode: Background sub-mode (``designer`` or ``quick``).
    """

    settings: Settings = Field(..., description="Settings snapshot (kind: background|thumbnail).")
    output_kind: OutputKind = Field(default=OutputKind.DESKTOP)
    subject_images: list[ImageUpload] = Field(default_factory=list, max_length=MAX_IMAGES_PER_ROLE)
    style_images: list[ImageUpload] = Field(default_factory=list, max_length=MAX_IMAGES_PER_ROLE)
    environment_images: list[ImageUpload] = Field(
        default_factory=list, max_length=MAX_IMAGES_PER_ROLE
    )
    context_image_url: str | None = Field(
        default=None,
        description="Data URI of a previous result used as the base image.",
    )
    refinement_text: str | None = Field(
        default=None,
        description="Edit instruction (only honoured with a context image).",
    )
    ui_mode: UIMode = Field(default=UIMode.DESIGNER)

    @field_validator("context_image_url")
    @classmethod
    def _context_must_be_data_uri(cls, value: str | None) -> str | None:
        if value and parse_data_uri(value) is None:
            raise ValueError("context_image_url must be a base64 data URI")
        return value or None


class GenerateResponse(BaseModel):
    image: str = Field(..., description="Generated image as a data URI.")
    output_kind: OutputKind


class PromptCompileRequest(BaseModel):
    """Request body for ``POST /api/prompt/compile``."""

    settings: Settings
    output_kind: OutputKind = OutputKind.DESKTOP
    has_context_image: bool = False
    refinement_text: str | None = None
    ui_mode: UIMode = UIMode.DESIGNER


class PromptCompileResponse(BaseModel):
    prompt: str
    aspect_ratio: str
    image_size: str


class PresetCreateRequest(BaseModel):
    """Save the preset-able subset of ``settings`` under ``name``."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=80)
    settings: BackgroundSettings


class ImageLimitRequest(BaseModel):
    image_limit: int = Field(..., ge=0, description="New generation quota for the user.")


class SystemKeyAccessRequest(BaseModel):
    allowed: bool = Field(..., description="Whether the user may use the global API key.")


class GlobalKeyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(..., min_length=1, description="API key stored for system-wide use.")
