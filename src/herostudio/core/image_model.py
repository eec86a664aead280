"""Image model collaborator.

The orchestrator talks to the generative model through the small
:class:`ImageModel` interface so tests can substitute a fake.  The
production implementation, :class:`GeminiImageModel`, uses the
``google-genai`` SDK's async client.

Request shape sent to the model::

    model=<name>
    contents=Content(parts=[TextPart | ImagePart, ...])   # order preserved
    config=GenerateContentConfig(image_config=ImageConfig(aspect_ratio, image_size))

Responses are read duck-typed (``candidates[0].content.parts[*].inline_data``
and ``usage_metadata``) so fakes only need the same attribute layout.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from google import genai
from google.genai import types

from herostudio.core.models import ReferenceImage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    data: str  # base64 payload, no data URI header
    mime_type: str = "image/png"

    @classmethod
    def from_reference(cls, image: ReferenceImage) -> ImagePart:
        return cls(data=image.data, mime_type=image.mime_type)


@dataclass
class ImageRequest:
    """Everything needed for one model call."""

    model: str
    aspect_ratio: str
    image_size: str
    api_key: str
    parts: list[TextPart | ImagePart] = field(default_factory=list)

    def add_text(self, text: str) -> None:
        self.parts.append(TextPart(text))

    def add_image(self, image: ReferenceImage) -> None:
        self.parts.append(ImagePart.from_reference(image))

    @property
    def image_count(self) -> int:
        return sum(1 for part in self.parts if isinstance(part, ImagePart))


class ImageModel(ABC):
    """Anything that can turn an :class:`ImageRequest` into a model response."""

    @abstractmethod
    async def generate_content(self, request: ImageRequest) -> Any:
        """Issue the request and return the raw response object."""


class GeminiImageModel(ImageModel):
    """Google Gemini image model reached through ``google-genai``.

    The API key varies per user, so one client is kept per key and reused
    for every later call with that key.
    """

    def __init__(self) -> None:
        self._clients: dict[str, genai.Client] = {}

    def _client(self, api_key: str) -> genai.Client:
        client = self._clients.get(api_key)
        if client is None:
            logger.debug("Creating Gemini client for a new API key")
            client = genai.Client(api_key=api_key)
            self._clients[api_key] = client
        return client

    @staticmethod
    def _to_sdk_part(part: TextPart | ImagePart) -> types.Part:
        if isinstance(part, TextPart):
            return types.Part.from_text(text=part.text)
        return types.Part.from_bytes(data=base64.b64decode(part.data), mime_type=part.mime_type)

    async def generate_content(self, request: ImageRequest) -> types.GenerateContentResponse:
        client = self._client(request.api_key)
        logger.info(
            f"Calling {request.model} (aspect_ratio={request.aspect_ratio}, "
            f"image_size={request.image_size}, images={request.image_count})"
        )
        return await client.aio.models.generate_content(
            model=request.model,
            contents=types.Content(
                role="user",
                parts=[self._to_sdk_part(part) for part in request.parts],
            ),
            config=types.GenerateContentConfig(
                image_config=types.ImageConfig(
                    aspect_ratio=request.aspect_ratio,
                    image_size=request.image_size,
                ),
            ),
        )


# ---------------------------------------------------------------------------
# Response helpers.
# ---------------------------------------------------------------------------


def extract_image_part(response: Any) -> tuple[str, bytes | str] | None:
    """Return ``(mime_type, data)`` of the first inline image part, if any.

    Only the first candidate is inspected.  ``data`` is raw bytes from the
    SDK, or a base64 string from callers that pre-encode.
    """
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None

    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and getattr(inline, "data", None):
            return inline.mime_type or "image/png", inline.data
    return None


def usage_tokens(response: Any) -> tuple[int, int]:
    """Return ``(prompt_tokens, candidate_tokens)``, zero when not reported."""
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return 0, 0
    return (
        getattr(usage, "prompt_token_count", None) or 0,
        getattr(usage, "candidates_token_count", None) or 0,
    )
