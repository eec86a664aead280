"""Tests for herostudio.core.image_model — request building and response parsing."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from google.genai import types

from herostudio.core import image_model
from herostudio.core.image_model import (
    GeminiImageModel,
    ImagePart,
    ImageRequest,
    TextPart,
    extract_image_part,
    usage_tokens,
)
from herostudio.core.models import ReferenceImage


class TestImageRequest:
    def test_parts_keep_order(self):
        request = ImageRequest(model="m", aspect_ratio="16:9", image_size="1K", api_key="k")
        request.add_text("prompt")
        request.add_image(ReferenceImage(data="QUJD", mime_type="image/jpeg"))
        request.add_text("label")

        assert request.parts == [
            TextPart("prompt"),
            ImagePart("QUJD", "image/jpeg"),
            TextPart("label"),
        ]
        assert request.image_count == 1


class TestExtractImagePart:
    def test_sdk_response(self):
        response = types.GenerateContentResponse(
            candidates=[
                types.Candidate(
                    content=types.Content(
                        role="model",
                        parts=[
                            types.Part(text="Sure."),
                            types.Part(inline_data=types.Blob(data=b"PNGDATA", mime_type="image/png")),
                        ],
                    )
                )
            ],
            usage_metadata=types.GenerateContentResponseUsageMetadata(
                prompt_token_count=11,
                candidates_token_count=22,
            ),
        )
        assert extract_image_part(response) == ("image/png", b"PNGDATA")
        assert usage_tokens(response) == (11, 22)

    def test_first_image_wins(self):
        parts = [
            SimpleNamespace(inline_data=SimpleNamespace(data=b"one", mime_type="image/png")),
            SimpleNamespace(inline_data=SimpleNamespace(data=b"two", mime_type="image/jpeg")),
        ]
        response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))])
        assert extract_image_part(response) == ("image/png", b"one")

    @pytest.mark.parametrize(
        "response",
        [
            SimpleNamespace(candidates=[]),
            SimpleNamespace(candidates=None),
            SimpleNamespace(candidates=[SimpleNamespace(content=None)]),
            SimpleNamespace(
                candidates=[
                    SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(inline_data=None)]))
                ]
            ),
        ],
    )
    def test_no_image(self, response):
        assert extract_image_part(response) is None

    def test_missing_usage(self):
        assert usage_tokens(SimpleNamespace()) == (0, 0)
        assert usage_tokens(SimpleNamespace(usage_metadata=SimpleNamespace(prompt_token_count=None))) == (0, 0)


class TestGeminiImageModel:
    """The SDK call is made with the request's model, parts and image config."""

    @pytest.mark.asyncio
    async def test_generate_content_call(self, monkeypatch):
        captured = {}

        async def fake_generate_content(**kwargs):
            captured.update(kwargs)
            return "response"

        fake_client = SimpleNamespace(
            aio=SimpleNamespace(models=SimpleNamespace(generate_content=fake_generate_content))
        )
        def fake_client_factory(api_key):
            captured["key"] = api_key
            return fake_client

        model = GeminiImageModel()
        monkeypatch.setattr(model, "_client", fake_client_factory)

        request = ImageRequest(model="gemini-x", aspect_ratio="9:16", image_size="2K", api_key="secret")
        request.add_text("prompt")
        request.add_image(ReferenceImage(data="QUJD", mime_type="image/jpeg"))

        assert await model.generate_content(request) == "response"
        assert captured["key"] == "secret"
        assert captured["model"] == "gemini-x"
        assert captured["config"].image_config.aspect_ratio == "9:16"
        assert captured["config"].image_config.image_size == "2K"

        parts = captured["contents"].parts
        assert parts[0].text == "prompt"
        assert parts[1].inline_data.data == b"ABC"
        assert parts[1].inline_data.mime_type == "image/jpeg"

    def test_client_reused_per_key(self, monkeypatch):
        """One SDK client per API key, created on first use."""
        created = []

        class RecordingClient:
            def __init__(self, api_key):
                created.append(api_key)

        monkeypatch.setattr(image_model.genai, "Client", RecordingClient)
        model = GeminiImageModel()

        first = model._client("key-a")
        assert model._client("key-a") is first
        assert model._client("key-b") is not first
        assert created == ["key-a", "key-b"]
