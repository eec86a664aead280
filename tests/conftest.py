"""Shared pytest fixtures for HeroStudio tests."""

from __future__ import annotations

import asyncio
import base64
import io
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Generator

import pytest
from PIL import Image

from herostudio.core.config import HeroStudioConfig
from herostudio.core.image_model import ImageModel, ImageRequest
from herostudio.core.storage import SQLiteStorage


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> HeroStudioConfig:
    """Create a test configuration rooted in a temporary directory.

    No environment API key, so key resolution depends only on what each
    test sets up.
    """
    return HeroStudioConfig(
        data_dir=temp_dir / "data",
        api_key=None,
        storage_backend="sqlite",
        _env_file=None,
    )


@pytest.fixture
def storage(test_config: HeroStudioConfig) -> SQLiteStorage:
    """Fresh SQLite storage in the temporary data directory."""
    return SQLiteStorage(test_config.resolved_database_path)


def encode_image(width: int, height: int, fmt: str = "PNG", color=(200, 40, 40)) -> bytes:
    image = Image.new("RGB", (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def image_bytes() -> Callable[..., bytes]:
    """Factory producing encoded solid-color images: ``image_bytes(w, h, fmt="PNG")``."""
    return encode_image


@pytest.fixture
def image_uri() -> Callable[..., str]:
    """Factory producing PNG data URIs: ``image_uri(w, h)``."""

    def _make(width: int, height: int) -> str:
        payload = base64.b64encode(encode_image(width, height)).decode("ascii")
        return f"data:image/png;base64,{payload}"

    return _make


def make_response(
    image: bytes | None = None,
    mime_type: str = "image/png",
    prompt_tokens: int = 120,
    output_tokens: int = 1290,
):
    """Build an object shaped like a google-genai ``GenerateContentResponse``."""
    parts = [SimpleNamespace(text="Here is your image.", inline_data=None)]
    if image is not None:
        parts.append(
            SimpleNamespace(text=None, inline_data=SimpleNamespace(data=image, mime_type=mime_type))
        )
    return SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
        usage_metadata=SimpleNamespace(
            prompt_token_count=prompt_tokens,
            candidates_token_count=output_tokens,
        ),
    )


class FakeImageModel(ImageModel):
    """Image model double recording every request.

    Args:
        response: Object returned from every call.
        error: Exception raised instead of returning.
        hang: Never resolve (for timeout tests).
    """

    def __init__(self, response=None, error: Exception | None = None, hang: bool = False) -> None:
        self.response = response
        self.error = error
        self.hang = hang
        self.requests: list[ImageRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def generate_content(self, request: ImageRequest):
        self.requests.append(request)
        if self.hang:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_model() -> FakeImageModel:
    """Fake model returning a 1024x576 PNG with token usage 120/1290."""
    return FakeImageModel(response=make_response(encode_image(1024, 576)))


@pytest.fixture
def test_client(monkeypatch, test_config: HeroStudioConfig, fake_model: FakeImageModel):
    """FastAPI TestClient on the test configuration with the fake image model.

    The lifespan runs inside the ``with`` block, so storage lives in the
    temporary data directory and pending usage accounting is drained on exit.
    """
    from fastapi.testclient import TestClient

    from herostudio.api import main

    monkeypatch.setattr(main, "config", test_config)
    monkeypatch.setattr(main, "GeminiImageModel", lambda: fake_model)
    with TestClient(main.app) as client:
        yield client
