"""Tests for herostudio.api.models — Pydantic request/response models.

Tests cover:
- Data URI validation on ImageUpload.
- Settings dispatch on the ``kind`` discriminator.
- Per-role reference image limits.
- Admin and preset payload bounds.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from herostudio.api.models import (
    GenerateRequest,
    GlobalKeyRequest,
    ImageLimitRequest,
    ImageUpload,
    PresetCreateRequest,
)
from herostudio.core.models import BackgroundSettings, OutputKind, ThumbnailSettings, UIMode

PIXEL = "data:image/jpeg;base64,QUJD"


class TestImageUpload:
    """Test ImageUpload Pydantic model."""

    def test_valid_upload(self):
        upload = ImageUpload(data_uri=PIXEL, description="neon rim")
        reference = upload.to_reference()
        assert reference.mime_type == "image/jpeg"
        assert reference.data == "QUJD"
        assert reference.description == "neon rim"

    @pytest.mark.parametrize("value", ["", "QUJD", "https://example.com/a.png", "data:image/png,raw"])
    def test_non_data_uri_rejected(self, value):
        with pytest.raises(ValidationError):
            ImageUpload(data_uri=value)


class TestGenerateRequest:
    """Test GenerateRequest Pydantic model."""

    def test_defaults(self):
        req = GenerateRequest(settings={"kind": "background"})
        assert isinstance(req.settings, BackgroundSettings)
        assert req.output_kind == OutputKind.DESKTOP
        assert req.ui_mode == UIMode.DESIGNER
        assert req.subject_images == []
        assert req.context_image_url is None

    def test_thumbnail_settings(self):
        req = GenerateRequest(
            settings={"kind": "thumbnail", "main_text": "10X"},
            output_kind="thumbnail",
        )
        assert isinstance(req.settings, ThumbnailSettings)
        assert req.settings.main_text == "10X"

    def test_missing_settings_raises(self):
        with pytest.raises(ValidationError):
            GenerateRequest()

    def test_unknown_kind_raises(self):
        with pytest.raises(ValidationError):
            GenerateRequest(settings={"kind": "banner"})

    def test_three_images_per_role_allowed(self):
        uploads = [{"data_uri": PIXEL}] * 3
        req = GenerateRequest(
            settings={"kind": "background"},
            subject_images=uploads,
            style_images=uploads,
            environment_images=uploads,
        )
        assert len(req.environment_images) == 3

    @pytest.mark.parametrize("role", ["subject_images", "style_images", "environment_images"])
    def test_fourth_image_rejected(self, role):
        with pytest.raises(ValidationError):
            GenerateRequest(settings={"kind": "background"}, **{role: [{"data_uri": PIXEL}] * 4})


class TestAdminAndPresetPayloads:
    def test_negative_limit_rejected(self):
        with pytest.raises(ValidationError):
            ImageLimitRequest(image_limit=-1)
        assert ImageLimitRequest(image_limit=0).image_limit == 0

    def test_empty_global_key_rejected(self):
        with pytest.raises(ValidationError):
            GlobalKeyRequest(key="")

    def test_preset_name_bounds(self):
        with pytest.raises(ValidationError):
            PresetCreateRequest(name="", settings={"kind": "background"})
        with pytest.raises(ValidationError):
            PresetCreateRequest(name="x" * 81, settings={"kind": "background"})

    def test_whitespace_global_key_rejected(self):
        with pytest.raises(ValidationError):
            GlobalKeyRequest(key="   ")
        assert GlobalKeyRequest(key="  abc  ").key == "abc"

    def test_whitespace_preset_name_rejected(self):
        with pytest.raises(ValidationError):
            PresetCreateRequest(name="   ", settings={"kind": "background"})
        assert PresetCreateRequest(name=" Neon ", settings={"kind": "background"}).name == "Neon"


class TestBase64Payloads:
    """Payloads that are not valid base64 never reach the generation pipeline."""

    def test_upload_with_bad_payload_rejected(self):
        with pytest.raises(ValidationError):
            ImageUpload(data_uri="data:image/png;base64,abc")

    def test_master_style_reference_with_bad_payload_rejected(self):
        with pytest.raises(ValidationError):
            GenerateRequest(
                settings={"kind": "background", "master_style_reference": {"data": "abc"}}
            )

    def test_context_image_with_bad_payload_rejected(self):
        with pytest.raises(ValidationError):
            GenerateRequest(
                settings={"kind": "background"},
                context_image_url="data:image/png;base64,abc",
            )

    def test_empty_context_image_treated_as_absent(self):
        req = GenerateRequest(settings={"kind": "background"}, context_image_url="")
        assert req.context_image_url is None
