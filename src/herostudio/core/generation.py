"""Generation orchestration.

:class:`GenerationOrchestrator` turns one user request into at most one
model call.  The steps run in a fixed order and the first failure aborts
the call:

1. Load the current user (:class:`Unauthenticated` if none).
2. Quota check, strictly before any network work (:class:`QuotaExceeded`).
3. Resolve an API key (:class:`NoCredential`).
4. Pick aspect ratio and quality tier.
5. Compose the prompt.
6. Build the ordered request parts, optimising reference images.
7. Call the model under a hard timeout (:class:`GenerationTimeout`).
8. Extract the first inline image (:class:`EmptyResponse`).
9. Cover-resize to a custom size when one was asked for.  Failure here is
   logged and the unresized image is returned.
10. Usage accounting in a detached background task.  Its failures are
    logged and never reach the caller.

Usage Example
-------------
    orchestrator = GenerationOrchestrator(config, storage, resolver, GeminiImageModel())
    image_uri = await orchestrator.generate(
        subject_images=[face],
        style_images=[],
        environment_images=[],
        settings=BackgroundSettings(niche="Fitness"),
        output_kind=OutputKind.DESKTOP,
    )
    ...
    await orchestrator.drain()  # on shutdown
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence

from herostudio.core.api_keys import ApiKeyResolver
from herostudio.core.aspect_ratio import resolve_output_format
from herostudio.core.config import HeroStudioConfig
from herostudio.core.errors import (
    EmptyResponse,
    GenerationError,
    GenerationTimeout,
    NetworkFailure,
    NoCredential,
    QuotaExceeded,
    ResizePostProcessFailure,
    Unauthenticated,
)
from herostudio.core.image_model import ImageModel, ImageRequest, extract_image_part, usage_tokens
from herostudio.core.images import optimize_reference_image, resize_to_cover
from herostudio.core.models import (
    BackgroundSettings,
    OutputKind,
    ReferenceImage,
    Resolution,
    ThumbnailSettings,
    UIMode,
    UsageAction,
    UserProfile,
    parse_data_uri,
    to_data_uri,
)
from herostudio.core.prompt_composer import compose_prompt
from herostudio.core.storage import StorageBackend
from herostudio.core.usage import UsageAccountant

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request part labels.
# ---------------------------------------------------------------------------
MASTER_STYLE_LABEL = "REFERENCE STYLE BLUEPRINT (COPY MOOD & COLORS):"
CONTEXT_LABEL = "PRIMARY CONTEXT IMAGE (BASE):"
IDENTITY_LABEL = "IDENTITY REFERENCE (CLONE FACE EXACTLY - KEEP PORES/TEXTURE):"
ENVIRONMENT_LABEL = "ENVIRONMENT REF (USE FOR TEXTURE/MATERIAL):"
THUMBNAIL_BACKGROUND_LABEL = "BACKGROUND REF:"
STYLE_LABEL = "SECONDARY VIBE REFERENCES:"
STYLE_FALLBACK_INSTRUCTION = "Copy lighting/atmosphere."


def style_instruction(index: int, image: ReferenceImage) -> str:
    """Instruction placed after the ``index``-th (0-based) style image."""
    description = (image.description or "").strip()
    if description:
        return f"STYLE REF {index + 1}: {description}."
    return f"STYLE REF {index + 1}: {STYLE_FALLBACK_INSTRUCTION}"


class GenerationOrchestrator:
    """Runs the ten-step generation pipeline for one request at a time.

    Args:
        config: Application configuration (model name, timeouts, pricing).
        storage: Storage bound to the requesting user.
        key_resolver: Picks the API key for the call.
        image_model: The model collaborator.
        accountant: Usage accountant; built from ``config`` and ``storage``
            when omitted.
    """

    def __init__(
        self,
        config: HeroStudioConfig,
        storage: StorageBackend,
        key_resolver: ApiKeyResolver,
        image_model: ImageModel,
        accountant: UsageAccountant | None = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.key_resolver = key_resolver
        self.image_model = image_model
        self.accountant = accountant or UsageAccountant(config, storage)
        self._background: set[asyncio.Task] = set()

    def bind(self, storage: StorageBackend, key_resolver: ApiKeyResolver) -> GenerationOrchestrator:
        """Return an orchestrator for one request that shares this one's background tasks."""
        bound = GenerationOrchestrator(self.config, storage, key_resolver, self.image_model)
        bound._background = self._background
        return bound

    # -- Background work ----------------------------------------------------

    def _spawn(self, work: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(work)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for every pending background task to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- Pipeline steps -----------------------------------------------------

    async def _load_user(self) -> UserProfile:
        user = await self.storage.get_current_user()
        if user is None:
            raise Unauthenticated()
        return user

    @staticmethod
    def _check_quota(user: UserProfile) -> None:
        if user.images_generated >= user.image_limit:
            logger.info(f"Quota exceeded for {user.id} ({user.images_generated}/{user.image_limit})")
            raise QuotaExceeded(user.images_generated, user.image_limit)

    async def _optimize(self, images: Sequence[ReferenceImage]) -> list[ReferenceImage]:
        return list(
            await asyncio.gather(
                *(
                    optimize_reference_image(
                        image,
                        max_edge=self.config.reference_max_edge,
                        quality=self.config.reference_jpeg_quality,
                        timeout=self.config.reference_timeout_seconds,
                    )
                    for image in images
                )
            )
        )

    async def _build_request(
        self,
        request: ImageRequest,
        prompt: str,
        settings: BackgroundSettings | ThumbnailSettings,
        subject_images: Sequence[ReferenceImage],
        style_images: Sequence[ReferenceImage],
        environment_images: Sequence[ReferenceImage],
        context: tuple[str, str] | None,
    ) -> ImageRequest:
        request.add_text(prompt)

        master = getattr(settings, "master_style_reference", None)
        if master is not None:
            (optimized,) = await self._optimize([master])
            request.add_text(MASTER_STYLE_LABEL)
            request.add_image(optimized)

        if context is not None:
            mime_type, payload = context
            request.add_image(ReferenceImage(data=payload, mime_type=mime_type))
            request.add_text(CONTEXT_LABEL)

        if subject_images:
            request.add_text(IDENTITY_LABEL)
            for image in await self._optimize(subject_images):
                request.add_image(image)

        # Refinements edit the context image, so fresh scene references are left out.
        if context is not None:
            return request

        if environment_images:
            label = (
                THUMBNAIL_BACKGROUND_LABEL
                if isinstance(settings, ThumbnailSettings)
                else ENVIRONMENT_LABEL
            )
            request.add_text(label)
            for image in await self._optimize(environment_images):
                request.add_image(image)

        if style_images:
            request.add_text(STYLE_LABEL)
            optimized = await self._optimize(style_images)
            for index, image in enumerate(optimized):
                request.add_image(image)
                request.add_text(style_instruction(index, style_images[index]))

        return request

    async def _call_model(self, request: ImageRequest):
        timeout = self.config.generation_timeout_seconds
        try:
            return await asyncio.wait_for(self.image_model.generate_content(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Model call timed out after {timeout}s")
            raise GenerationTimeout(timeout) from None
        except GenerationError:
            raise
        except Exception as e:
            logger.error(f"Model call failed: {e}")
            raise NetworkFailure(str(e) or e.__class__.__name__) from e

    async def _account(
        self,
        user: UserProfile,
        action: UsageAction,
        tier: Resolution,
        tokens_in: int,
        tokens_out: int,
    ) -> None:
        try:
            await self.storage.increment_usage(user.id)
            await self.accountant.record(user.id, action, tier, tokens_in, tokens_out)
        except Exception as e:
            logger.warning(f"Usage accounting failed for {user.id} (result unaffected): {e}")

    # -- Public API ---------------------------------------------------------

    async def generate(
        self,
        subject_images: Sequence[ReferenceImage],
        style_images: Sequence[ReferenceImage],
        environment_images: Sequence[ReferenceImage],
        settings: BackgroundSettings | ThumbnailSettings,
        output_kind: OutputKind,
        context_image_url: str | None = None,
        refinement_text: str | None = None,
        ui_mode: UIMode = UIMode.DESIGNER,
    ) -> str:
        """Generate one image and return it as a data URI.

        Args:
            subject_images: Identity references (the person to keep).
            style_images: Secondary vibe references, each optionally described.
            environment_images: Texture/material references.
            settings: Background or thumbnail settings snapshot.
            output_kind: Desktop, mobile or thumbnail.
            context_image_url: Data URI of a previous result to edit.
            refinement_text: Edit instruction applied to the context image.
            ui_mode: Background sub-mode (quick always bakes the gradient).

        Returns:
            ``data:<mime>;base64,<payload>`` of the generated image.

        Raises:
            GenerationError: One of the hard-fail kinds from
                :mod:`herostudio.core.errors`.
        """
        user = await self._load_user()
        self._check_quota(user)

        api_key = await self.key_resolver.resolve(user)
        if not api_key:
            raise NoCredential(user.is_admin)

        aspect_ratio, tier = resolve_output_format(settings, output_kind)
        context = parse_data_uri(context_image_url) if context_image_url else None
        if context_image_url and context is None:
            logger.warning("Context image is not a base64 data URI; sending request without it.")
        has_context = context is not None
        prompt = compose_prompt(
            settings,
            output_kind,
            has_context_image=has_context,
            refinement_text=refinement_text,
            ui_mode=ui_mode,
        )

        request = await self._build_request(
            ImageRequest(
                model=self.config.model_name,
                aspect_ratio=aspect_ratio,
                image_size=tier.value,
                api_key=api_key,
            ),
            prompt,
            settings,
            subject_images,
            style_images,
            environment_images,
            context,
        )

        logger.info(
            f"Generating {output_kind.value} for {user.id} "
            f"({aspect_ratio}, {tier.value}, {len(request.parts)} parts)"
        )
        response = await self._call_model(request)

        image = extract_image_part(response)
        if image is None:
            raise EmptyResponse()
        mime_type, data = image
        result = to_data_uri(mime_type, data)

        if isinstance(settings, BackgroundSettings) and settings.has_custom_size:
            try:
                result = await resize_to_cover(result, settings.custom_width, settings.custom_height)
            except ResizePostProcessFailure as e:
                logger.warning(f"Final resize failed, returning unresized image: {e.message}")

        action = (
            UsageAction.REFINE
            if refinement_text and refinement_text.strip() and has_context
            else UsageAction.GENERATE
        )
        tokens_in, tokens_out = usage_tokens(response)
        self._spawn(self._account(user, action, tier, tokens_in, tokens_out))

        return result
