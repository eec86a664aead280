"""HeroStudio - FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Storage** (SQLite or Supabase, chosen by ``HEROSTUDIO_STORAGE_BACKEND``)
  is created once in :func:`lifespan` and bound to the requesting user on
  every request.
- **Authentication** is external.  A trusted front proxy passes the user id
  in the ``X-User-Id`` header.
- **The user's own API key** (the "local" key) travels in the ``X-Api-Key``
  header and lives only for the duration of the request.  Without the
  header, the key stored in the credential file (``credentials_path``) is
  used, which suits single-user deployments.
- **Generation** is delegated to
  :class:`~herostudio.core.generation.GenerationOrchestrator`.  Usage
  accounting runs in the background and is drained on shutdown.
- :class:`~herostudio.core.errors.GenerationError` subclasses are turned
  into ``{"kind", "detail"}`` JSON bodies with the error's status code.

Endpoints
---------
========  ====================================  ==================================
Method    Path                                  Purpose
========  ====================================  ==================================
GET       ``/api/config``                       Options, presets, pricing
POST      ``/api/generate``                     Generate one image
POST      ``/api/prompt/compile``               Preview the composed prompt
GET       ``/api/key/status``                   Whether a key would resolve
GET       ``/api/usage``                        Usage summary
DELETE    ``/api/usage``                        Delete own usage history
GET       ``/api/usage/logs``                   Usage rows, newest first
GET       ``/api/presets``                      Predefined + own presets
POST      ``/api/presets``                      Save a custom preset
DELETE    ``/api/presets/{id}``                 Delete a custom preset
GET       ``/api/admin/users``                  List profiles (admin)
POST      ``/api/admin/users/{id}/limit``       Set image limit (admin)
POST      ``/api/admin/users/{id}/reset-usage`` Reset counter (admin)
POST      ``/api/admin/users/{id}/system-key``  Toggle global key access (admin)
PUT       ``/api/admin/global-key``             Store the global key (admin)
========  ====================================  ==================================

Usage
-----
CLI (installed entry point)::

    herostudio

Direct invocation::

    python -m herostudio.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from herostudio import __version__
from herostudio.api.models import (
    MAX_IMAGES_PER_ROLE,
    GenerateRequest,
    GenerateResponse,
    GlobalKeyRequest,
    ImageLimitRequest,
    PresetCreateRequest,
    PromptCompileRequest,
    PromptCompileResponse,
    SystemKeyAccessRequest,
)
from herostudio.core.api_keys import ApiKeyResolver, FileCredentialStore, InMemoryCredentialStore
from herostudio.core.aspect_ratio import SUPPORTED_ASPECT_RATIOS, resolve_output_format
from herostudio.core.config import HeroStudioConfig, config
from herostudio.core.errors import GenerationError, Unauthenticated
from herostudio.core.generation import GenerationOrchestrator
from herostudio.core.image_model import GeminiImageModel
from herostudio.core.models import OutputKind, Resolution, UsageRecord, UsageSummary, UserProfile
from herostudio.core.presets import PREDEFINED_PRESETS, preset_settings_from
from herostudio.core.prompt_composer import compose_prompt
from herostudio.core.storage import SQLiteStorage, StorageBackend, StorageError
from herostudio.core.supabase_store import SupabaseStorage
from herostudio.core.usage import UsageAccountant

logger = logging.getLogger(__name__)


def build_storage(settings: HeroStudioConfig) -> StorageBackend:
    """Create the storage backend selected by ``settings.storage_backend``."""
    if settings.storage_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise RuntimeError(
                "HEROSTUDIO_SUPABASE_URL and HEROSTUDIO_SUPABASE_KEY are required "
                "for the supabase storage backend"
            )
        return SupabaseStorage.from_credentials(
            settings.supabase_url,
            settings.supabase_key,
            default_image_limit=settings.default_image_limit,
        )
    return SQLiteStorage(
        settings.resolved_database_path,
        default_image_limit=settings.default_image_limit,
    )


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Creates the storage backend and a root
        :class:`GenerationOrchestrator` whose background task set is shared
        by every per-request orchestrator.

    On shutdown:
        Waits for pending usage accounting to finish.
    """
    # --- Startup -----------------------------------------------------------
    storage = build_storage(config)
    credential_store = FileCredentialStore(config.resolved_credentials_path)
    app.state.config = config
    app.state.storage = storage
    app.state.credential_store = credential_store
    app.state.orchestrator = GenerationOrchestrator(
        config,
        storage,
        ApiKeyResolver(config, storage, credential_store),
        GeminiImageModel(),
    )
    logger.info(f"HeroStudio started (storage={config.storage_backend}, model={config.model_name})")

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    await app.state.orchestrator.drain()
    logger.info("Pending usage accounting drained on shutdown.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="HeroStudio",
    description="Hero backgrounds and video thumbnails generated from reference photos.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"kind": "storage_error", "detail": str(exc)})


# ---------------------------------------------------------------------------
# Request-scoped dependencies.
# ---------------------------------------------------------------------------


def get_storage(
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> StorageBackend:
    return request.app.state.storage.bind_user(x_user_id)


async def get_user(storage: StorageBackend = Depends(get_storage)) -> UserProfile:
    user = await storage.get_current_user()
    if user is None:
        raise Unauthenticated()
    return user


async def require_admin(user: UserProfile = Depends(get_user)) -> UserProfile:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def get_key_resolver(
    request: Request,
    storage: StorageBackend = Depends(get_storage),
    x_api_key: str | None = Header(default=None),
) -> ApiKeyResolver:
    """Key resolver for one request.

    A non-empty ``X-Api-Key`` header is the caller's own key for this request
    only.  Without it the local key comes from the credential file at
    ``credentials_path``.
    """
    settings = request.app.state.config
    if x_api_key and x_api_key.strip():
        resolver = ApiKeyResolver(settings, storage, InMemoryCredentialStore())
        resolver.set_manual_key(x_api_key)
        return resolver
    return ApiKeyResolver(settings, storage, request.app.state.credential_store)


def get_accountant(
    request: Request,
    storage: StorageBackend = Depends(get_storage),
) -> UsageAccountant:
    return UsageAccountant(request.app.state.config, storage)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/api/config")
async def get_config(request: Request) -> dict:
    """Return the options the frontend needs to build its forms.

    Returns:
        Version, model name, supported aspect ratios, quality tiers, output
        kinds, the per-role reference image limit, predefined presets and
        the two pricing tiers.
    """
    settings: HeroStudioConfig = request.app.state.config
    return {
        "version": __version__,
        "model": settings.model_name,
        "aspect_ratios": list(SUPPORTED_ASPECT_RATIOS),
        "resolutions": [tier.value for tier in Resolution],
        "output_kinds": [kind.value for kind in OutputKind],
        "max_images_per_role": MAX_IMAGES_PER_ROLE,
        "presets": [preset.model_dump(mode="json") for preset in PREDEFINED_PRESETS],
        "pricing": {"standard": settings.cost_standard, "high": settings.cost_high},
    }


@app.post("/api/generate", response_model=GenerateResponse)
async def generate_image(
    req: GenerateRequest,
    request: Request,
    storage: StorageBackend = Depends(get_storage),
    resolver: ApiKeyResolver = Depends(get_key_resolver),
) -> GenerateResponse:
    """Generate one background or thumbnail.

    Raises:
        GenerationError: Mapped to its status code by the exception handler
            (401 unauthenticated, 429 quota, 403 no key, 504 timeout, 502
            empty response or upstream failure).
    """
    orchestrator = request.app.state.orchestrator.bind(storage, resolver)
    image = await orchestrator.generate(
        subject_images=[upload.to_reference() for upload in req.subject_images],
        style_images=[upload.to_reference() for upload in req.style_images],
        environment_images=[upload.to_reference() for upload in req.environment_images],
        settings=req.settings,
        output_kind=req.output_kind,
        context_image_url=req.context_image_url,
        refinement_text=req.refinement_text,
        ui_mode=req.ui_mode,
    )
    return GenerateResponse(image=image, output_kind=req.output_kind)


@app.post("/api/prompt/compile", response_model=PromptCompileResponse)
async def compile_prompt(req: PromptCompileRequest) -> PromptCompileResponse:
    """Compose the prompt for a request without calling the model."""
    aspect_ratio, tier = resolve_output_format(req.settings, req.output_kind)
    prompt = compose_prompt(
        req.settings,
        req.output_kind,
        has_context_image=req.has_context_image,
        refinement_text=req.refinement_text,
        ui_mode=req.ui_mode,
    )
    return PromptCompileResponse(prompt=prompt, aspect_ratio=aspect_ratio, image_size=tier.value)


@app.get("/api/key/status")
async def key_status(
    user: UserProfile = Depends(get_user),
    resolver: ApiKeyResolver = Depends(get_key_resolver),
) -> dict:
    return {"available": await resolver.check_available(user)}


# -- Usage ------------------------------------------------------------------


@app.get("/api/usage", response_model=UsageSummary)
async def get_usage(
    user: UserProfile = Depends(get_user),
    accountant: UsageAccountant = Depends(get_accountant),
) -> UsageSummary:
    return await accountant.summarize(user.id)


@app.get("/api/usage/logs", response_model=list[UsageRecord])
async def get_usage_logs(
    user: UserProfile = Depends(get_user),
    accountant: UsageAccountant = Depends(get_accountant),
) -> list[UsageRecord]:
    return await accountant.history(user.id)


@app.delete("/api/usage")
async def reset_usage(
    user: UserProfile = Depends(get_user),
    accountant: UsageAccountant = Depends(get_accountant),
) -> dict:
    """Delete the caller's usage history.  The quota counter is untouched."""
    deleted = await accountant.reset(user.id)
    return {"success": True, "deleted": deleted}


# -- Presets ----------------------------------------------------------------


@app.get("/api/presets")
async def list_presets(
    user: UserProfile = Depends(get_user),
    storage: StorageBackend = Depends(get_storage),
) -> dict:
    custom = await storage.list_presets(user.id)
    return {
        "predefined": [preset.model_dump(mode="json") for preset in PREDEFINED_PRESETS],
        "custom": [preset.model_dump(mode="json") for preset in custom],
    }


@app.post("/api/presets")
async def create_preset(
    req: PresetCreateRequest,
    user: UserProfile = Depends(get_user),
    storage: StorageBackend = Depends(get_storage),
) -> dict:
    preset = await storage.save_preset(user.id, req.name, preset_settings_from(req.settings))
    logger.info(f"Saved preset {preset.name!r} for {user.id}")
    return preset.model_dump(mode="json")


@app.delete("/api/presets/{preset_id}")
async def delete_preset(
    preset_id: str,
    user: UserProfile = Depends(get_user),
    storage: StorageBackend = Depends(get_storage),
) -> dict:
    """Delete one of the caller's custom presets.

    Raises:
        HTTPException: 404 if no such preset belongs to the caller.
    """
    if not await storage.delete_preset(user.id, preset_id):
        raise HTTPException(status_code=404, detail="Preset not found")
    return {"success": True, "id": preset_id}


# -- Admin ------------------------------------------------------------------


@app.get("/api/admin/users", response_model=list[UserProfile])
async def admin_list_users(
    admin: UserProfile = Depends(require_admin),
    storage: StorageBackend = Depends(get_storage),
) -> list[UserProfile]:
    return await storage.list_profiles()


@app.post("/api/admin/users/{user_id}/limit")
async def admin_update_limit(
    user_id: str,
    req: ImageLimitRequest,
    admin: UserProfile = Depends(require_admin),
    storage: StorageBackend = Depends(get_storage),
) -> dict:
    if not await storage.update_image_limit(user_id, req.image_limit):
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "id": user_id, "image_limit": req.image_limit}


@app.post("/api/admin/users/{user_id}/reset-usage")
async def admin_reset_usage(
    user_id: str,
    admin: UserProfile = Depends(require_admin),
    storage: StorageBackend = Depends(get_storage),
) -> dict:
    if not await storage.reset_profile_usage(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "id": user_id, "images_generated": 0}


@app.post("/api/admin/users/{user_id}/system-key")
async def admin_toggle_system_key(
    user_id: str,
    req: SystemKeyAccessRequest,
    admin: UserProfile = Depends(require_admin),
    storage: StorageBackend = Depends(get_storage),
) -> dict:
    if not await storage.set_system_key_access(user_id, req.allowed):
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "id": user_id, "allowed_system_key": req.allowed}


@app.put("/api/admin/global-key")
async def admin_set_global_key(
    req: GlobalKeyRequest,
    admin: UserProfile = Depends(require_admin),
    storage: StorageBackend = Depends(get_storage),
) -> dict:
    await storage.set_global_key(req.key)
    return {"success": True}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~herostudio.core.config.config` (which
    loads from ``HEROSTUDIO_SERVER_HOST`` and ``HEROSTUDIO_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:8000``.

    This function is registered as the ``herostudio`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "herostudio.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
