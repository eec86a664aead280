"""Core functionality for hero background and thumbnail generation.

Architecture Overview
---------------------
The core module follows a layered architecture:

1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with HEROSTUDIO_ in .env files

2. **Domain Layer** (models.py, errors.py):
   - Frozen settings snapshots (background / thumbnail tagged union)
   - Typed generation errors with user-facing messages

3. **Pure Helpers** (aspect_ratio.py, prompt_composer.py, presets.py):
   - Aspect ratio snapping and quality tier upgrades
   - Deterministic prompt text

4. **Collaborators** (images.py, image_model.py, storage.py,
   supabase_store.py, api_keys.py):
   - Pillow-based reference optimisation and output resizing
   - Gemini image model through google-genai
   - SQLite or Supabase storage for profiles, usage and presets
   - Local -> environment -> global API key resolution

5. **Orchestration** (generation.py, usage.py):
   - The generation pipeline and its usage accounting

Usage Example
-------------
    from herostudio.core import GenerationOrchestrator, config
    from herostudio.core.api_keys import ApiKeyResolver, InMemoryCredentialStore
    from herostudio.core.image_model import GeminiImageModel
    from herostudio.core.storage import SQLiteStorage

    storage = SQLiteStorage(config.resolved_database_path).bind_user("user-1")
    resolver = ApiKeyResolver(config, storage, InMemoryCredentialStore())
    orchestrator = GenerationOrchestrator(config, storage, resolver, GeminiImageModel())
"""

from herostudio.core.config import HeroStudioConfig, config
from herostudio.core.errors import GenerationError
from herostudio.core.generation import GenerationOrchestrator
from herostudio.core.usage import UsageAccountant

__all__ = [
    "GenerationError",
    "GenerationOrchestrator",
    "HeroStudioConfig",
    "UsageAccountant",
    "config",
]
