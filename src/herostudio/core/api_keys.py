"""API key resolution.

A generation needs exactly one model API key.  Keys are looked up in strict
priority order and the first hit wins:

1. **Local key** -- a key the user typed in themselves, held in a
   :class:`CredentialStore` scoped to their session.  Always wins, whatever
   the user's role.
2. **Environment key** -- the deployment-level ``config.api_key``.
3. **Global key** -- the key stored in the ``app_settings`` table, usable
   only by admins and by users with ``allowed_system_key`` set.

A lookup that raises is logged and treated as "tier unavailable", so
:meth:`ApiKeyResolver.resolve` always ends with a key or ``None``.

Usage Example
-------------
    resolver = ApiKeyResolver(config, storage, InMemoryCredentialStore())
    key = await resolver.resolve(user)
    if key is None:
        raise NoCredential(user.is_admin)
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from herostudio.core.config import HeroStudioConfig
from herostudio.core.models import UserProfile
from herostudio.core.storage import StorageBackend

logger = logging.getLogger(__name__)

LOCAL_KEY_NAME = "gemini_api_key"


# ---------------------------------------------------------------------------
# Local credential stores.
# ---------------------------------------------------------------------------


class CredentialStore(ABC):
    """Holds a single user-supplied key string."""

    @abstractmethod
    def get(self) -> str | None: ...

    @abstractmethod
    def set(self, value: str) -> None: ...

    @abstractmethod
    def remove(self) -> None: ...


class InMemoryCredentialStore(CredentialStore):
    """Credential store living for one request or session."""

    def __init__(self, value: str | None = None) -> None:
        self._value = value or None

    def get(self) -> str | None:
        return self._value

    def set(self, value: str) -> None:
        self._value = value

    def remove(self) -> None:
        self._value = None


class FileCredentialStore(CredentialStore):
    """Credential store persisted to a small JSON file.

    The file holds ``{"gemini_api_key": "..."}``.  A missing or unreadable
    file reads as "no key".
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict:
        if self.path.exists():
            try:
                with open(self.path) as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read credential file {self.path}: {e}")
                return {}
            return data if isinstance(data, dict) else {}
        return {}

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)

    def get(self) -> str | None:
        return self._load().get(LOCAL_KEY_NAME) or None

    def set(self, value: str) -> None:
        data = self._load()
        data[LOCAL_KEY_NAME] = value
        self._save(data)

    def remove(self) -> None:
        data = self._load()
        if data.pop(LOCAL_KEY_NAME, None) is not None:
            self._save(data)


# ---------------------------------------------------------------------------
# Resolver.
# ---------------------------------------------------------------------------


class ApiKeyResolver:
    """Pick the API key for a generation (local, then environment, then global)."""

    def __init__(
        self,
        config: HeroStudioConfig,
        storage: StorageBackend,
        credential_store: CredentialStore,
    ) -> None:
        self.config = config
        self.storage = storage
        self.credential_store = credential_store

    def set_manual_key(self, key: str | None) -> None:
        """Store the user's own key, or clear it when ``key`` is empty."""
        key = (key or "").strip()
        if key:
            self.credential_store.set(key)
        else:
            self.credential_store.remove()

    def _local_key(self) -> str | None:
        try:
            return self.credential_store.get() or None
        except Exception as e:
            logger.warning(f"Local credential lookup failed: {e}")
            return None

    async def _global_key(self, user: UserProfile) -> str | None:
        if not (user.is_admin or user.allowed_system_key):
            return None
        try:
            return await self.storage.get_global_key() or None
        except Exception as e:
            logger.warning(f"Global key lookup failed: {e}")
            return None

    async def resolve(self, user: UserProfile) -> str | None:
        """Return the first available key for ``user``, or ``None``."""
        local = self._local_key()
        if local:
            logger.debug(f"Using local API key for {user.id}")
            return local

        if self.config.api_key:
            logger.debug(f"Using environment API key for {user.id}")
            return self.config.api_key

        key = await self._global_key(user)
        if key:
            logger.debug(f"Using global API key for {user.id}")
        return key

    async def check_available(self, user: UserProfile) -> bool:
        return await self.resolve(user) is not None
