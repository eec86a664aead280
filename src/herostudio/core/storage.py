"""Relational storage for profiles, usage logs, presets and app settings.

The generation pipeline consumes storage through the small async interface
defined by :class:`StorageBackend`.  Two implementations exist:

- :class:`SQLiteStorage` (this module): a local SQLite file, the default.
- :class:`~herostudio.core.supabase_store.SupabaseStorage`: a hosted
  Postgres database reached through the Supabase client.

Storage instances are bound to the requesting user with :meth:`bind_user`;
``get_current_user`` returns that user's profile.  Authentication itself is
external: whoever calls ``bind_user`` has already verified the identity.

Quota counter
-------------
``increment_usage`` is a single conditional update ("increment only while
below the limit"), so two concurrent generations for the same user cannot
push the counter past ``image_limit`` at the storage layer.  It returns
``False`` when the row was already at the limit.

Schema (SQLite)::

    profiles      (id PK, email, role, image_limit, images_generated,
                   allowed_system_key, created_at)
    usage_logs    (id PK autoincrement, user_id, action, resolution,
                   tokens_input, tokens_output, cost, created_at)
    app_settings  (setting_key PK, setting_value)
    presets       (id PK, user_id, name, settings JSON, created_at)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from herostudio.core.models import (
    Preset,
    PresetType,
    Resolution,
    Role,
    UsageAction,
    UsageRecord,
    UserProfile,
)

logger = logging.getLogger(__name__)

GLOBAL_KEY_SETTING = "gemini_api_key"

# Fields a custom preset captures from the background settings.
PRESET_FIELDS = (
    "lighting_style",
    "environment_material",
    "color_grading",
    "depth_level",
    "background_tint",
    "rim_light",
    "key_light",
    "volumetric_light",
    "fill_light",
    "floating_elements",
    "floating_elements_description",
    "niche",
)


class StorageError(Exception):
    """Raised when the underlying store cannot complete an operation."""

    pass


def custom_preset(preset_id: str, name: str, settings: dict[str, Any]) -> Preset:
    """Build the :class:`Preset` view of a stored custom preset row."""
    return Preset(
        id=preset_id,
        name=name,
        type=PresetType.CUSTOM,
        description="Custom preset.",
        prompt_extra=f"Custom style: {name}.",
        settings=settings,
        icon="🎨",
    )


class StorageBackend(ABC):
    """Async CRUD interface the generation pipeline depends on."""

    def __init__(self, user_id: str | None = None, default_image_limit: int = 10) -> None:
        self.user_id = user_id
        self.default_image_limit = default_image_limit

    @abstractmethod
    def bind_user(self, user_id: str | None) -> StorageBackend:
        """Return a storage view whose current user is ``user_id``."""

    # -- Profiles -----------------------------------------------------------

    @abstractmethod
    async def get_current_user(self) -> UserProfile | None:
        """Profile of the bound user, or ``None`` when no user is bound."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    @abstractmethod
    async def upsert_profile(self, profile: UserProfile) -> None: ...

    @abstractmethod
    async def list_profiles(self) -> list[UserProfile]: ...

    @abstractmethod
    async def update_image_limit(self, user_id: str, limit: int) -> bool: ...

    @abstractmethod
    async def reset_profile_usage(self, user_id: str) -> bool: ...

    @abstractmethod
    async def set_system_key_access(self, user_id: str, allowed: bool) -> bool: ...

    @abstractmethod
    async def increment_usage(self, user_id: str) -> bool:
        """Increment ``images_generated`` only while it is below ``image_limit``."""

    # -- Global settings ----------------------------------------------------

    @abstractmethod
    async def get_global_key(self) -> str | None: ...

    @abstractmethod
    async def set_global_key(self, key: str) -> None: ...

    # -- Usage log ----------------------------------------------------------

    @abstractmethod
    async def insert_usage_row(self, record: UsageRecord) -> None: ...

    @abstractmethod
    async def query_usage_rows(self, user_id: str) -> list[UsageRecord]:
        """All usage rows for ``user_id``, newest first."""

    @abstractmethod
    async def delete_usage_rows(self, user_id: str) -> int: ...

    # -- Presets ------------------------------------------------------------

    @abstractmethod
    async def save_preset(self, user_id: str, name: str, settings: dict[str, Any]) -> Preset: ...

    @abstractmethod
    async def list_presets(self, user_id: str) -> list[Preset]: ...

    @abstractmethod
    async def delete_preset(self, user_id: str, preset_id: str) -> bool: ...


def _row_to_profile(row: sqlite3.Row) -> UserProfile:
    return UserProfile(
        id=row["id"],
        email=row["email"] or "",
        role=Role(row["role"] or "user"),
        image_limit=row["image_limit"],
        images_generated=row["images_generated"],
        allowed_system_key=bool(row["allowed_system_key"]),
    )


def _row_to_usage(row: sqlite3.Row) -> UsageRecord:
    return UsageRecord(
        id=str(row["id"]),
        user_id=row["user_id"],
        action=UsageAction(row["action"]),
        resolution=Resolution(row["resolution"]),
        tokens_input=row["tokens_input"],
        tokens_output=row["tokens_output"],
        cost=row["cost"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class SQLiteStorage(StorageBackend):
    """Storage backend on a local SQLite file.

    Every operation opens a short-lived connection in a worker thread, so
    instances are cheap to create and safe to share across requests.
    """

    def __init__(
        self,
        db_path: Path,
        user_id: str | None = None,
        default_image_limit: int = 10,
        *,
        initialize: bool = True,
    ) -> None:
        """Initialize the database.

        Args:
            db_path: Path to SQLite database file
            user_id: Identifier of the authenticated user, if any
            default_image_limit: Quota given to profiles created on first sight
            initialize: Create the schema (skipped for bound views)
        """
        super().__init__(user_id, default_image_limit)
        self.db_path = Path(db_path)
        if initialize:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._initialize_db()
            logger.info(f"Initialized storage database at {self.db_path}")

    def bind_user(self, user_id: str | None) -> SQLiteStorage:
        return SQLiteStorage(
            self.db_path,
            user_id,
            self.default_image_limit,
            initialize=False,
        )

    # -- Connection helpers -------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with closing(self._connect()) as conn, conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL DEFAULT '',
                    role TEXT NOT NULL DEFAULT 'user',
                    image_limit INTEGER NOT NULL DEFAULT 10,
                    images_generated INTEGER NOT NULL DEFAULT 0,
                    allowed_system_key INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS usage_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    resolution TEXT NOT NULL,
                    tokens_input INTEGER NOT NULL DEFAULT 0,
                    tokens_output INTEGER NOT NULL DEFAULT 0,
                    cost REAL NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_usage_user_created
                ON usage_logs(user_id, created_at DESC);

                CREATE TABLE IF NOT EXISTS app_settings (
                    setting_key TEXT PRIMARY KEY,
                    setting_value TEXT
                );

                CREATE TABLE IF NOT EXISTS presets (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    settings TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                """)

    def _execute(self, sql: str, params: tuple = ()) -> int:
        try:
            with closing(self._connect()) as conn, conn:
                return conn.execute(sql, params).rowcount
        except sqlite3.Error as e:
            logger.error(f"Storage write failed: {e}")
            raise StorageError(str(e)) from e

    def _fetch_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        try:
            with closing(self._connect()) as conn:
                return conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Storage read failed: {e}")
            raise StorageError(str(e)) from e

    def _fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with closing(self._connect()) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Storage read failed: {e}")
            raise StorageError(str(e)) from e

    # -- Profiles -----------------------------------------------------------

    async def get_current_user(self) -> UserProfile | None:
        if not self.user_id:
            return None

        # First sight of an authenticated user provisions a default profile.
        await asyncio.to_thread(
            self._execute,
            "INSERT OR IGNORE INTO profiles (id, image_limit) VALUES (?, ?)",
            (self.user_id, self.default_image_limit),
        )
        return await self.get_profile(self.user_id)

    async def get_profile(self, user_id: str) -> UserProfile | None:
        row = await asyncio.to_thread(
            self._fetch_one, "SELECT * FROM profiles WHERE id = ?", (user_id,)
        )
        return _row_to_profile(row) if row else None

    async def upsert_profile(self, profile: UserProfile) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO profiles (id, email, role, image_limit, images_generated, allowed_system_key)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                email = excluded.email,
                role = excluded.role,
                image_limit = excluded.image_limit,
                images_generated = excluded.images_generated,
                allowed_system_key = excluded.allowed_system_key
            """,
            (
                profile.id,
                profile.email,
                profile.role.value,
                profile.image_limit,
                profile.images_generated,
                int(profile.allowed_system_key),
            ),
        )

    async def list_profiles(self) -> list[UserProfile]:
        rows = await asyncio.to_thread(self._fetch_all, "SELECT * FROM profiles ORDER BY id")
        return [_row_to_profile(row) for row in rows]

    async def update_image_limit(self, user_id: str, limit: int) -> bool:
        changed = await asyncio.to_thread(
            self._execute, "UPDATE profiles SET image_limit = ? WHERE id = ?", (limit, user_id)
        )
        return changed > 0

    async def reset_profile_usage(self, user_id: str) -> bool:
        changed = await asyncio.to_thread(
            self._execute, "UPDATE profiles SET images_generated = 0 WHERE id = ?", (user_id,)
        )
        return changed > 0

    async def set_system_key_access(self, user_id: str, allowed: bool) -> bool:
        changed = await asyncio.to_thread(
            self._execute,
            "UPDATE profiles SET allowed_system_key = ? WHERE id = ?",
            (int(allowed), user_id),
        )
        return changed > 0

    async def increment_usage(self, user_id: str) -> bool:
        changed = await asyncio.to_thread(
            self._execute,
            """
            UPDATE profiles SET images_generated = images_generated + 1
            WHERE id = ? AND images_generated < image_limit
            """,
            (user_id,),
        )
        if not changed:
            logger.warning(f"Usage counter for {user_id} not incremented (missing profile or at limit)")
        return changed > 0

    # -- Global settings ----------------------------------------------------

    async def get_global_key(self) -> str | None:
        row = await asyncio.to_thread(
            self._fetch_one,
            "SELECT setting_value FROM app_settings WHERE setting_key = ?",
            (GLOBAL_KEY_SETTING,),
        )
        if row is None or not row["setting_value"]:
            return None
        return row["setting_value"]

    async def set_global_key(self, key: str) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO app_settings (setting_key, setting_value) VALUES (?, ?)
            ON CONFLICT(setting_key) DO UPDATE SET setting_value = excluded.setting_value
            """,
            (GLOBAL_KEY_SETTING, key),
        )
        logger.info("Global API key updated")

    # -- Usage log ----------------------------------------------------------

    async def insert_usage_row(self, record: UsageRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO usage_logs
                (user_id, action, resolution, tokens_input, tokens_output, cost, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.user_id,
                record.action.value,
                record.resolution.value,
                record.tokens_input,
                record.tokens_output,
                record.cost,
                record.created_at.isoformat(),
            ),
        )

    async def query_usage_rows(self, user_id: str) -> list[UsageRecord]:
        rows = await asyncio.to_thread(
            self._fetch_all,
            "SELECT * FROM usage_logs WHERE user_id = ? ORDER BY created_at DESC, id DESC",
            (user_id,),
        )
        return [_row_to_usage(row) for row in rows]

    async def delete_usage_rows(self, user_id: str) -> int:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM usage_logs WHERE user_id = ?", (user_id,)
        )
        logger.info(f"Deleted {deleted} usage rows for {user_id}")
        return deleted

    # -- Presets ------------------------------------------------------------

    async def save_preset(self, user_id: str, name: str, settings: dict[str, Any]) -> Preset:
        preset_id = str(uuid.uuid4())
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO presets (id, user_id, name, settings, created_at) VALUES (?, ?, ?, ?, ?)",
            (preset_id, user_id, name, json.dumps(settings), datetime.now(timezone.utc).isoformat()),
        )
        return custom_preset(preset_id, name, settings)

    async def list_presets(self, user_id: str) -> list[Preset]:
        rows = await asyncio.to_thread(
            self._fetch_all,
            "SELECT * FROM presets WHERE user_id = ? ORDER BY created_at, id",
            (user_id,),
        )
        return [custom_preset(row["id"], row["name"], json.loads(row["settings"])) for row in rows]

    async def delete_preset(self, user_id: str, preset_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute,
            "DELETE FROM presets WHERE id = ? AND user_id = ?",
            (preset_id, user_id),
        )
        return deleted > 0
