"""Supabase-backed storage.

Uses the official ``supabase`` client against the same four tables as the
SQLite backend (``profiles``, ``usage_logs``, ``app_settings``,
``presets``).  The client is synchronous, so each call runs in a worker
thread.

Conditional increment
---------------------
PostgREST cannot express ``images_generated = images_generated + 1``, so
the counter uses compare-and-set: read the current value, then update the
row only if it still holds that value and is below the limit.  A lost race
re-reads and tries again a bounded number of times.  Either way the counter
can never be pushed past ``image_limit``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from supabase import Client, create_client

from herostudio.core.models import (
    Preset,
    Resolution,
    Role,
    UsageAction,
    UsageRecord,
    UserProfile,
)
from herostudio.core.storage import GLOBAL_KEY_SETTING, StorageBackend, StorageError, custom_preset

logger = logging.getLogger(__name__)

_INCREMENT_ATTEMPTS = 3


def _to_profile(row: dict[str, Any]) -> UserProfile:
    return UserProfile(
        id=row["id"],
        email=row.get("email") or "",
        role=Role(row.get("role") or "user"),
        image_limit=row.get("image_limit") or 0,
        images_generated=row.get("images_generated") or 0,
        allowed_system_key=bool(row.get("allowed_system_key")),
    )


def _to_usage(row: dict[str, Any]) -> UsageRecord:
    return UsageRecord(
        id=str(row["id"]),
        user_id=row["user_id"],
        action=UsageAction(row["action"]),
        resolution=Resolution(row["resolution"]),
        tokens_input=row.get("tokens_input") or 0,
        tokens_output=row.get("tokens_output") or 0,
        cost=row.get("cost") or 0.0,
        created_at=datetime.fromisoformat(row["created_at"].replace("Z", "+00:00")),
    )


class SupabaseStorage(StorageBackend):
    """Storage backend on a hosted Supabase (Postgres) project."""

    def __init__(
        self,
        client: Client,
        user_id: str | None = None,
        default_image_limit: int = 10,
    ) -> None:
        super().__init__(user_id, default_image_limit)
        self.client = client

    @classmethod
    def from_credentials(cls, url: str, key: str, default_image_limit: int = 10) -> SupabaseStorage:
        """Create a backend from a project URL and service key."""
        logger.info(f"Connecting to Supabase at {url}")
        return cls(create_client(url, key), default_image_limit=default_image_limit)

    def bind_user(self, user_id: str | None) -> SupabaseStorage:
        return SupabaseStorage(self.client, user_id, self.default_image_limit)

    async def _run(self, query) -> list[dict[str, Any]]:
        """Execute a prepared query builder off the event loop."""
        try:
            response = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error(f"Supabase request failed: {e}")
            raise StorageError(str(e)) from e
        return response.data or []

    def _profiles(self):
        return self.client.table("profiles")

    # -- Profiles -----------------------------------------------------------

    async def get_current_user(self) -> UserProfile | None:
        if not self.user_id:
            return None
        profile = await self.get_profile(self.user_id)
        if profile is not None:
            return profile

        logger.info(f"Creating default profile for {self.user_id}")
        rows = await self._run(
            self._profiles().upsert(
                {"id": self.user_id, "image_limit": self.default_image_limit},
                on_conflict="id",
                ignore_duplicates=True,
            )
        )
        if rows:
            return _to_profile(rows[0])
        return await self.get_profile(self.user_id)

    async def get_profile(self, user_id: str) -> UserProfile | None:
        rows = await self._run(self._profiles().select("*").eq("id", user_id).limit(1))
        return _to_profile(rows[0]) if rows else None

    async def upsert_profile(self, profile: UserProfile) -> None:
        await self._run(self._profiles().upsert(profile.model_dump(mode="json"), on_conflict="id"))

    async def list_profiles(self) -> list[UserProfile]:
        rows = await self._run(self._profiles().select("*").order("id"))
        return [_to_profile(row) for row in rows]

    async def update_image_limit(self, user_id: str, limit: int) -> bool:
        rows = await self._run(self._profiles().update({"image_limit": limit}).eq("id", user_id))
        return bool(rows)

    async def reset_profile_usage(self, user_id: str) -> bool:
        rows = await self._run(self._profiles().update({"images_generated": 0}).eq("id", user_id))
        return bool(rows)

    async def set_system_key_access(self, user_id: str, allowed: bool) -> bool:
        rows = await self._run(
            self._profiles().update({"allowed_system_key": allowed}).eq("id", user_id)
        )
        return bool(rows)

    async def increment_usage(self, user_id: str) -> bool:
        for _ in range(_INCREMENT_ATTEMPTS):
            profile = await self.get_profile(user_id)
            if profile is None or profile.images_generated >= profile.image_limit:
                break
            rows = await self._run(
                self._profiles()
                .update({"images_generated": profile.images_generated + 1})
                .eq("id", user_id)
                .eq("images_generated", profile.images_generated)
                .lt("images_generated", profile.image_limit)
            )
            if rows:
                return True
        logger.warning(f"Usage counter for {user_id} not incremented (missing profile or at limit)")
        return False

    # -- Global settings ----------------------------------------------------

    async def get_global_key(self) -> str | None:
        rows = await self._run(
            self.client.table("app_settings")
            .select("setting_value")
            .eq("setting_key", GLOBAL_KEY_SETTING)
            .limit(1)
        )
        if not rows:
            return None
        return rows[0].get("setting_value") or None

    async def set_global_key(self, key: str) -> None:
        await self._run(
            self.client.table("app_settings").upsert(
                {"setting_key": GLOBAL_KEY_SETTING, "setting_value": key},
                on_conflict="setting_key",
            )
        )
        logger.info("Global API key updated")

    # -- Usage log ----------------------------------------------------------

    async def insert_usage_row(self, record: UsageRecord) -> None:
        await self._run(
            self.client.table("usage_logs").insert(
                record.model_dump(mode="json", exclude={"id"})
            )
        )

    async def query_usage_rows(self, user_id: str) -> list[UsageRecord]:
        rows = await self._run(
            self.client.table("usage_logs")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
        )
        return [_to_usage(row) for row in rows]

    async def delete_usage_rows(self, user_id: str) -> int:
        rows = await self._run(self.client.table("usage_logs").delete().eq("user_id", user_id))
        logger.info(f"Deleted {len(rows)} usage rows for {user_id}")
        return len(rows)

    # -- Presets ------------------------------------------------------------

    async def save_preset(self, user_id: str, name: str, settings: dict[str, Any]) -> Preset:
        rows = await self._run(
            self.client.table("presets").insert(
                {"user_id": user_id, "name": name, "settings": settings}
            )
        )
        if not rows:
            raise StorageError("Preset insert returned no row")
        return custom_preset(str(rows[0]["id"]), rows[0]["name"], rows[0]["settings"])

    async def list_presets(self, user_id: str) -> list[Preset]:
        rows = await self._run(
            self.client.table("presets").select("*").eq("user_id", user_id).order("created_at")
        )
        return [custom_preset(str(row["id"]), row["name"], row["settings"]) for row in rows]

    async def delete_preset(self, user_id: str, preset_id: str) -> bool:
        rows = await self._run(
            self.client.table("presets").delete().eq("id", preset_id).eq("user_id", user_id)
        )
        return bool(rows)
