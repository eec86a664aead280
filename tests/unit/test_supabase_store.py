"""Tests for herostudio.core.supabase_store against an in-memory table fake.

The fake mimics the chained query builder of the ``supabase`` client
(``table().select().eq().execute()``) closely enough to exercise every
query the backend builds, including the compare-and-set increment.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from herostudio.core.models import Resolution, Role, UsageAction, UsageRecord, UserProfile
from herostudio.core.storage import StorageError
from herostudio.core.supabase_store import SupabaseStorage


class FakeQuery:
    def __init__(self, db: "FakeClient", table: str) -> None:
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.ordering = None
        self.max_rows = None
        self.on_conflict = "id"
        self.ignore_duplicates = False

    # -- Builder ------------------------------------------------------------

    def select(self, _columns="*"):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict="id", ignore_duplicates=False):
        self.op, self.payload = "upsert", payload
        self.on_conflict, self.ignore_duplicates = on_conflict, ignore_duplicates
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] < value)
        return self

    def order(self, column, desc=False):
        self.ordering = (column, desc)
        return self

    def limit(self, count):
        self.max_rows = count
        return self

    # -- Execution ----------------------------------------------------------

    def execute(self):
        if self.db.fail:
            raise RuntimeError("connection refused")
        rows = self.db.tables.setdefault(self.table, [])
        matched = [row for row in rows if all(f(row) for f in self.filters)]

        if self.op == "select":
            data = [dict(row) for row in matched]
            if self.ordering:
                column, desc = self.ordering
                data.sort(key=lambda row: row[column], reverse=desc)
            if self.max_rows is not None:
                data = data[: self.max_rows]
        elif self.op == "insert":
            row = {
                "id": self.db.next_id(),
                "created_at": datetime.now(timezone.utc).isoformat(),
                **self.payload,
            }
            rows.append(row)
            data = [dict(row)]
        elif self.op == "update":
            for row in matched:
                row.update(self.payload)
            data = [dict(row) for row in matched]
        elif self.op == "upsert":
            key = self.on_conflict
            existing = [row for row in rows if row.get(key) == self.payload[key]]
            if existing and self.ignore_duplicates:
                data = []
            elif existing:
                existing[0].update(self.payload)
                data = [dict(existing[0])]
            else:
                rows.append(dict(self.payload))
                data = [dict(self.payload)]
        else:
            for row in matched:
                rows.remove(row)
            data = [dict(row) for row in matched]

        return SimpleNamespace(data=data)


class FakeClient:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.fail = False
        self._ids = 0

    def next_id(self) -> int:
        self._ids += 1
        return self._ids

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def store(client) -> SupabaseStorage:
    return SupabaseStorage(client, default_image_limit=5)


def _profile_row(**overrides) -> dict:
    row = {
        "id": "u1",
        "email": "",
        "role": "user",
        "image_limit": 3,
        "images_generated": 0,
        "allowed_system_key": False,
    }
    row.update(overrides)
    return row


class TestProfiles:
    @pytest.mark.asyncio
    async def test_first_sight_provisions_profile(self, store, client):
        user = await store.bind_user("new-user").get_current_user()
        assert user.id == "new-user"
        assert user.image_limit == 5
        assert user.role == Role.USER
        assert len(client.tables["profiles"]) == 1

    @pytest.mark.asyncio
    async def test_unbound_has_no_user(self, store):
        assert await store.get_current_user() is None

    @pytest.mark.asyncio
    async def test_admin_updates(self, store, client):
        client.tables["profiles"] = [_profile_row(images_generated=3)]

        assert await store.update_image_limit("u1", 7) is True
        assert await store.reset_profile_usage("u1") is True
        assert await store.set_system_key_access("u1", True) is True
        assert await store.update_image_limit("ghost", 7) is False

        profile = await store.get_profile("u1")
        assert (profile.image_limit, profile.images_generated, profile.allowed_system_key) == (7, 0, True)

    @pytest.mark.asyncio
    async def test_upsert_and_list(self, store):
        await store.upsert_profile(UserProfile(id="b", role=Role.ADMIN))
        await store.upsert_profile(UserProfile(id="a"))
        assert [p.id for p in await store.list_profiles()] == ["a", "b"]
        assert (await store.get_profile("b")).is_admin


class TestIncrementUsage:
    @pytest.mark.asyncio
    async def test_increments_below_limit(self, store, client):
        client.tables["profiles"] = [_profile_row(images_generated=1)]
        assert await store.increment_usage("u1") is True
        assert client.tables["profiles"][0]["images_generated"] == 2

    @pytest.mark.asyncio
    async def test_never_passes_limit(self, store, client):
        client.tables["profiles"] = [_profile_row(images_generated=3)]
        assert await store.increment_usage("u1") is False
        assert client.tables["profiles"][0]["images_generated"] == 3

    @pytest.mark.asyncio
    async def test_missing_profile(self, store):
        assert await store.increment_usage("ghost") is False

    @pytest.mark.asyncio
    async def test_lost_race_retries(self, store, client, monkeypatch):
        """A concurrent bump between read and write is detected and retried."""
        client.tables["profiles"] = [_profile_row(images_generated=0)]
        real_get = store.get_profile
        calls = []

        async def racing_get(user_id):
            profile = await real_get(user_id)
            if not calls:
                client.tables["profiles"][0]["images_generated"] += 1
            calls.append(user_id)
            return profile

        monkeypatch.setattr(store, "get_profile", racing_get)

        assert await store.increment_usage("u1") is True
        assert len(calls) == 2
        assert client.tables["profiles"][0]["images_generated"] == 2


class TestGlobalKey:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        assert await store.get_global_key() is None
        await store.set_global_key("k1")
        await store.set_global_key("k2")
        assert await store.get_global_key() == "k2"


class TestUsageRows:
    @pytest.mark.asyncio
    async def test_insert_query_delete(self, store):
        for day in (1, 3, 2):
            await store.insert_usage_row(
                UsageRecord(
                    user_id="u1",
                    action=UsageAction.GENERATE,
                    resolution=Resolution.FHD,
                    cost=0.67,
                    created_at=datetime(2025, 1, day, tzinfo=timezone.utc),
                )
            )

        rows = await store.query_usage_rows("u1")
        assert [row.created_at.day for row in rows] == [3, 2, 1]
        assert await store.query_usage_rows("other") == []

        assert await store.delete_usage_rows("u1") == 3
        assert await store.query_usage_rows("u1") == []


class TestPresets:
    @pytest.mark.asyncio
    async def test_crud(self, store):
        preset = await store.save_preset("u1", "Neon", {"niche": "Gaming"})
        assert preset.name == "Neon"
        assert preset.settings == {"niche": "Gaming"}

        assert [p.id for p in await store.list_presets("u1")] == [preset.id]
        assert await store.delete_preset("u2", preset.id) is False
        assert await store.delete_preset("u1", preset.id) is True
        assert await store.list_presets("u1") == []


class TestErrors:
    @pytest.mark.asyncio
    async def test_client_failure_becomes_storage_error(self, store, client):
        client.fail = True
        with pytest.raises(StorageError, match="connection refused"):
            await store.get_profile("u1")
