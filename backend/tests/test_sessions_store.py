"""sessions 컬렉션 매핑 + MongoSessionStore (Motor 컬렉션은 가짜 객체로 대체)"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from conftest import T0, make_session
from focusbank.crud.sessions import (
    ACTIVE_INDEX_NAME,
    MongoSessionStore,
    format_instant,
    parse_instant,
    serialize_session,
    to_document,
    to_update_fields,
)
from focusbank.models.session import SessionPhase
from focusbank.timer.errors import ActiveSessionExists, PersistenceError, SessionNotFound


class FakeCursor:
    def __init__(self, docs):
        self.docs = list(docs)

    def sort(self, key, direction):
        self.docs.sort(key=lambda d: d.get(key) or "", reverse=direction < 0)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    async def to_list(self, length):
        return self.docs[:length]


class FakeCollection:
    """테스트에 필요한 만큼만 흉내낸 Motor 컬렉션"""

    def __init__(self):
        self.docs = {}
        self.indexes = []
        self.error = None

    def _check(self):
        if self.error is not None:
            raise self.error

    def _match(self, doc, query):
        for key, cond in query.items():
            if isinstance(cond, dict) and "$in" in cond:
                if doc.get(key) not in cond["$in"]:
                    return False
            elif doc.get(key) != cond:
                return False
        return True

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return kwargs.get("name", "idx")

    async def insert_one(self, doc):
        self._check()
        if doc.get("active") and any(
            d["user_id"] == doc["user_id"] and d.get("active") for d in self.docs.values()
        ):
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs[doc["_id"]] = dict(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one_and_update(self, query, update, return_document=None):
        self._check()
        doc = self.docs.get(query["_id"])
        if doc is None:
            return None
        doc.update(update["$set"])
        return dict(doc)

    async def delete_one(self, query):
        self._check()
        removed = self.docs.pop(query["_id"], None)
        return SimpleNamespace(deleted_count=1 if removed else 0)

    async def find_one(self, query):
        self._check()
        doc = self.docs.get(query["_id"])
        return dict(doc) if doc else None

    def find(self, query):
        self._check()
        return FakeCursor(d for d in self.docs.values() if self._match(d, query))


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def mongo_store(collection):
    return MongoSessionStore(collection=collection)


def record(user_id="user-1", start=T0, minutes=60):
    return {
        "user_id": user_id,
        "phase": SessionPhase.FOCUS,
        "focus_start": start,
        "focus_end": start + timedelta(minutes=minutes),
        "planned_minutes": minutes,
        "break_minutes_remaining": 5,
        "last_break_grant_elapsed_minutes": 0,
        "created_at": start,
    }


class TestMapping:
    def test_instants_are_iso_strings_in_utc(self):
        kst = timezone(timedelta(hours=9))
        value = format_instant(datetime(2026, 10, 19, 18, 0, tzinfo=kst))
        assert value == "2026-10-19T09:00:00.000000+00:00"

    def test_parse_accepts_z_suffix(self):
        assert parse_instant("2026-10-19T09:00:00Z") == T0
        assert parse_instant(None) is None
        assert parse_instant("") is None

    def test_document_has_derived_active_flag(self):
        doc = to_document(make_session(id="s1"))
        assert doc["_id"] == "s1"
        assert doc["phase"] == "focus"
        assert doc["active"] is True
        assert doc["focus_start"] == "2026-10-19T09:00:00.000000+00:00"
        assert doc["break_start"] is None

    def test_document_round_trip(self):
        session = make_session(id="s1", break_minutes_remaining=15)
        assert serialize_session(to_document(session)).model_dump() == session.model_dump()

    def test_update_fields_track_active(self):
        fields = to_update_fields({"phase": SessionPhase.COMPLETE, "break_end": None, "id": "x"})
        assert fields == {"phase": "complete", "break_end": None, "active": False}

    def test_update_without_phase_leaves_active_alone(self):
        assert "active" not in to_update_fields({"break_minutes_remaining": 3})


class TestMongoSessionStore:
    @pytest.mark.asyncio
    async def test_ensure_indexes_creates_partial_unique_index(self, mongo_store, collection):
        await mongo_store.ensure_indexes()
        keys, options = collection.indexes[0]
        assert keys == [("user_id", 1)]
        assert options["name"] == ACTIVE_INDEX_NAME
        assert options["unique"] is True
        assert options["partialFilterExpression"] == {"active": True}

    @pytest.mark.asyncio
    async def test_create_assigns_id(self, mongo_store, collection):
        session = await mongo_store.create_session(record())
        assert session.id
        assert collection.docs[session.id]["active"] is True
        assert session.break_minutes_remaining == 5

    @pytest.mark.asyncio
    async def test_create_requires_user(self, mongo_store):
        with pytest.raises(ValueError):
            await mongo_store.create_session(record(user_id="  "))

    @pytest.mark.asyncio
    async def test_second_active_session_conflicts(self, mongo_store):
        await mongo_store.create_session(record())
        with pytest.raises(ActiveSessionExists):
            await mongo_store.create_session(record())

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, mongo_store):
        session = await mongo_store.create_session(record())
        updated = await mongo_store.update_session(
            session.id, {"phase": SessionPhase.COMPLETE, "total_minutes_done": 42}
        )
        assert updated.phase == SessionPhase.COMPLETE
        assert updated.total_minutes_done == 42
        assert updated.focus_start == T0
        assert await mongo_store.get_active_sessions("user-1") == []

    @pytest.mark.asyncio
    async def test_update_missing_session(self, mongo_store):
        with pytest.raises(SessionNotFound):
            await mongo_store.update_session("nope", {"break_minutes_remaining": 1})

    @pytest.mark.asyncio
    async def test_driver_errors_become_persistence_errors(self, mongo_store, collection):
        session = await mongo_store.create_session(record())
        collection.error = ServerSelectionTimeoutError("no servers")
        with pytest.raises(PersistenceError):
            await mongo_store.update_session(session.id, {"break_minutes_remaining": 1})
        with pytest.raises(PersistenceError):
            await mongo_store.get_active_sessions("user-1")

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, mongo_store, collection):
        session = await mongo_store.create_session(record())
        await mongo_store.delete_session(session.id)
        await mongo_store.delete_session(session.id)
        assert collection.docs == {}

    @pytest.mark.asyncio
    async def test_completed_sessions_newest_first(self, mongo_store):
        ids = []
        for day in range(3):
            s = await mongo_store.create_session(record(start=T0 + timedelta(days=day)))
            await mongo_store.update_session(s.id, {"phase": SessionPhase.COMPLETE, "total_minutes_done": 60})
            ids.append(s.id)

        latest = await mongo_store.get_completed_sessions("user-1", limit=2)
        assert [s.id for s in latest] == [ids[2], ids[1]]

    @pytest.mark.asyncio
    async def test_completed_sessions_without_limit(self, mongo_store, collection):
        for i in range(1005):
            collection.docs[f"done-{i}"] = to_document(
                make_session(id=f"done-{i}", phase=SessionPhase.COMPLETE, total_minutes_done=30)
            )
        assert len(await mongo_store.get_completed_sessions("user-1", limit=None)) == 1005
        assert len(await mongo_store.get_completed_sessions("user-1", limit=5000)) == 1000
