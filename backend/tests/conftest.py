"""공통 fixture: 메모리 세션 저장소, 고정 시계, 세션 생성 헬퍼."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

import pytest

from focusbank.crud.sessions import serialize_session, to_document, to_update_fields
from focusbank.models.session import SessionInDB, SessionPhase
from focusbank.timer.config import FocusConfig
from focusbank.timer.errors import ActiveSessionExists, PersistenceError, SessionNotFound

T0 = datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc)


class InMemorySessionStore:
    """
    MongoSessionStore와 같은 계약의 메모리 구현.
    문서는 실제 매핑(to_document / serialize_session)을 거쳐 문자열 시각으로 저장된다.
    """

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.updates: List[tuple] = []
        self.deleted: List[str] = []
        self.fail_updates = 0
        self.fail_creates = 0

    def put(self, session: SessionInDB) -> SessionInDB:
        self.docs[session.id] = to_document(session)
        return session

    def load(self, session_id: str) -> Optional[SessionInDB]:
        doc = self.docs.get(session_id)
        return serialize_session(doc) if doc else None

    async def create_session(self, record: Mapping[str, Any]) -> SessionInDB:
        if self.fail_creates:
            self.fail_creates -= 1
            raise PersistenceError("create_session failed: connection reset")
        user_id = record["user_id"]
        if any(d["user_id"] == user_id and d["active"] for d in self.docs.values()):
            raise ActiveSessionExists(user_id)
        data = dict(record)
        data["_id"] = str(uuid.uuid4())
        data.setdefault("break_minutes_remaining", 0)
        data.setdefault("total_minutes_done", None)
        session = SessionInDB.model_validate(data)
        return self.put(session)

    async def update_session(self, session_id: str, fields: Mapping[str, Any]) -> SessionInDB:
        if self.fail_updates:
            self.fail_updates -= 1
            raise PersistenceError("update_session failed: connection reset")
        if session_id not in self.docs:
            raise SessionNotFound(f"session {session_id} not found")
        self.updates.append((session_id, dict(fields)))
        self.docs[session_id].update(to_update_fields(fields))
        return self.load(session_id)

    async def delete_session(self, session_id: str) -> None:
        self.docs.pop(session_id, None)
        self.deleted.append(session_id)

    async def get_active_sessions(self, user_id: str) -> List[SessionInDB]:
        docs = [d for d in self.docs.values() if d["user_id"] == user_id and d["active"]]
        docs.sort(key=lambda d: d["created_at"] or "", reverse=True)
        return [serialize_session(d) for d in docs]

    async def get_session(self, session_id: str) -> Optional[SessionInDB]:
        return self.load(session_id)

    async def get_completed_sessions(self, user_id: str, limit: Optional[int] = 3) -> List[SessionInDB]:
        docs = [
            d for d in self.docs.values()
            if d["user_id"] == user_id and d["phase"] == SessionPhase.COMPLETE.value
        ]
        docs.sort(key=lambda d: d["created_at"] or "", reverse=True)
        return [serialize_session(d) for d in docs[:limit]]


class FakeClock:
    """호출하면 현재 시각을 돌려주는 시계. advance()로만 움직인다."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_session(
    planned_minutes: int = 60,
    start: datetime = T0,
    phase: SessionPhase = SessionPhase.FOCUS,
    user_id: str = "user-1",
    **overrides,
) -> SessionInDB:
    data = {
        "_id": overrides.pop("id", str(uuid.uuid4())),
        "user_id": user_id,
        "phase": phase,
        "focus_start": start,
        "focus_end": start + timedelta(minutes=planned_minutes),
        "planned_minutes": planned_minutes,
        "break_minutes_remaining": 0,
        "last_break_grant_elapsed_minutes": 0,
        "created_at": start,
    }
    data.update(overrides)
    return SessionInDB.model_validate(data)


@pytest.fixture
def config() -> FocusConfig:
    """reward 5분 구간 / 5분 적립, 시작 적립 0"""
    return FocusConfig(
        reward_interval_minutes=5,
        reward_amount_minutes=5,
        initial_break_minutes=0,
        default_planned_minutes=60,
        tick_seconds=0.01,
    )


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
