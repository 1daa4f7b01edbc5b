# backend/focusbank/crud/sessions.py

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from focusbank.db.mongo import get_db
from focusbank.models.session import ACTIVE_PHASES, SessionInDB, SessionPhase
from focusbank.timer.clock import ensure_aware_utc, utcnow
from focusbank.timer.errors import ActiveSessionExists, PersistenceError, SessionNotFound

logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS = ("focus_start", "focus_end", "break_start", "break_end", "created_at")
ACTIVE_INDEX_NAME = "one_active_session_per_user"


def get_sessions_collection():
    """
    Motor DB 핸들에서 sessions 컬렉션을 가져옵니다.
    """
    return get_db()["sessions"]


def format_instant(dt: Optional[datetime]) -> Optional[str]:
    """
    저장소 경계에서는 시각을 타임존이 명시된 ISO-8601 문자열로 주고받는다.
    자리수를 고정해서 문자열 정렬 = 시간 정렬이 되게 함.
    """
    if dt is None:
        return None
    return ensure_aware_utc(dt).isoformat(timespec="microseconds")


def parse_instant(v: Any) -> Optional[datetime]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return ensure_aware_utc(v)
    return ensure_aware_utc(datetime.fromisoformat(str(v).replace("Z", "+00:00")))


def _to_document_value(key: str, value: Any) -> Any:
    if key in TIMESTAMP_FIELDS:
        return format_instant(value)
    if isinstance(value, SessionPhase):
        return value.value
    return value


def to_document(session: SessionInDB) -> Dict[str, Any]:
    """
    SessionInDB -> Mongo document
    - active: partial unique index 용 파생 필드
    """
    data = session.model_dump(by_alias=True)
    doc = {k: _to_document_value(k, v) for k, v in data.items()}
    doc["active"] = session.is_active
    return doc


def to_update_fields(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """
    엔진이 돌려준 변경 필드(dict) -> $set 문서
    """
    fields = {k: _to_document_value(k, v) for k, v in changes.items() if k not in ("id", "_id")}
    if "phase" in changes:
        fields["active"] = SessionPhase(changes["phase"]).is_active
    return fields


def serialize_session(doc: Mapping[str, Any]) -> SessionInDB:
    """
    Mongo document(dict) -> SessionInDB
    """
    return SessionInDB(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        phase=doc.get("phase") or SessionPhase.FOCUS,
        focus_start=parse_instant(doc.get("focus_start")),
        focus_end=parse_instant(doc.get("focus_end")),
        break_start=parse_instant(doc.get("break_start")),
        break_end=parse_instant(doc.get("break_end")),
        planned_minutes=doc["planned_minutes"],
        break_minutes_remaining=doc.get("break_minutes_remaining", 0) or 0,
        last_break_grant_elapsed_minutes=doc.get("last_break_grant_elapsed_minutes", 0) or 0,
        total_minutes_done=doc.get("total_minutes_done"),
        created_at=parse_instant(doc.get("created_at")),
    )


def _strip_or_none(v: Optional[str]) -> Optional[str]:
    """
    CRUD 안전망: Optional[str]가 DB로 들어가기 전 한번 더 정리
    """
    if v is None:
        return None
    if not isinstance(v, str):
        return v
    s = v.strip()
    return s or None


@contextmanager
def _store_errors(op: str, ref: Optional[str] = None):
    try:
        yield
    except PyMongoError as e:
        logger.error("sessions.%s failed (ref=%s): %s", op, ref, e)
        raise PersistenceError(f"{op} failed: {e}") from e


class MongoSessionStore:
    """
    세션 저장소 (Motor). 엔진 쪽에서는 이 4개 연산 + 조회만 사용한다.
    - create_session / update_session / delete_session / get_active_sessions
    """

    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = get_sessions_collection()
        return self._collection

    async def ensure_indexes(self) -> None:
        """
        정책: 유저당 active 세션은 1개만 허용.
        트랜잭션 대신 partial unique index로 저장소 레벨에서 강제한다.
        """
        with _store_errors("ensure_indexes"):
            await self.collection.create_index(
                [("user_id", ASCENDING)],
                name=ACTIVE_INDEX_NAME,
                unique=True,
                partialFilterExpression={"active": True},
            )
            await self.collection.create_index(
                [("user_id", ASCENDING), ("phase", ASCENDING), ("created_at", DESCENDING)]
            )

    # CREATE
    async def create_session(self, record: Mapping[str, Any]) -> SessionInDB:
        user_id = _strip_or_none(record.get("user_id"))
        if not user_id:
            raise ValueError("user_id is required")

        data = dict(record)
        data.update(
            {
                "_id": str(uuid.uuid4()),
                "user_id": user_id,
                "break_minutes_remaining": data.get("break_minutes_remaining") or 0,
                "total_minutes_done": data.get("total_minutes_done"),
                "created_at": data.get("created_at") or utcnow(),
            }
        )
        data.pop("id", None)
        session = SessionInDB.model_validate(data)

        try:
            with _store_errors("create_session", user_id):
                await self.collection.insert_one(to_document(session))
        except PersistenceError as e:
            if isinstance(e.__cause__, DuplicateKeyError):
                raise ActiveSessionExists(user_id) from e.__cause__
            raise
        logger.info("created session %s for user %s", session.id, user_id)
        return session

    # UPDATE (merge)
    async def update_session(self, session_id: str, fields: Mapping[str, Any]) -> SessionInDB:
        update_doc = to_update_fields(fields)
        if not update_doc:
            existing = await self.get_session(session_id)
            if existing is None:
                raise SessionNotFound(f"session {session_id} not found")
            return existing

        with _store_errors("update_session", session_id):
            updated = await self.collection.find_one_and_update(
                {"_id": session_id},
                {"$set": update_doc},
                return_document=ReturnDocument.AFTER,
            )
        if not updated:
            raise SessionNotFound(f"session {session_id} not found")
        return serialize_session(updated)

    # DELETE
    async def delete_session(self, session_id: str) -> None:
        with _store_errors("delete_session", session_id):
            result = await self.collection.delete_one({"_id": session_id})
        if result.deleted_count != 1:
            logger.warning("delete_session: %s was already gone", session_id)

    # READ ACTIVE (focus/break)
    async def get_active_sessions(self, user_id: str) -> List[SessionInDB]:
        query = {
            "user_id": user_id,
            "phase": {"$in": [p.value for p in ACTIVE_PHASES]},
        }
        with _store_errors("get_active_sessions", user_id):
            cursor = self.collection.find(query).sort("created_at", DESCENDING)
            docs = await cursor.to_list(length=10)
        return [serialize_session(d) for d in docs]

    # READ ONE
    async def get_session(self, session_id: str) -> Optional[SessionInDB]:
        with _store_errors("get_session", session_id):
            doc = await self.collection.find_one({"_id": session_id})
        return serialize_session(doc) if doc else None

    # READ COMPLETED (최신순)
    async def get_completed_sessions(self, user_id: str, limit: Optional[int] = 3) -> List[SessionInDB]:
        """
        limit=None이면 전부 (통계용)
        """
        query = {"user_id": user_id, "phase": SessionPhase.COMPLETE.value}
        with _store_errors("get_completed_sessions", user_id):
            cursor = self.collection.find(query).sort("created_at", DESCENDING)
            if limit is not None:
                cursor = cursor.limit(max(1, min(limit, 1000)))
            docs = await cursor.to_list(length=None)
        return [serialize_session(d) for d in docs]
