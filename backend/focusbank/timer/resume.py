# backend/focusbank/timer/resume.py
"""
세션 bootstrap / resume.

(재)시작 시 저장소에서 active 세션을 가져와 타이머 로직을 한 번 재생한 뒤 루프에 넘긴다.
계획 시간이 지난 뒤 돌아온 유저는 낡은 카운트다운 대신 즉시 전이된 상태를 보게 된다.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from focusbank.models.session import SessionInDB, SessionPhase
from focusbank.timer.clock import utcnow
from focusbank.timer.config import FocusConfig
from focusbank.timer.errors import ActiveSessionExists, PersistenceError
from focusbank.timer.phases import Step, settle

logger = logging.getLogger(__name__)


@dataclass
class Bootstrap:
    session: SessionInDB
    created: bool
    step: Step
    # 저장에 실패한 변경분. TimerLoop가 다음 쓰기 때 다시 보낸다.
    unsaved: Dict[str, Any] = field(default_factory=dict)


def new_session_record(
    user_id: str,
    now: datetime,
    config: FocusConfig,
    planned_minutes: Optional[int] = None,
) -> Dict[str, Any]:
    minutes = planned_minutes or config.default_planned_minutes
    if minutes <= 0:
        raise ValueError("planned_minutes must be > 0")
    return {
        "user_id": user_id,
        "phase": SessionPhase.FOCUS,
        "focus_start": now,
        "focus_end": now + timedelta(minutes=minutes),
        "break_start": None,
        "break_end": None,
        "planned_minutes": minutes,
        "break_minutes_remaining": config.initial_break_minutes,
        "last_break_grant_elapsed_minutes": 0,
        "total_minutes_done": None,
        "created_at": now,
    }


async def load_active_session(store, user_id: str) -> Optional[SessionInDB]:
    sessions = await store.get_active_sessions(user_id)
    if not sessions:
        return None
    if len(sessions) > 1:
        # 불변식 위반: 첫 번째(최신) 세션으로 진행
        logger.warning(
            "user %s has %d active sessions, using %s",
            user_id, len(sessions), sessions[0].id,
        )
    return sessions[0]


async def resume(store, session: SessionInDB, config: FocusConfig, now: Optional[datetime] = None) -> Bootstrap:
    """
    저장된 세션을 now 기준으로 한 번 재생하고, 바뀐 필드가 있으면 저장.
    저장 실패는 복구 가능한 오류: 로그만 남기고 unsaved로 넘긴다.
    """
    now = now or utcnow()
    step = settle(session, now, config)
    unsaved: Dict[str, Any] = {}
    if step.changed:
        try:
            await store.update_session(session.id, step.changes)
        except PersistenceError as e:
            logger.error("resume: failed to persist session %s: %s", session.id, e)
            unsaved = dict(step.changes)
    if step.transitions:
        logger.info(
            "resumed session %s with transitions %s",
            session.id, [f"{a.value}->{b.value}" for a, b in step.transitions],
        )
    return Bootstrap(session=step.session, created=False, step=step, unsaved=unsaved)


async def bootstrap(
    store,
    user_id: str,
    config: FocusConfig,
    planned_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
    create: bool = True,
) -> Optional[Bootstrap]:
    """
    active 세션이 있으면 resume, 없으면 (create=True일 때) 새로 만든다.
    동시에 두 클라이언트가 만들려고 하면 저장소 unique index에 진 쪽이 이긴 쪽 세션을 이어받는다.
    """
    now = now or utcnow()
    existing = await load_active_session(store, user_id)

    if existing is None:
        if not create:
            return None
        record = new_session_record(user_id, now, config, planned_minutes)
        try:
            created = await store.create_session(record)
        except ActiveSessionExists:
            logger.info("user %s: concurrent session creation, resuming existing session", user_id)
            existing = await load_active_session(store, user_id)
            if existing is None:
                raise
        else:
            return Bootstrap(session=created, created=True, step=Step(created))

    return await resume(store, existing, config, now)
