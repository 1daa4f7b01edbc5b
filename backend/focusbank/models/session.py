# 파일 위치: backend/focusbank/models/session.py

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from focusbank.timer.clock import ensure_aware_utc


class SessionPhase(str, Enum):
    FOCUS = "focus"
    BREAK = "break"
    COMPLETE = "complete"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_PHASES


ACTIVE_PHASES = (SessionPhase.FOCUS, SessionPhase.BREAK)


class SessionInDB(BaseModel):
    """
    MongoDB의 'sessions' 컬렉션에 저장되는 집중 세션 레코드입니다.
    유일한 영속 엔티티이며, 엔진은 이 값을 불변 값으로 다루고 매 tick 새 값을 만듭니다.

    - focus_start / focus_end: 현재(또는 마지막) 집중 구간. phase가 focus/break면 필수.
    - break_start / break_end: 현재 휴식 구간. phase가 break일 때만 존재.
    - planned_minutes: 세션 생성 시 정한 집중 시간. 세션 동안 변하지 않음.
    - last_break_grant_elapsed_minutes: 마지막으로 휴식을 적립한 시점의 경과 집중 분 (감소하지 않음)
    - total_minutes_done: 완료 시 1회 기록. 그 전에는 None.
    """
    id: str = Field(..., alias="_id")
    user_id: str
    phase: SessionPhase = SessionPhase.FOCUS

    focus_start: Optional[datetime] = None
    focus_end: Optional[datetime] = None
    break_start: Optional[datetime] = None
    break_end: Optional[datetime] = None

    planned_minutes: int = Field(..., ge=1)
    break_minutes_remaining: int = Field(0, ge=0)
    last_break_grant_elapsed_minutes: int = Field(0, ge=0)
    total_minutes_done: Optional[int] = None

    created_at: Optional[datetime] = None

    model_config = ConfigDict(
        populate_by_name=True,  # 'id'라는 이름으로 넣어도 '_id' 필드에 할당 허용
        from_attributes=True,
        frozen=True,
    )

    @field_validator(
        "focus_start", "focus_end", "break_start", "break_end", "created_at",
        mode="after",
    )
    @classmethod
    def _to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware_utc(v)

    @property
    def is_active(self) -> bool:
        return self.phase.is_active
