# 파일 위치: backend/focusbank/schemas/session.py

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from focusbank.models.session import SessionPhase

# --- API 요청(Request) 스키마 ---

class SessionCreate(BaseModel):
    """
    [요청] POST /sessions/current
    active 세션이 없을 때 새 집중 세션을 만들면서 보내는 값. 없으면 기본 계획 시간 사용.
    """
    planned_minutes: Optional[int] = Field(None, ge=1, le=24 * 60)


class SessionAction(BaseModel):
    """
    [요청] WS /sessions/ws 로 들어오는 사용자 동작
    """
    action: Literal["break", "focus", "complete", "discard"]


# --- API 응답(Response) 스키마 ---

class SessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    phase: SessionPhase
    focus_start: Optional[datetime] = None
    focus_end: Optional[datetime] = None
    break_start: Optional[datetime] = None
    break_end: Optional[datetime] = None
    planned_minutes: int
    break_minutes_remaining: int
    last_break_grant_elapsed_minutes: int
    total_minutes_done: Optional[int] = None
    created_at: Optional[datetime] = None


class TimerStatusRead(BaseModel):
    """
    화면 렌더링용 타이머 상태. remaining_seconds는 음수일 수 있음 (표시용 클램프는 클라이언트 몫)
    """
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    phase: SessionPhase
    remaining_seconds: int
    elapsed_seconds: int
    interval_start: Optional[datetime] = None
    interval_end: Optional[datetime] = None
    planned_minutes: int
    break_minutes_remaining: int
    can_take_break: bool
    total_minutes_done: Optional[int] = None


class SessionStatusResponse(BaseModel):
    session: SessionRead
    status: TimerStatusRead
    created: bool = False
    transitions: List[str] = []
    # False면 저장 실패 (다음 쓰기 때 재시도됨)
    persisted: bool = True


class CompletionSummary(BaseModel):
    session: SessionRead
    total_minutes_done: int
    rounded_minutes: int  # 15분 단위 내림


class SessionStats(BaseModel):
    total_sessions: int
    total_minutes: int
    total_hours: float
    average_minutes: float
    by_level: Dict[str, int]
