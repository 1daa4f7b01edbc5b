# backend/focusbank/timer/stats.py

from dataclasses import dataclass, field
from typing import Dict, Iterable

from focusbank.models.session import SessionInDB, SessionPhase

LEVELS = ("L0", "L1", "L2", "L3")


def level_for(planned_minutes: int) -> str:
    """계획 시간으로 세션 레벨 분류: L0 < 60, L1 <= 120, L2 <= 180, 그 외 L3"""
    if planned_minutes < 60:
        return "L0"
    if planned_minutes <= 120:
        return "L1"
    if planned_minutes <= 180:
        return "L2"
    return "L3"


@dataclass(frozen=True)
class SessionSummary:
    total_sessions: int = 0
    total_minutes: int = 0
    by_level: Dict[str, int] = field(default_factory=lambda: {lv: 0 for lv in LEVELS})

    @property
    def total_hours(self) -> float:
        return self.total_minutes / 60

    @property
    def average_minutes(self) -> float:
        return self.total_minutes / self.total_sessions if self.total_sessions else 0.0


def summarize_sessions(sessions: Iterable[SessionInDB]) -> SessionSummary:
    """완료된 세션만 집계 (진행 중/삭제된 세션은 제외)"""
    total = 0
    minutes = 0
    by_level = {lv: 0 for lv in LEVELS}
    for s in sessions:
        if s.phase != SessionPhase.COMPLETE:
            continue
        total += 1
        minutes += s.total_minutes_done or 0
        by_level[level_for(s.planned_minutes)] += 1
    return SessionSummary(total_sessions=total, total_minutes=minutes, by_level=by_level)
