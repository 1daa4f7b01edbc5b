# backend/focusbank/timer/phases.py
"""
PhaseController: Focus / Break / Complete 상태 머신.

모든 함수는 (session, now, config) -> Step 형태의 순수 함수다.
입력 session은 절대 변경하지 않고, 다음 session 값과 저장해야 할 변경 필드만 돌려준다.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from focusbank.models.session import SessionInDB, SessionPhase
from focusbank.timer import bank, clock
from focusbank.timer.config import FocusConfig
from focusbank.timer.errors import (
    CorruptSessionError,
    InvalidTransition,
    SessionAlreadyComplete,
)

Transition = Tuple[SessionPhase, SessionPhase]

# 한 번의 settle에서 일어날 수 있는 최대 전이 수 (break -> focus -> complete)
_MAX_SETTLE_STEPS = 3


@dataclass(frozen=True)
class Step:
    session: SessionInDB
    changes: Dict[str, Any] = field(default_factory=dict)
    transitions: Tuple[Transition, ...] = ()
    credited: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    @property
    def transitioned(self) -> bool:
        return bool(self.transitions)


@dataclass(frozen=True)
class TimerStatus:
    """렌더링용 스냅샷. remaining은 음수가 될 수 있음 (화면 클램프는 UI 몫)"""
    session_id: str
    phase: SessionPhase
    remaining_seconds: int
    elapsed_seconds: int
    interval_start: Optional[datetime]
    interval_end: Optional[datetime]
    planned_minutes: int
    break_minutes_remaining: int
    can_take_break: bool
    total_minutes_done: Optional[int]


def _then(
    step: Step,
    changes: Dict[str, Any],
    transition: Optional[Transition] = None,
    credited: int = 0,
) -> Step:
    """step 위에 changes를 얹은 새 Step. 실제로 값이 바뀐 필드만 남긴다."""
    current = step.session
    effective = {k: v for k, v in changes.items() if getattr(current, k) != v}
    merged = {**step.changes, **effective}
    return Step(
        session=current.model_copy(update=effective) if effective else current,
        changes=merged,
        transitions=step.transitions + ((transition,) if transition else ()),
        credited=step.credited + credited,
    )


def require_timestamps(session: SessionInDB) -> None:
    """
    현재 phase에 필요한 timestamp가 없으면 CorruptSessionError.
    break 중에도 집중 복귀/완료 계산에 focus 구간이 필요하다.
    """
    if not session.is_active:
        return
    required = ["focus_start", "focus_end"]
    if session.phase == SessionPhase.BREAK:
        required += ["break_start", "break_end"]
    missing = [name for name in required if getattr(session, name) is None]
    if missing:
        raise CorruptSessionError(session.id, missing)


def _credit(step: Step, elapsed_seconds: int, config: FocusConfig) -> Step:
    session = step.session
    result = bank.credit(
        balance=session.break_minutes_remaining,
        watermark=session.last_break_grant_elapsed_minutes,
        elapsed_minutes=max(0, elapsed_seconds) // 60,
        reward_interval_minutes=config.reward_interval_minutes,
        reward_amount_minutes=config.reward_amount_minutes,
    )
    if not result.minutes:
        return step
    return _then(
        step,
        {
            "break_minutes_remaining": result.balance,
            "last_break_grant_elapsed_minutes": result.watermark,
        },
        credited=result.minutes,
    )


def _finish(step: Step, elapsed_seconds: int) -> Step:
    return _then(
        step,
        {
            "phase": SessionPhase.COMPLETE,
            "total_minutes_done": max(0, elapsed_seconds) // 60,
            "break_start": None,
            "break_end": None,
        },
        transition=(step.session.phase, SessionPhase.COMPLETE),
    )


def _end_break(step: Step, ended_at: datetime, config: FocusConfig) -> Step:
    session = step.session
    changes: Dict[str, Any] = {
        "phase": SessionPhase.FOCUS,
        "break_start": None,
        "break_end": None,
    }
    if config.break_extends_focus:
        # 실제로 쉰 만큼 집중 구간 전체를 뒤로 민다 -> 계획 집중 시간 보존, 경과 집중 시간에서 휴식 제외
        spent = max(timedelta(0), ended_at - session.break_start)
        changes["focus_start"] = session.focus_start + spent
        changes["focus_end"] = session.focus_end + spent
    return _then(step, changes, transition=(SessionPhase.BREAK, SessionPhase.FOCUS))


def advance(session: SessionInDB, now: datetime, config: FocusConfig) -> Step:
    """
    tick 1회: 시계 재계산 -> 휴식 적립 -> 만료된 phase가 있으면 전이 1회.
    """
    require_timestamps(session)
    step = Step(session)

    if session.phase == SessionPhase.FOCUS:
        reading = clock.read(session.focus_start, session.focus_end, now)
        # 경계를 넘긴 tick이면 overflow만큼 빼서 만료 시점 기준으로 적립/기록
        step = _credit(step, reading.corrected_elapsed, config)
        if reading.expired:
            step = _finish(step, reading.corrected_elapsed)
        return step

    if session.phase == SessionPhase.BREAK:
        reading = clock.read(session.break_start, session.break_end, now)
        if reading.expired:
            step = _end_break(step, session.break_end, config)
        return step

    return step


def settle(session: SessionInDB, now: datetime, config: FocusConfig) -> Step:
    """
    더 이상 전이가 없을 때까지 advance를 반복.
    앱이 닫혀 있는 동안 휴식과 집중이 모두 끝났다면 break -> focus -> complete 까지 한 번에 처리된다.
    """
    step = Step(session)
    for _ in range(_MAX_SETTLE_STEPS):
        nxt = advance(step.session, now, config)
        step = Step(
            session=nxt.session,
            changes={**step.changes, **nxt.changes},
            transitions=step.transitions + nxt.transitions,
            credited=step.credited + nxt.credited,
        )
        if not nxt.transitioned:
            break
    return step


def _ensure_open(session: SessionInDB) -> None:
    if session.phase == SessionPhase.COMPLETE:
        raise SessionAlreadyComplete(f"session {session.id} is already complete")
    require_timestamps(session)


def start_break(session: SessionInDB, now: datetime, config: FocusConfig) -> Step:
    """
    휴식 시작 (focus) 또는 연장 (break).
    연장은 now가 아니라 현재 break_end 뒤에 이어 붙인다.
    적립분이 부족하면 BreakRejected (상태 변화 없음).
    """
    _ensure_open(session)
    minutes = bank.debit(
        session.break_minutes_remaining,
        config.reward_amount_minutes,
        config.break_threshold,
    )
    length = timedelta(minutes=minutes)
    balance = session.break_minutes_remaining - minutes

    if session.phase == SessionPhase.FOCUS:
        return _then(
            Step(session),
            {
                "phase": SessionPhase.BREAK,
                "break_start": now,
                "break_end": now + length,
                "break_minutes_remaining": balance,
            },
            transition=(SessionPhase.FOCUS, SessionPhase.BREAK),
        )

    return _then(
        Step(session),
        {
            "break_end": session.break_end + length,
            "break_minutes_remaining": balance,
        },
    )


def return_to_focus(session: SessionInDB, now: datetime, config: FocusConfig) -> Step:
    _ensure_open(session)
    if session.phase != SessionPhase.BREAK:
        raise InvalidTransition(f"session {session.id} is not on a break")
    return _end_break(Step(session), min(now, session.break_end), config)


def complete(session: SessionInDB, now: datetime, config: FocusConfig) -> Step:
    """
    사용자가 직접 세션 저장. break 중이면 먼저 집중으로 복귀시킨 뒤 완료 처리.
    """
    _ensure_open(session)
    step = Step(session)
    if session.phase == SessionPhase.BREAK:
        step = _end_break(step, min(now, session.break_end), config)

    current = step.session
    reading = clock.read(current.focus_start, current.focus_end, now)
    step = _credit(step, reading.corrected_elapsed, config)
    return _finish(step, reading.corrected_elapsed)


Action = Callable[[SessionInDB, datetime, FocusConfig], Step]


def run_action(action: Action, session: SessionInDB, now: datetime, config: FocusConfig) -> Step:
    """
    사용자 동작 앞뒤로 settle. 만료된 세션에 동작을 걸면 먼저 만료 전이가 적용된다.
    저장(complete) 요청 직전에 만료로 완료됐다면 그 완료가 곧 저장 결과다.
    """
    before = settle(session, now, config)
    if action is complete and session.is_active and not before.session.is_active:
        return before
    acted = action(before.session, now, config)
    after = settle(acted.session, now, config)
    return Step(
        session=after.session,
        changes={**before.changes, **acted.changes, **after.changes},
        transitions=before.transitions + acted.transitions + after.transitions,
        credited=before.credited + acted.credited + after.credited,
    )


def can_take_break(session: SessionInDB, config: FocusConfig) -> bool:
    return (
        session.is_active
        and session.break_minutes_remaining > 0
        and session.break_minutes_remaining >= config.break_threshold
    )


def read_status(session: SessionInDB, now: datetime, config: FocusConfig) -> TimerStatus:
    require_timestamps(session)
    if session.phase == SessionPhase.BREAK:
        start, end = session.break_start, session.break_end
    elif session.phase == SessionPhase.FOCUS:
        start, end = session.focus_start, session.focus_end
    else:
        start, end = None, None

    if start is not None and end is not None:
        reading = clock.read(start, end, now)
        remaining, elapsed = reading.remaining, reading.elapsed
    else:
        remaining, elapsed = 0, (session.total_minutes_done or 0) * 60

    return TimerStatus(
        session_id=session.id,
        phase=session.phase,
        remaining_seconds=remaining,
        elapsed_seconds=elapsed,
        interval_start=start,
        interval_end=end,
        planned_minutes=session.planned_minutes,
        break_minutes_remaining=session.break_minutes_remaining,
        can_take_break=can_take_break(session, config),
        total_minutes_done=session.total_minutes_done,
    )


def rounded_minutes(total_minutes: int, block: int = 15) -> int:
    """완료 요약용: 15분 단위 내림"""
    return (max(0, total_minutes) // block) * block
