# backend/focusbank/timer/clock.py
"""
SessionClock: 저장된 절대 시각과 현재 시각의 차이로만 남은/경과 시간을 계산한다.

카운터를 1초씩 깎지 않기 때문에 탭 중단, 타이머 지연, 새로고침이 있어도
표시 시간이 실제 경과 시간과 어긋나지 않는다.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

_ONE_US = timedelta(microseconds=1)
_US_PER_SECOND = 1_000_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware_utc(dt: datetime | None) -> datetime | None:
    """
    naive datetime은 UTC로 간주해서 tzinfo를 붙임.
    """
    if dt is None:
        return dt
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _microseconds(delta: timedelta) -> int:
    return delta // _ONE_US


def remaining_seconds(interval_end: datetime, now: datetime) -> int:
    """
    ceil((end - now) / 1s). 음수가 될 수 있음 (= 그만큼 이미 만료됨).
    화면용 0 클램프는 호출자 몫.
    """
    us = _microseconds(ensure_aware_utc(interval_end) - ensure_aware_utc(now))
    return -((-us) // _US_PER_SECOND)


def elapsed_seconds(interval_start: datetime, now: datetime) -> int:
    """floor((now - start) / 1s)"""
    us = _microseconds(ensure_aware_utc(now) - ensure_aware_utc(interval_start))
    return us // _US_PER_SECOND


@dataclass(frozen=True)
class ClockReading:
    remaining: int
    elapsed: int

    @property
    def expired(self) -> bool:
        return self.remaining <= 0

    @property
    def overflow(self) -> int:
        """경계를 넘은 뒤 지난 초 (만료 전이면 0)"""
        return max(0, -self.remaining)

    @property
    def corrected_elapsed(self) -> int:
        """overflow를 빼서 정확히 만료 시점 기준의 경과 초"""
        return self.elapsed - self.overflow


def read(interval_start: datetime, interval_end: datetime, now: datetime) -> ClockReading:
    return ClockReading(
        remaining=remaining_seconds(interval_end, now),
        elapsed=elapsed_seconds(interval_start, now),
    )
