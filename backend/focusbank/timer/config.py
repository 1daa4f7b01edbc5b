# backend/focusbank/timer/config.py

from dataclasses import dataclass


@dataclass(frozen=True)
class FocusConfig:
    """
    집중/휴식 엔진 설정 (모든 값은 분 단위, tick_seconds만 초 단위).

    reward_interval_minutes 만큼 집중할 때마다 reward_amount_minutes 만큼
    휴식 시간이 적립된다. 휴식 1회는 reward_amount_minutes 길이.
    """
    reward_interval_minutes: int = 25
    reward_amount_minutes: int = 5
    minimum_break_minutes: int | None = None
    initial_break_minutes: int = 5
    default_planned_minutes: int = 60
    break_extends_focus: bool = True
    tick_seconds: float = 1.0

    def __post_init__(self):
        if self.reward_interval_minutes <= 0:
            raise ValueError("reward_interval_minutes must be > 0")
        if self.reward_amount_minutes <= 0:
            raise ValueError("reward_amount_minutes must be > 0")
        if self.initial_break_minutes < 0:
            raise ValueError("initial_break_minutes must be >= 0")
        if self.default_planned_minutes <= 0:
            raise ValueError("default_planned_minutes must be > 0")
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds must be > 0")
        if self.minimum_break_minutes is not None and self.minimum_break_minutes < 0:
            raise ValueError("minimum_break_minutes must be >= 0")

    @property
    def break_threshold(self) -> int:
        """휴식 시작/연장에 필요한 최소 적립분"""
        if self.minimum_break_minutes is None:
            return self.reward_amount_minutes
        return self.minimum_break_minutes
