# backend/focusbank/timer/bank.py
"""
BreakBank: 집중 시간을 고정 구간(reward interval) 단위로 세어 휴식 시간을 적립한다.
"""

from dataclasses import dataclass

from focusbank.timer.errors import BreakRejected


def grant(
    elapsed_minutes: int,
    last_granted_minutes: int,
    reward_interval_minutes: int,
    reward_amount_minutes: int,
) -> int:
    """
    이번에 새로 적립할 휴식 분.

    구간 개수의 차이로 계산하므로 같은 elapsed로 여러 번 불러도 0,
    elapsed가 늘어나도 이미 센 구간을 다시 세지 않는다.
    """
    current_segments = elapsed_minutes // reward_interval_minutes
    granted_segments = last_granted_minutes // reward_interval_minutes
    return max(0, current_segments - granted_segments) * reward_amount_minutes


@dataclass(frozen=True)
class Credit:
    minutes: int
    balance: int
    watermark: int


def credit(
    balance: int,
    watermark: int,
    elapsed_minutes: int,
    reward_interval_minutes: int,
    reward_amount_minutes: int,
) -> Credit:
    """
    grant 결과를 잔액에 더하고 watermark를 현재 elapsed로 올린다.
    watermark는 구간 경계가 아니라 elapsed 그대로 (다음 구간 진행분 보존), 감소하지 않음.
    """
    minutes = grant(elapsed_minutes, watermark, reward_interval_minutes, reward_amount_minutes)
    if minutes == 0:
        return Credit(minutes=0, balance=balance, watermark=watermark)
    return Credit(
        minutes=minutes,
        balance=balance + minutes,
        watermark=max(watermark, elapsed_minutes),
    )


def debit(balance: int, reward_amount_minutes: int, minimum_minutes: int) -> int:
    """
    휴식 1회분 차감량. 잔액이 최소치 미만이면 BreakRejected.
    """
    if balance < minimum_minutes or balance <= 0:
        raise BreakRejected(available=balance, required=minimum_minutes)
    return min(reward_amount_minutes, balance)
