# backend/focusbank/timer/errors.py


class SessionError(Exception):
    """집중 세션 엔진의 공통 예외"""


class CorruptSessionError(SessionError):
    """현재 phase에 필요한 timestamp가 없는 레코드. 타이머 구동에 사용하면 안 됨."""

    def __init__(self, session_id: str | None, missing: list[str]):
        self.session_id = session_id
        self.missing = missing
        super().__init__(
            f"session {session_id} is missing required fields: {', '.join(missing)}"
        )


class BreakRejected(SessionError):
    """휴식 적립분이 부족해서 휴식 시작/연장이 거절됨 (상태 변화 없음)"""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"not enough break time banked ({available} min < {required} min)"
        )


class InvalidTransition(SessionError):
    """현재 phase에서 허용되지 않는 사용자 동작"""


class SessionAlreadyComplete(InvalidTransition):
    """완료된 세션은 더 이상 변경할 수 없음"""


class SessionNotFound(SessionError):
    pass


class PersistenceError(SessionError):
    """저장소 호출 실패. 다음 쓰기 때 자연스럽게 재시도된다."""


class ActiveSessionExists(PersistenceError):
    """유저당 active 세션 1개 제약 위반 (동시 생성 경합)"""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"user {user_id} already has an active session")
