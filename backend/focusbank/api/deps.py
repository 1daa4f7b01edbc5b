from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from focusbank.core.config import settings
from focusbank.core.security import decode_user_id
from focusbank.crud.sessions import MongoSessionStore
from focusbank.timer.clock import utcnow
from focusbank.timer.config import FocusConfig

# 토큰 발급은 외부 인증 서비스. 여기서는 검증만 한다.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> str:
    """
    JWT 토큰을 검증하고 user_id (sub)를 반환합니다.
    """
    user_id = decode_user_id(token)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def get_session_store() -> MongoSessionStore:
    return MongoSessionStore()


def get_focus_config() -> FocusConfig:
    return settings.focus_config()


def get_clock():
    """현재 시각 함수. 테스트에서 고정 시계로 교체."""
    return utcnow
