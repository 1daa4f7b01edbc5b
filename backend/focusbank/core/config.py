# backend/focusbank/core/config.py

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from focusbank.timer.config import FocusConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "focusbank"

    # [설정] 환경 구분 (development / production)
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    JWT_SECRET_KEY: str = "super-secret-key"
    JWT_ALGORITHM: str = "HS256"

    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # --- 집중/휴식 엔진 설정 (분 단위) ---
    FOCUS_REWARD_INTERVAL_MINUTES: int = 25
    FOCUS_REWARD_AMOUNT_MINUTES: int = 5
    # None이면 reward amount와 동일 (휴식 1회분 이상 있어야 휴식 가능)
    FOCUS_MINIMUM_BREAK_MINUTES: int | None = None
    FOCUS_INITIAL_BREAK_MINUTES: int = 5
    FOCUS_DEFAULT_PLANNED_MINUTES: int = 60
    FOCUS_BREAK_EXTENDS_FOCUS: bool = True
    FOCUS_TICK_SECONDS: float = 1.0

    def focus_config(self) -> FocusConfig:
        return FocusConfig(
            reward_interval_minutes=self.FOCUS_REWARD_INTERVAL_MINUTES,
            reward_amount_minutes=self.FOCUS_REWARD_AMOUNT_MINUTES,
            minimum_break_minutes=self.FOCUS_MINIMUM_BREAK_MINUTES,
            initial_break_minutes=self.FOCUS_INITIAL_BREAK_MINUTES,
            default_planned_minutes=self.FOCUS_DEFAULT_PLANNED_MINUTES,
            break_extends_focus=self.FOCUS_BREAK_EXTENDS_FOCUS,
            tick_seconds=self.FOCUS_TICK_SECONDS,
        )


settings = Settings()
