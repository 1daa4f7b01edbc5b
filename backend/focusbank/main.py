# main.py
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from focusbank.api.endpoints import health, sessions  # noqa: E402
from focusbank.core.config import settings  # noqa: E402
from focusbank.core.logging import configure_logging  # noqa: E402
from focusbank.crud.sessions import MongoSessionStore  # noqa: E402
from focusbank.db.mongo import close_mongo_connection, connect_to_mongo  # noqa: E402

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# [수명 주기 관리] DB 연결 및 해제
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup 로직
    await connect_to_mongo()
    # 유저당 active 세션 1개 제약 (partial unique index)
    await MongoSessionStore().ensure_indexes()
    logger.info("focusbank started (%s)", settings.ENVIRONMENT)
    yield
    # Shutdown 로직
    await close_mongo_connection()


app = FastAPI(title="Focus Bank Backend", lifespan=lifespan)

# CORS: 프론트엔드 접근 허용
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def read_root():
    return {"message": "Backend is running!"}


app.include_router(health.router)
# 집중 세션 API (REST + WebSocket)
app.include_router(sessions.router, prefix="/api/v1")
