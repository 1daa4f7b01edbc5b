# backend/focusbank/api/endpoints/health.py

import logging

from fastapi import APIRouter
from pymongo.errors import PyMongoError

from focusbank.db.mongo import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """
    [운영] 헬스 체크
    - 서버 생존 여부 + Mongo 연결 여부를 빠르게 확인하기 위한 엔드포인트
    """
    mongo_ok = False
    mongo_error = None

    try:
        await get_db().command("ping")
        mongo_ok = True
    except (PyMongoError, RuntimeError) as e:
        logger.warning("health check: mongo unavailable: %s", e)
        mongo_error = str(e)

    return {
        "status": "ok" if mongo_ok else "degraded",
        "mongo": mongo_ok,
        "mongo_error": mongo_error,
    }
