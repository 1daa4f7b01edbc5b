# backend/focusbank/api/endpoints/sessions.py

import asyncio
import logging
from dataclasses import asdict
from typing import Callable, List, Optional

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from pydantic import ValidationError

from focusbank.api.deps import (
    get_clock,
    get_current_user_id,
    get_focus_config,
    get_session_store,
)
from focusbank.core.security import decode_user_id
from focusbank.models.session import SessionInDB
from focusbank.schemas.session import (
    CompletionSummary,
    SessionAction,
    SessionCreate,
    SessionRead,
    SessionStats,
    SessionStatusResponse,
    TimerStatusRead,
)
from focusbank.timer import phases
from focusbank.timer.config import FocusConfig
from focusbank.timer.errors import (
    BreakRejected,
    CorruptSessionError,
    InvalidTransition,
    PersistenceError,
    SessionError,
    SessionNotFound,
)
from focusbank.timer.loop import TimerLoop
from focusbank.timer.resume import Bootstrap, bootstrap, load_active_session
from focusbank.timer.stats import summarize_sessions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def _http_error(e: SessionError) -> HTTPException:
    """
    엔진 예외 -> HTTP 상태 코드
    """
    if isinstance(e, CorruptSessionError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (BreakRejected, InvalidTransition)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, SessionNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=503, detail="Session store unavailable, please retry")
    return HTTPException(status_code=400, detail=str(e))


def _session_read(session: SessionInDB) -> SessionRead:
    return SessionRead(**session.model_dump(by_alias=False))


def _status_read(timer_status: phases.TimerStatus) -> TimerStatusRead:
    return TimerStatusRead(**asdict(timer_status))


def _transition_labels(step: phases.Step) -> List[str]:
    return [f"{a.value}->{b.value}" for a, b in step.transitions]


def _status_response(
    session: SessionInDB,
    step: phases.Step,
    config: FocusConfig,
    now,
    created: bool = False,
    persisted: bool = True,
) -> SessionStatusResponse:
    return SessionStatusResponse(
        session=_session_read(session),
        status=_status_read(phases.read_status(session, now, config)),
        created=created,
        transitions=_transition_labels(step),
        persisted=persisted,
    )


async def _resume_active(store, user_id: str, config: FocusConfig, now) -> Bootstrap:
    try:
        boot = await bootstrap(store, user_id, config, now=now, create=False)
    except SessionError as e:
        raise _http_error(e)
    if boot is None:
        raise HTTPException(status_code=404, detail="No active session")
    return boot


async def _perform(
    action: phases.Action,
    user_id: str,
    store,
    config: FocusConfig,
    clock: Callable,
) -> phases.Step:
    """
    저장된 active 세션에 동작 적용 -> 변경분 저장.
    만료 전이는 run_action 앞쪽 settle에서 함께 처리되므로 쓰기는 1회.
    """
    now = clock()
    try:
        session = await load_active_session(store, user_id)
    except SessionError as e:
        raise _http_error(e)
    if session is None:
        raise HTTPException(status_code=404, detail="No active session")

    try:
        step = phases.run_action(action, session, now, config)
    except BreakRejected as e:
        logger.info("user %s: break rejected (%s)", user_id, e)
        raise _http_error(e)
    except SessionError as e:
        raise _http_error(e)

    if step.changed:
        try:
            await store.update_session(session.id, step.changes)
        except SessionError as e:
            raise _http_error(e)
    return step


# START / RESUME
@router.post("/current", response_model=SessionStatusResponse)
async def start_or_resume_session(
    response: Response,
    data: Optional[SessionCreate] = None,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_session_store),
    config: FocusConfig = Depends(get_focus_config),
    clock: Callable = Depends(get_clock),
):
    """
    active 세션이 있으면 이어서 진행(만료됐으면 즉시 전이), 없으면 새로 생성.
    """
    now = clock()
    planned = data.planned_minutes if data else None
    try:
        boot = await bootstrap(store, user_id, config, planned_minutes=planned, now=now)
    except SessionError as e:
        raise _http_error(e)

    if boot.created:
        response.status_code = status.HTTP_201_CREATED
    return _status_response(
        boot.session, boot.step, config, now, created=boot.created, persisted=not boot.unsaved
    )


# READ CURRENT
@router.get("/current", response_model=SessionStatusResponse)
async def read_current_session(
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_session_store),
    config: FocusConfig = Depends(get_focus_config),
    clock: Callable = Depends(get_clock),
):
    now = clock()
    boot = await _resume_active(store, user_id, config, now)
    return _status_response(boot.session, boot.step, config, now, persisted=not boot.unsaved)


# BREAK (시작 / 연장)
@router.post("/current/break", response_model=SessionStatusResponse)
async def take_break(
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_session_store),
    config: FocusConfig = Depends(get_focus_config),
    clock: Callable = Depends(get_clock),
):
    step = await _perform(phases.start_break, user_id, store, config, clock)
    return _status_response(step.session, step, config, clock())


# RETURN TO FOCUS
@router.post("/current/focus", response_model=SessionStatusResponse)
async def return_to_focus(
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_session_store),
    config: FocusConfig = Depends(get_focus_config),
    clock: Callable = Depends(get_clock),
):
    step = await _perform(phases.return_to_focus, user_id, store, config, clock)
    return _status_response(step.session, step, config, clock())


# SAVE (COMPLETE)
@router.post("/current/complete", response_model=CompletionSummary)
async def complete_session(
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_session_store),
    config: FocusConfig = Depends(get_focus_config),
    clock: Callable = Depends(get_clock),
):
    step = await _perform(phases.complete, user_id, store, config, clock)
    total = step.session.total_minutes_done or 0
    return CompletionSummary(
        session=_session_read(step.session),
        total_minutes_done=total,
        rounded_minutes=phases.rounded_minutes(total),
    )


# DISCARD
@router.delete("/current", status_code=status.HTTP_204_NO_CONTENT)
async def discard_session(
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_session_store),
):
    """
    세션 삭제. 완료 기록(total_minutes_done)은 남지 않는다.
    """
    try:
        sessions = await store.get_active_sessions(user_id)
        if not sessions:
            raise HTTPException(status_code=404, detail="No active session")
        await store.delete_session(sessions[0].id)
    except SessionError as e:
        raise _http_error(e)
    logger.info("user %s discarded session %s", user_id, sessions[0].id)
    return None


# HISTORY (완료된 세션, 최신순)
@router.get("/history", response_model=List[SessionRead])
async def read_history(
    limit: int = Query(3, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_session_store),
):
    try:
        sessions = await store.get_completed_sessions(user_id, limit=limit)
    except SessionError as e:
        raise _http_error(e)
    return [_session_read(s) for s in sessions]


# STATS
@router.get("/stats", response_model=SessionStats)
async def read_stats(
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_session_store),
):
    try:
        sessions = await store.get_completed_sessions(user_id, limit=None)
    except SessionError as e:
        raise _http_error(e)
    summary = summarize_sessions(sessions)
    return SessionStats(
        total_sessions=summary.total_sessions,
        total_minutes=summary.total_minutes,
        total_hours=summary.total_hours,
        average_minutes=summary.average_minutes,
        by_level=summary.by_level,
    )


async def _next_message(websocket: WebSocket, loop: TimerLoop) -> Optional[dict]:
    """
    다음 클라이언트 메시지. 그 전에 루프가 먼저 끝나면 (만료 완료, 오류) None.
    """
    receive = asyncio.ensure_future(websocket.receive_json())
    finished = asyncio.ensure_future(loop.wait())
    done, pending = await asyncio.wait({receive, finished}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    if receive in done:
        return receive.result()
    return None


# --------------------------------------------------------------------------
# 실시간 세션 화면 (WebSocket)
# 연결 1개 = TimerLoop 1개. 연결이 끊기면 루프도 정지한다.
# --------------------------------------------------------------------------
@router.websocket("/ws")
async def session_socket(
    websocket: WebSocket,
    token: str = Query(...),
    planned_minutes: Optional[int] = Query(None, ge=1, le=24 * 60),
    store=Depends(get_session_store),
    config: FocusConfig = Depends(get_focus_config),
    clock: Callable = Depends(get_clock),
):
    user_id = decode_user_id(token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    try:
        boot = await bootstrap(store, user_id, config, planned_minutes=planned_minutes, now=clock())
    except SessionError as e:
        await websocket.send_json({"type": "error", "detail": str(e)})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    async def push(timer_status: phases.TimerStatus) -> None:
        await websocket.send_json(
            {"type": "status", "status": _status_read(timer_status).model_dump(mode="json")}
        )

    loop = TimerLoop(store, boot.session, config, now=clock, on_tick=push, unsaved=boot.unsaved.keys())
    actions = {
        "break": loop.take_break,
        "focus": loop.return_to_focus,
        "complete": loop.complete,
    }

    try:
        await push(loop.status())
        loop.start()
        while loop.session.is_active:
            payload = await _next_message(websocket, loop)
            if payload is None:
                # 사용자 입력 없이 루프가 끝남: 자동 완료는 while 조건에서, 그 외는 오류
                if loop.session.is_active:
                    detail = str(loop.last_error) if loop.last_error else "timer stopped"
                    await websocket.send_json({"type": "error", "detail": detail})
                    break
                continue
            try:
                message = SessionAction.model_validate(payload)
            except ValidationError:
                await websocket.send_json({"type": "error", "detail": "unknown action"})
                continue

            if message.action == "discard":
                await loop.discard()
                await websocket.send_json({"type": "discarded", "session_id": loop.session.id})
                break
            try:
                await actions[message.action]()
            except BreakRejected as e:
                await websocket.send_json({"type": "rejected", "detail": str(e)})
            except SessionError as e:
                await websocket.send_json({"type": "error", "detail": str(e)})
        await websocket.close()
    except WebSocketDisconnect:
        logger.info("session view closed for user %s", user_id)
    finally:
        await loop.close()
