# backend/focusbank/timer/loop.py
"""
TimerLoop: 세션이 열려 있는 동안 1초마다 SessionClock -> BreakBank -> PhaseController 를 돌린다.

- 매 tick 저장된 절대 시각으로부터 상태를 다시 계산 (카운터 감소 없음)
- 필드가 실제로 바뀐 경우에만 저장 (fire-and-forget, 다음 tick을 기다리게 하지 않음)
- stop()은 스케줄러만 취소하고, 진행 중인 쓰기는 끝까지 가게 둔다
"""

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Set

from focusbank.models.session import SessionInDB
from focusbank.timer import phases
from focusbank.timer.clock import utcnow
from focusbank.timer.config import FocusConfig
from focusbank.timer.errors import PersistenceError, SessionNotFound
from focusbank.timer.phases import Step, TimerStatus

logger = logging.getLogger(__name__)

TickCallback = Callable[[TimerStatus], Any]


class TimerLoop:
    def __init__(
        self,
        store,
        session: SessionInDB,
        config: FocusConfig,
        now: Callable[[], datetime] = utcnow,
        on_tick: Optional[TickCallback] = None,
        unsaved: Optional[Iterable[str]] = None,
    ):
        self.store = store
        self.config = config
        self._session = session
        self._now = now
        self._on_tick = on_tick

        self._task: Optional[asyncio.Task] = None
        self._writes: Set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()
        # 저장 실패한 필드 이름. 값은 다시 보낼 때 현재 세션에서 읽는다 (낡은 값 덮어쓰기 방지).
        self._unsaved: Set[str] = set(unsaved or ())

        self.last_error: Optional[Exception] = None
        self.discarded = False

    # ----- 상태 -----
    @property
    def session(self) -> SessionInDB:
        return self._session

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> TimerStatus:
        return phases.read_status(self._session, self._now(), self.config)

    # ----- 스케줄러 -----
    def start(self) -> None:
        if self.running:
            return
        if not self._session.is_active:
            return
        self._task = asyncio.create_task(self._run(), name=f"timer-loop:{self._session.id}")

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def close(self) -> None:
        """
        스케줄러 정지 후 남은 쓰기까지 기다림 (쓰기는 취소하지 않음).
        실패한 필드가 남아 있으면 한 번 더 보낸다. 정지 후에는 다음 tick이 없다.
        """
        task = self._task
        self.stop()
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.drain()
        if self._unsaved:
            self._persist({})
            await self.drain()

    async def wait(self) -> None:
        """스케줄러가 끝날 때까지 대기 (완료, 정지, 오류). 이 대기를 취소해도 루프는 계속 돈다."""
        task = self._task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def drain(self) -> None:
        while True:
            pending = [t for t in self._writes if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    async def _run(self) -> None:
        while self._session.is_active:
            await asyncio.sleep(self.config.tick_seconds)
            try:
                await self.tick()
            except Exception as e:
                # 손상된 레코드 등: 이 세션으로 타이머를 더 돌리면 안 됨
                logger.exception("timer loop for session %s stopped", self._session.id)
                self.last_error = e
                return
        logger.info("timer loop for session %s finished (%s)", self._session.id, self._session.phase.value)

    # ----- tick -----
    async def tick(self) -> Step:
        step = phases.settle(self._session, self._now(), self.config)
        self._commit(step)
        await self._emit()
        return step

    # ----- 사용자 동작 -----
    async def take_break(self) -> Step:
        return await self._act(phases.start_break)

    async def return_to_focus(self) -> Step:
        return await self._act(phases.return_to_focus)

    async def complete(self) -> Step:
        return await self._act(phases.complete)

    async def discard(self) -> None:
        """세션 삭제. Complete 전이 없음, total_minutes_done 기록 없음."""
        await self.close()
        await self.store.delete_session(self._session.id)
        self.discarded = True
        logger.info("discarded session %s", self._session.id)

    async def _act(self, action: phases.Action) -> Step:
        step = phases.run_action(action, self._session, self._now(), self.config)
        self._commit(step)
        if not self._session.is_active:
            self.stop()
        await self._emit()
        return step

    # ----- 저장 -----
    def _commit(self, step: Step) -> None:
        self._session = step.session
        for before, after in step.transitions:
            logger.info("session %s: %s -> %s", self._session.id, before.value, after.value)
        if step.changed or self._unsaved:
            self._persist(step.changes)

    def _persist(self, changes: Dict[str, Any]) -> None:
        fields = {name: getattr(self._session, name) for name in self._unsaved}
        fields.update(changes)
        self._unsaved = set()
        task = asyncio.create_task(self._write(fields))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, fields: Dict[str, Any]) -> None:
        # 순서 보장: 먼저 만든 쓰기가 먼저 반영
        async with self._write_lock:
            try:
                await self.store.update_session(self._session.id, fields)
            except PersistenceError as e:
                logger.error("failed to persist session %s (%s): %s", self._session.id, sorted(fields), e)
                self.last_error = e
                self._unsaved.update(fields)
            except SessionNotFound as e:
                # 다른 클라이언트가 삭제함 -> 더 돌릴 이유 없음
                logger.warning("session %s no longer exists, stopping timer", self._session.id)
                self.last_error = e
                self.stop()
            else:
                self.last_error = None

    async def _emit(self) -> None:
        if self._on_tick is None:
            return
        result = self._on_tick(self.status())
        if inspect.isawaitable(result):
            await result
