from __future__ import annotations

import asyncio
from typing import Callable, Optional, Set

from src.chesscoach.domain.chess.move_translator import from_engine_notation
from src.chesscoach.domain.chess.position_store import (
    GameError,
    GameRecord,
    MoveActor,
    PlayerColor,
    PositionStore,
)
from src.chesscoach.domain.engine.session import (
    EngineBusyError,
    EngineError,
    EngineSession,
    SessionState,
)
from src.chesscoach.domain.faults import FaultChannel
from src.chesscoach.interface.telemetry.logging import get_logger


class AutoPlayCoordinator:
    """Let the engine move for its side whenever the table allows it.

    The trigger is re-checked on every position change and every time the
    engine session becomes ready. Only the session's busy state guards
    against overlapping play requests; a trigger that finds the engine busy
    is dropped and picked up by the next change.
    """

    def __init__(
        self,
        store: PositionStore,
        session: EngineSession,
        faults: FaultChannel,
        *,
        engine_color: PlayerColor,
        skill: int | None = None,
        move_time_ms: int | None = None,
        enabled: bool = True,
    ) -> None:
        self._store = store
        self._session = session
        self._faults = faults
        self._engine_color = engine_color
        self._skill = skill
        self._move_time_ms = move_time_ms
        self._enabled = enabled
        self._tasks: Set[asyncio.Task] = set()
        self._detach: list[Callable[[], None]] = []
        self._log = get_logger("chesscoach.auto_play")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def engine_color(self) -> PlayerColor:
        return self._engine_color

    def attach(self) -> None:
        if self._detach:
            return
        self._detach = [
            self._store.subscribe(self._on_position_changed),
            self._session.subscribe(self._on_session_state),
        ]

    def detach(self) -> None:
        for unsubscribe in self._detach:
            unsubscribe()
        self._detach = []

    def set_enabled(self, enabled: bool) -> Optional[asyncio.Task]:
        self._enabled = enabled
        self._log.info("auto_play_toggled", enabled=enabled)
        return self.evaluate()

    def should_play(self) -> bool:
        if not self._enabled or not self._session.is_ready:
            return False
        record = self._store.record()
        return not record.is_over and record.position.turn is self._engine_color

    def evaluate(self) -> Optional[asyncio.Task]:
        if not self.should_play():
            return None
        task = asyncio.get_running_loop().create_task(self._play_turn())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_position_changed(self, _record: GameRecord) -> None:
        self.evaluate()

    def _on_session_state(self, state: SessionState) -> None:
        if state is SessionState.ready:
            self.evaluate()

    async def _play_turn(self) -> Optional[GameRecord]:
        # The trigger may be stale by the time the task runs.
        if not self.should_play():
            return None
        revision = self._store.revision
        position = self._store.current_position()
        try:
            response = await self._session.play(position, self._skill, self._move_time_ms)
        except EngineBusyError:
            self._log.debug("auto_play_skipped_busy", revision=revision)
            return None
        except EngineError as exc:
            if self._store.revision == revision:
                self._faults.report("auto_play", exc)
            return None

        if self._store.revision != revision:
            self._log.info("auto_play_result_discarded", revision=revision, move=response.move)
            return None

        try:
            move = from_engine_notation(response.move or "", position)
            record = self._store.apply_move(
                move, actor=MoveActor.engine, expected_fen=position.fen
            )
        except GameError as exc:
            self._faults.report("auto_play", exc)
            return None

        self._log.info(
            "auto_play_move_applied",
            move=move.uci(),
            ply=len(record.moves),
            status=record.status.value,
        )
        return record


__all__ = ["AutoPlayCoordinator"]
