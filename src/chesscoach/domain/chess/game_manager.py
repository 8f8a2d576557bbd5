from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Set

import chess

from src.chesscoach.domain.chess.position_store import (
    GameCompletedError,
    GameRecord,
    IllegalMoveError,
    MoveActor,
    PlayerColor,
    PositionStore,
)
from src.chesscoach.domain.coaching.advice_service import (
    AdviceError,
    AdviceService,
    CoachingFeedback,
)
from src.chesscoach.domain.coaching.auto_play import AutoPlayCoordinator
from src.chesscoach.domain.coaching.evaluator import CoachingEvaluation, CoachingEvaluator
from src.chesscoach.domain.engine.session import AnalysisResult, EngineSession, SessionClosedError
from src.chesscoach.domain.faults import FaultChannel
from src.chesscoach.interface.telemetry.logging import get_logger


@dataclass(frozen=True)
class GameSnapshot:
    record: GameRecord
    human_color: PlayerColor
    auto_play: bool
    engine_ready: bool
    engine_analyzing: bool
    engine_name: str | None = None

    @property
    def is_human_turn(self) -> bool:
        return not self.auto_play or self.record.position.turn is self.human_color


class GameManager:
    """Coordinate one coaching table: human moves, engine replies and feedback.

    All methods must run on the event loop that owns the engine session.
    """

    def __init__(
        self,
        session: EngineSession,
        *,
        human_color: PlayerColor = PlayerColor.white,
        store: PositionStore | None = None,
        faults: FaultChannel | None = None,
        advice: AdviceService | None = None,
        skill: int | None = None,
        move_time_ms: int | None = None,
        analysis_depth: int = 12,
        auto_play: bool = True,
    ) -> None:
        self._session = session
        self._human_color = human_color
        self._store = store or PositionStore()
        self._faults = faults or FaultChannel()
        self._advice = advice
        self._analysis_depth = analysis_depth
        self._auto_play = AutoPlayCoordinator(
            self._store,
            session,
            self._faults,
            engine_color=human_color.opponent,
            skill=skill,
            move_time_ms=move_time_ms,
            enabled=auto_play,
        )
        self._evaluator = CoachingEvaluator(
            self._store,
            session,
            self._faults,
            depth=analysis_depth,
            defer_to=self._auto_play.should_play,
        )
        self._feedback: List[CoachingFeedback] = []
        self._advice_tasks: Set[asyncio.Task] = set()
        self._log = get_logger("chesscoach.game")

    @property
    def store(self) -> PositionStore:
        return self._store

    @property
    def session(self) -> EngineSession:
        return self._session

    @property
    def faults(self) -> FaultChannel:
        return self._faults

    @property
    def human_color(self) -> PlayerColor:
        return self._human_color

    @property
    def auto_play(self) -> AutoPlayCoordinator:
        return self._auto_play

    @property
    def evaluator(self) -> CoachingEvaluator:
        return self._evaluator

    async def start(self) -> GameSnapshot:
        await self._session.start()
        self._auto_play.attach()
        self._evaluator.attach()
        self._evaluator.subscribe(self._on_evaluation)
        self._auto_play.evaluate()
        self._log.info(
            "game_started",
            game_id=str(self._store.game_id),
            human_color=self._human_color.value,
            auto_play=self._auto_play.enabled,
        )
        return self.state()

    def state(self) -> GameSnapshot:
        status = self._session.status()
        return GameSnapshot(
            record=self._store.record(),
            human_color=self._human_color,
            auto_play=self._auto_play.enabled,
            engine_ready=status["ready"],
            engine_analyzing=status["analyzing"],
            engine_name=self._session.engine_name,
        )

    def submit_move(self, uci: str) -> GameRecord:
        """Apply a human move given in coordinate notation."""
        record = self._store.record()
        if record.is_over:
            raise GameCompletedError(f"Game already finished ({record.status.value}).")
        if self._auto_play.enabled and record.position.turn is not self._human_color:
            raise IllegalMoveError("It is not the human player's turn.")

        try:
            move = chess.Move.from_uci(uci)
        except ValueError as exc:
            raise IllegalMoveError(f"Invalid UCI string: {uci}") from exc

        record = self._store.apply_move(move, actor=MoveActor.human)
        self._log.info("move_accepted", uci=uci, ply=len(record.moves), status=record.status.value)
        return record

    def reset(self) -> GameRecord:
        # Bump the revision first so an in-flight engine reply is discarded.
        record = self._store.reset()
        self._feedback.clear()
        try:
            if self._session.is_busy:
                self._session.stop()
            self._session.new_game()
        except SessionClosedError as exc:
            # The board is reset either way; only the engine announcement is lost.
            self._log.warning("game_reset_without_engine", game_id=str(record.game_id), detail=str(exc))
        self._log.info("game_reset", game_id=str(record.game_id))
        return record

    def set_auto_play(self, enabled: bool) -> GameSnapshot:
        self._auto_play.set_enabled(enabled)
        return self.state()

    async def analyze(self, depth: int | None = None) -> AnalysisResult:
        """Analyse the current position on demand; busy engines are surfaced."""
        position = self._store.current_position()
        return await self._session.analyze(position, depth or self._analysis_depth)

    def legal_destinations(self, square: str) -> list[str]:
        return sorted(chess.square_name(target) for target in self._store.legal_destinations(square))

    def feedback(self) -> tuple[CoachingFeedback, ...]:
        game_id = self._store.game_id
        return tuple(item for item in self._feedback if item.evaluation.game_id == game_id)

    async def wait_idle(self) -> None:
        while self._auto_play.pending or self._evaluator.pending or self._advice_tasks:
            await self._auto_play.wait_idle()
            await self._evaluator.wait_idle()
            if self._advice_tasks:
                await asyncio.gather(*list(self._advice_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        self._auto_play.detach()
        self._evaluator.detach()
        await self._session.shutdown()
        await self.wait_idle()

    def _on_evaluation(self, evaluation: CoachingEvaluation) -> None:
        if self._advice is None:
            self._feedback.append(CoachingFeedback(evaluation))
            return
        task = asyncio.get_running_loop().create_task(self._fetch_advice(evaluation))
        self._advice_tasks.add(task)
        task.add_done_callback(self._advice_tasks.discard)

    async def _fetch_advice(self, evaluation: CoachingEvaluation) -> Optional[CoachingFeedback]:
        loop = asyncio.get_running_loop()
        advice: str | None = None
        try:
            advice = await loop.run_in_executor(None, self._advice.request_advice, evaluation)
        except AdviceError as exc:
            self._faults.report("advice", exc)

        if evaluation.game_id != self._store.game_id:
            self._log.info("advice_discarded", ply=evaluation.ply)
            return None

        feedback = CoachingFeedback(evaluation, advice)
        self._feedback.append(feedback)
        return feedback


__all__ = ["GameManager", "GameSnapshot"]
