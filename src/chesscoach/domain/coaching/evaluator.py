from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Set, Tuple
from uuid import UUID

import chess

from src.chesscoach.domain.chess.move_translator import san_line
from src.chesscoach.domain.chess.position_store import (
    GameRecord,
    MoveActor,
    MoveRecord,
    PlayerColor,
    Position,
    PositionStore,
)
from src.chesscoach.domain.engine.protocol import MATE_SCORE
from src.chesscoach.domain.engine.session import (
    AnalysisResult,
    EngineBusyError,
    EngineError,
    EngineSession,
)
from src.chesscoach.domain.faults import FaultChannel
from src.chesscoach.interface.telemetry.logging import get_logger

# Move classification thresholds (cp_loss -> classification)
_CLASSIFICATION_THRESHOLDS = [
    (30, "great"),
    (80, "good"),
    (150, "inaccuracy"),
    (300, "mistake"),
]


class MissingScoreError(EngineError):
    code = "missing_score"


def classify_loss(cp_loss: int) -> str:
    if cp_loss <= 0:
        return "best"
    for threshold, label in _CLASSIFICATION_THRESHOLDS:
        if cp_loss <= threshold:
            return label
    return "blunder"


@dataclass(frozen=True)
class CoachingEvaluation:
    """Engine verdict on one human move, scored from the mover's side."""

    game_id: UUID
    ply: int
    color: PlayerColor
    move: str
    move_san: str
    fen_before: str
    fen_after: str
    eval_before: int
    eval_after: int
    best_move: str | None
    best_move_san: str | None
    principal_variation: Tuple[str, ...] = ()
    principal_variation_san: Tuple[str, ...] = ()

    @property
    def cp_loss(self) -> int:
        return max(0, self.eval_before - self.eval_after)

    @property
    def is_best(self) -> bool:
        return self.best_move is not None and self.best_move == self.move

    @property
    def classification(self) -> str:
        return "best" if self.is_best else classify_loss(self.cp_loss)

    def advice_request(self) -> dict[str, Any]:
        return {
            "lastMove": self.move,
            "evalBefore": self.eval_before,
            "evalAfter": self.eval_after,
            "bestMove": self.best_move or "",
            "pv": " ".join(self.principal_variation),
        }


EvaluationListener = Callable[[CoachingEvaluation], None]


def mover_perspective(score_cp: int, fen: str, mover: PlayerColor) -> int:
    """Flip a side-to-move score so it reads from ``mover``'s point of view."""
    return score_cp if Position(fen).turn is mover else -score_cp


class CoachingEvaluator:
    """Analyse every human move before and after it was played.

    The two analyses run one after the other through the shared engine
    session. Results are tagged with the game they belong to; an evaluation
    that finishes after a reset is dropped, while one overtaken by later
    moves of the same game is still emitted for its own ply.

    ``defer_to`` reports whether another caller should get the engine
    first; while it holds, the evaluator steps aside once per wake-up.
    """

    def __init__(
        self,
        store: PositionStore,
        session: EngineSession,
        faults: FaultChannel,
        *,
        depth: int = 12,
        mate_score: int = MATE_SCORE,
        defer_to: Callable[[], bool] | None = None,
    ) -> None:
        self._store = store
        self._session = session
        self._faults = faults
        self._depth = depth
        self._mate_score = mate_score
        self._defer_to = defer_to
        self._game_id = store.game_id
        self._evaluations: List[CoachingEvaluation] = []
        self._listeners: List[EvaluationListener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._seen: Set[tuple[UUID, int]] = set()
        self._detach: Optional[Callable[[], None]] = None
        self._log = get_logger("chesscoach.coaching")

    @property
    def evaluations(self) -> tuple[CoachingEvaluation, ...]:
        return tuple(self._evaluations)

    def attach(self) -> None:
        if self._detach is None:
            self._detach = self._store.subscribe(self._on_position_changed)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None

    def subscribe(self, listener: EvaluationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def schedule(self, game_id: UUID, move: MoveRecord) -> asyncio.Task:
        self._seen.add((game_id, move.ply))
        task = asyncio.get_running_loop().create_task(self._run(game_id, move))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def evaluate(self, move: MoveRecord, *, game_id: UUID | None = None) -> CoachingEvaluation | None:
        """Score ``move``; returns ``None`` when its game was reset meanwhile."""
        before = await self._analyze(move.fen_before, game_id)
        if before is None:
            return None
        eval_after = await self._score_after(move, game_id)
        if eval_after is None:
            return None

        raw_before = before.centipawns(self._mate_score)
        if raw_before is None:
            raise MissingScoreError(f"Engine returned no score for {move.fen_before}.")

        position_before = move.position_before
        best_move = before.best_move.move
        best_san = san_line((best_move,), position_before) if best_move else ()
        pv = before.principal_variation
        return CoachingEvaluation(
            game_id=game_id or self._store.game_id,
            ply=move.ply,
            color=move.color,
            move=move.uci,
            move_san=move.san,
            fen_before=move.fen_before,
            fen_after=move.fen_after,
            eval_before=mover_perspective(raw_before, move.fen_before, move.color),
            eval_after=eval_after,
            best_move=best_move,
            best_move_san=best_san[0] if best_san else None,
            principal_variation=pv,
            principal_variation_san=san_line(pv, position_before),
        )

    def _on_position_changed(self, record: GameRecord) -> None:
        if record.game_id != self._game_id:
            self._forget_other_games(record.game_id)
        move = record.last_move
        if move is None or move.actor is not MoveActor.human:
            return
        if (record.game_id, move.ply) in self._seen:
            return
        self.schedule(record.game_id, move)

    async def _run(self, game_id: UUID, move: MoveRecord) -> CoachingEvaluation | None:
        try:
            evaluation = await self.evaluate(move, game_id=game_id)
        except EngineError as exc:
            if self._store.game_id == game_id:
                self._faults.report("coaching", exc)
            return None

        if evaluation is None or self._store.game_id != game_id:
            self._log.info("coaching_evaluation_discarded", ply=move.ply, move=move.uci)
            return None

        self._evaluations.append(evaluation)
        self._log.info(
            "coaching_evaluation_emitted",
            ply=evaluation.ply,
            move=evaluation.move,
            eval_before=evaluation.eval_before,
            eval_after=evaluation.eval_after,
            classification=evaluation.classification,
            superseded=len(self._store.record().moves) > evaluation.ply,
        )
        for listener in list(self._listeners):
            listener(evaluation)
        return evaluation

    def _forget_other_games(self, game_id: UUID) -> None:
        self._game_id = game_id
        self._evaluations = [item for item in self._evaluations if item.game_id == game_id]
        self._seen = {key for key in self._seen if key[0] == game_id}

    def _is_stale(self, game_id: UUID | None) -> bool:
        return game_id is not None and self._store.game_id != game_id

    async def _analyze(self, fen: str, game_id: UUID | None = None) -> AnalysisResult | None:
        while True:
            await self._session.wait_ready()
            if self._is_stale(game_id):
                return None
            if self._defer_to is not None and self._defer_to():
                # Ready waiters wake before state listeners; let the engine reply go first.
                await asyncio.sleep(0)
                if self._is_stale(game_id):
                    return None
            try:
                return await self._session.analyze(fen, self._depth)
            except EngineBusyError:
                continue

    async def _score_after(self, move: MoveRecord, game_id: UUID | None = None) -> int | None:
        board = chess.Board(move.fen_after)
        outcome = board.outcome()
        if outcome is not None:
            # Terminal positions need no search: the side to move is mated or it is a draw.
            raw = -self._mate_score if outcome.termination is chess.Termination.CHECKMATE else 0
        else:
            after = await self._analyze(move.fen_after, game_id)
            if after is None:
                return None
            score = after.centipawns(self._mate_score)
            if score is None:
                raise MissingScoreError(f"Engine returned no score for {move.fen_after}.")
            raw = score
        return mover_perspective(raw, move.fen_after, move.color)


__all__ = [
    "CoachingEvaluation",
    "CoachingEvaluator",
    "EvaluationListener",
    "MissingScoreError",
    "classify_loss",
    "mover_perspective",
]
