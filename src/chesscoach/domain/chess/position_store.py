from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Tuple
from uuid import UUID, uuid4

import chess


class GameStatus(str, Enum):
    in_progress = "in_progress"
    checkmate = "checkmate"
    stalemate = "stalemate"
    draw = "draw"


class PlayerColor(str, Enum):
    white = "white"
    black = "black"

    @property
    def chess_color(self) -> chess.Color:
        return chess.WHITE if self is PlayerColor.white else chess.BLACK

    @classmethod
    def from_chess(cls, color: chess.Color) -> "PlayerColor":
        return cls.white if color == chess.WHITE else cls.black

    @property
    def opponent(self) -> "PlayerColor":
        return PlayerColor.black if self is PlayerColor.white else PlayerColor.white


class MoveActor(str, Enum):
    human = "human"
    engine = "engine"


@dataclass(frozen=True)
class Position:
    """Immutable board snapshot identified by its FEN."""

    fen: str

    @property
    def turn(self) -> PlayerColor:
        return PlayerColor.white if self.fen.split()[1] == "w" else PlayerColor.black

    @property
    def ply_count(self) -> int:
        fields = self.fen.split()
        fullmove = int(fields[5]) if len(fields) > 5 else 1
        return (fullmove - 1) * 2 + (0 if fields[1] == "w" else 1)

    def board(self) -> chess.Board:
        return chess.Board(self.fen)


@dataclass(frozen=True)
class MoveRecord:
    ply: int
    san: str
    uci: str
    actor: MoveActor
    color: PlayerColor
    fen_before: str
    fen_after: str
    timestamp: datetime

    @property
    def position_before(self) -> Position:
        return Position(self.fen_before)

    @property
    def position_after(self) -> Position:
        return Position(self.fen_after)


@dataclass(frozen=True)
class GameRecord:
    game_id: UUID
    revision: int
    initial_fen: str
    current_fen: str
    moves: Tuple[MoveRecord, ...] = ()
    status: GameStatus = GameStatus.in_progress
    winner: PlayerColor | None = None

    @property
    def position(self) -> Position:
        return Position(self.current_fen)

    @property
    def last_move(self) -> MoveRecord | None:
        return self.moves[-1] if self.moves else None

    @property
    def is_over(self) -> bool:
        return self.status is not GameStatus.in_progress


class GameError(RuntimeError):
    """Base class for rules-side errors."""

    code: str = "game_error"


class IllegalMoveError(GameError):
    code = "illegal_move"


class StalePositionError(IllegalMoveError):
    code = "stale_position"


class GameCompletedError(IllegalMoveError):
    code = "game_completed"


PositionListener = Callable[[GameRecord], None]


@dataclass
class _StoreState:
    game_id: UUID
    board: chess.Board
    initial_fen: str
    moves: List[MoveRecord] = field(default_factory=list)
    status: GameStatus = GameStatus.in_progress
    winner: PlayerColor | None = None


class PositionStore:
    """Own the authoritative position and move history of one game.

    Every mutation works on a copy of the board and commits only once the
    rules engine accepted the move, so a rejected move leaves the record
    untouched. Listeners run synchronously after each commit.
    """

    def __init__(self, initial_fen: str | None = None) -> None:
        self._initial_fen = chess.Board(initial_fen).fen() if initial_fen else chess.STARTING_FEN
        self._revision = 0
        self._listeners: list[PositionListener] = []
        self._state = self._fresh_state()

    def subscribe(self, listener: PositionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def game_id(self) -> UUID:
        return self._state.game_id

    def current_position(self) -> Position:
        return Position(self._state.board.fen())

    def record(self) -> GameRecord:
        return GameRecord(
            game_id=self._state.game_id,
            revision=self._revision,
            initial_fen=self._state.initial_fen,
            current_fen=self._state.board.fen(),
            moves=tuple(self._state.moves),
            status=self._state.status,
            winner=self._state.winner,
        )

    def apply_move(
        self,
        move: chess.Move,
        *,
        actor: MoveActor = MoveActor.human,
        expected_fen: str | None = None,
    ) -> GameRecord:
        state = self._state
        if state.status is not GameStatus.in_progress:
            raise GameCompletedError(f"Game already finished ({state.status.value}).")

        fen_before = state.board.fen()
        if expected_fen is not None and expected_fen != fen_before:
            raise StalePositionError(
                f"Move {move.uci()} was computed for a position that is no longer current."
            )

        if move not in state.board.legal_moves:
            raise IllegalMoveError(f"Move {move.uci()} is not legal in the current position.")

        board = state.board.copy()
        san = board.san(move)
        color = PlayerColor.from_chess(board.turn)
        board.push(move)

        record = MoveRecord(
            ply=len(state.moves) + 1,
            san=san,
            uci=move.uci(),
            actor=actor,
            color=color,
            fen_before=fen_before,
            fen_after=board.fen(),
            timestamp=datetime.now(timezone.utc),
        )
        state.board = board
        state.moves.append(record)
        self._sync_status(state)
        self._revision += 1
        return self._publish()

    def reset(self) -> GameRecord:
        """Discard the history and return to the starting position."""
        self._state = self._fresh_state()
        self._revision += 1
        return self._publish()

    def legal_destinations(self, square: chess.Square | str) -> set[chess.Square]:
        origin = chess.parse_square(square) if isinstance(square, str) else square
        if self._state.status is not GameStatus.in_progress:
            return set()
        return {
            move.to_square
            for move in self._state.board.legal_moves
            if move.from_square == origin
        }

    def _fresh_state(self) -> _StoreState:
        return _StoreState(
            game_id=uuid4(),
            board=chess.Board(self._initial_fen),
            initial_fen=self._initial_fen,
        )

    def _sync_status(self, state: _StoreState) -> None:
        outcome = state.board.outcome(claim_draw=True)
        if outcome is None:
            state.status = GameStatus.in_progress
            state.winner = None
            return

        if outcome.termination is chess.Termination.CHECKMATE:
            state.status = GameStatus.checkmate
            state.winner = PlayerColor.from_chess(outcome.winner)
        elif outcome.termination is chess.Termination.STALEMATE:
            state.status = GameStatus.stalemate
            state.winner = None
        else:
            state.status = GameStatus.draw
            state.winner = None

    def _publish(self) -> GameRecord:
        snapshot = self.record()
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot


__all__ = [
    "GameCompletedError",
    "GameError",
    "GameRecord",
    "GameStatus",
    "IllegalMoveError",
    "MoveActor",
    "MoveRecord",
    "PlayerColor",
    "Position",
    "PositionListener",
    "PositionStore",
    "StalePositionError",
]
