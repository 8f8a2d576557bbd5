from .position_store import (
    GameCompletedError,
    GameError,
    GameRecord,
    GameStatus,
    IllegalMoveError,
    MoveActor,
    MoveRecord,
    PlayerColor,
    Position,
    PositionStore,
    StalePositionError,
)
from .move_translator import (
    UnresolvedMoveError,
    from_engine_notation,
    to_engine_notation,
)

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
    "PositionStore",
    "StalePositionError",
    "UnresolvedMoveError",
    "from_engine_notation",
    "to_engine_notation",
]
