"""Translate between engine coordinate notation and rules-engine moves.

Engine moves carry only the source square, destination square and an
optional promotion letter (``e2e4``, ``h7h8n``). A string is accepted only
when it names exactly one legal move of the position it was produced for;
nothing is ever substituted for an unmatched move.
"""

from __future__ import annotations

from typing import Tuple

import chess

from src.chesscoach.domain.chess.position_store import GameError, Position


class UnresolvedMoveError(GameError):
    """Engine notation that does not map onto a legal move."""

    code = "unresolved_move"


def parse_engine_move(text: str) -> chess.Move:
    try:
        move = chess.Move.from_uci(text.strip())
    except ValueError as exc:
        raise UnresolvedMoveError(f"Engine move {text!r} is not coordinate notation.") from exc
    if not move:
        raise UnresolvedMoveError(f"Engine move {text!r} is a null move.")
    return move


def to_engine_notation(move: chess.Move, position: Position) -> str:
    board = position.board()
    if move not in board.legal_moves:
        raise UnresolvedMoveError(f"Move {move.uci()} is not legal in {position.fen}.")
    return move.uci()


def from_engine_notation(text: str, position: Position) -> chess.Move:
    candidate = parse_engine_move(text)
    board = position.board()
    matches = [
        move
        for move in board.legal_moves
        if move.from_square == candidate.from_square
        and move.to_square == candidate.to_square
        and move.promotion == candidate.promotion
    ]
    if not matches:
        raise UnresolvedMoveError(
            f"Engine move {text} matches no legal move in {position.fen}."
        )
    return matches[0]


def san_line(moves: Tuple[str, ...], position: Position) -> Tuple[str, ...]:
    """Render an engine principal variation as SAN, stopping at the first bad move."""
    board = position.board()
    rendered: list[str] = []
    for text in moves:
        try:
            move = from_engine_notation(text, Position(board.fen()))
        except UnresolvedMoveError:
            break
        rendered.append(board.san(move))
        board.push(move)
    return tuple(rendered)


__all__ = [
    "UnresolvedMoveError",
    "from_engine_notation",
    "parse_engine_move",
    "san_line",
    "to_engine_notation",
]
