"""Line grammar of the search engine channel.

Inbound lines are tokenized positionally into one of the response types
below; anything that does not fit a known grammar becomes ``Malformed``.
Outbound commands are plain strings built by the ``*_command`` helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

import chess.engine

MATE_SCORE = 10000

_NO_MOVE_TOKENS = {"(none)", "0000"}
_HANDSHAKE_TOKENS = {"uciok", "readyok"}
_INT_FIELDS = {
    "depth": "depth",
    "seldepth": "seldepth",
    "multipv": "multipv",
    "nodes": "nodes",
    "nps": "nps",
    "time": "time_ms",
}
_SKIPPED_FIELDS = {"hashfull", "tbhits", "cpuload", "currmovenumber", "sbhits"}


@dataclass(frozen=True)
class InfoResponse:
    depth: int | None = None
    seldepth: int | None = None
    multipv: int | None = None
    score_cp: int | None = None
    score_mate: int | None = None
    bound: str | None = None
    nodes: int | None = None
    nps: int | None = None
    time_ms: int | None = None
    pv: Tuple[str, ...] = ()
    text: str | None = None

    @property
    def has_score(self) -> bool:
        return self.score_cp is not None or self.score_mate is not None

    def score(self) -> chess.engine.Score | None:
        """Score relative to the side to move, as a python-chess score."""
        if self.score_mate is not None:
            return chess.engine.Mate(self.score_mate)
        if self.score_cp is not None:
            return chess.engine.Cp(self.score_cp)
        return None

    def centipawns(self, mate_score: int = MATE_SCORE) -> int | None:
        """Centipawns for the side to move; mates saturate near ``mate_score``."""
        score = self.score()
        if score is None:
            return None
        return score.score(mate_score=mate_score)


@dataclass(frozen=True)
class BestMoveResponse:
    move: str | None
    ponder: str | None = None


@dataclass(frozen=True)
class HandshakeAck:
    token: str


@dataclass(frozen=True)
class EngineId:
    key: str
    value: str


@dataclass(frozen=True)
class OptionDeclaration:
    name: str
    raw: str


@dataclass(frozen=True)
class Malformed:
    raw: str


EngineResponse = Union[
    InfoResponse, BestMoveResponse, HandshakeAck, EngineId, OptionDeclaration, Malformed
]


def parse_line(line: str) -> EngineResponse:
    tokens = line.split()
    if not tokens:
        return Malformed(line)

    head = tokens[0]
    if head in _HANDSHAKE_TOKENS and len(tokens) == 1:
        return HandshakeAck(head)
    if head == "bestmove":
        return _parse_bestmove(line, tokens)
    if head == "info":
        return _parse_info(line, tokens)
    if head == "id" and len(tokens) >= 3 and tokens[1] in {"name", "author"}:
        return EngineId(tokens[1], " ".join(tokens[2:]))
    if head == "option" and len(tokens) >= 3 and tokens[1] == "name":
        return _parse_option(line, tokens)
    return Malformed(line)


def _parse_bestmove(line: str, tokens: list[str]) -> EngineResponse:
    if len(tokens) not in (2, 4):
        return Malformed(line)
    if len(tokens) == 4 and tokens[2] != "ponder":
        return Malformed(line)
    move = None if tokens[1] in _NO_MOVE_TOKENS else tokens[1]
    ponder = tokens[3] if len(tokens) == 4 and tokens[3] not in _NO_MOVE_TOKENS else None
    return BestMoveResponse(move=move, ponder=ponder)


def _parse_info(line: str, tokens: list[str]) -> EngineResponse:
    fields: dict[str, object] = {}
    index = 1
    try:
        while index < len(tokens):
            token = tokens[index]
            if token in _INT_FIELDS:
                fields[_INT_FIELDS[token]] = int(tokens[index + 1])
                index += 2
            elif token == "score":
                kind = tokens[index + 1]
                value = int(tokens[index + 2])
                if kind == "cp":
                    fields["score_cp"] = value
                elif kind == "mate":
                    fields["score_mate"] = value
                else:
                    return Malformed(line)
                index += 3
                if index < len(tokens) and tokens[index] in {"lowerbound", "upperbound"}:
                    fields["bound"] = tokens[index]
                    index += 1
            elif token == "pv":
                fields["pv"] = tuple(tokens[index + 1:])
                break
            elif token == "string":
                fields["text"] = " ".join(tokens[index + 1:])
                break
            elif token in {"currmove", "refutation", "currline"}:
                # Search progress chatter; nothing after it is needed.
                return InfoResponse(**fields)  # type: ignore[arg-type]
            elif token in _SKIPPED_FIELDS:
                int(tokens[index + 1])
                index += 2
            else:
                return Malformed(line)
    except (IndexError, ValueError):
        return Malformed(line)

    if not fields:
        return Malformed(line)
    return InfoResponse(**fields)  # type: ignore[arg-type]


def _parse_option(line: str, tokens: list[str]) -> EngineResponse:
    try:
        end = tokens.index("type")
    except ValueError:
        return Malformed(line)
    name = " ".join(tokens[2:end])
    if not name:
        return Malformed(line)
    return OptionDeclaration(name=name, raw=line)


def position_command(fen: str) -> str:
    return f"position fen {fen}"


def go_depth_command(depth: int) -> str:
    return f"go depth {int(depth)}"


def go_movetime_command(milliseconds: int) -> str:
    return f"go movetime {int(milliseconds)}"


def setoption_command(name: str, value: object) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"setoption name {name} value {value}"


__all__ = [
    "BestMoveResponse",
    "EngineId",
    "EngineResponse",
    "HandshakeAck",
    "InfoResponse",
    "MATE_SCORE",
    "Malformed",
    "OptionDeclaration",
    "go_depth_command",
    "go_movetime_command",
    "parse_line",
    "position_command",
    "setoption_command",
]
