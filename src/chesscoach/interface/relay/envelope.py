from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from src.chesscoach.domain.engine.protocol import BestMoveResponse
from src.chesscoach.domain.engine.session import AnalysisResult

INVALID_MESSAGE = "Invalid message format"


class EnvelopeType(str, Enum):
    play = "play"
    analyze = "analyze"
    stop = "stop"
    info = "info"
    bestmove = "bestmove"
    error = "error"
    connect = "connect"


# Types a client may send; the rest flow from the engine side.
INBOUND_TYPES = frozenset({EnvelopeType.play, EnvelopeType.analyze, EnvelopeType.stop})


class EnvelopeError(ValueError):
    """Raised for payloads that are not a well-formed envelope."""


@dataclass(frozen=True)
class Envelope:
    type: EnvelopeType
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data}


def encode_envelope(envelope: Envelope) -> str:
    return json.dumps(envelope.to_dict(), ensure_ascii=False)


def decode_envelope(raw: str | bytes | Mapping[str, Any] | None) -> Envelope:
    """Parse one JSON envelope, rejecting unknown types and non-object bodies."""
    if isinstance(raw, (str, bytes)):
        try:
            payload = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise EnvelopeError("Envelope is not valid JSON.") from exc
    else:
        payload = raw

    if not isinstance(payload, Mapping):
        raise EnvelopeError("Envelope must be a JSON object.")
    try:
        kind = EnvelopeType(payload.get("type"))
    except ValueError as exc:
        raise EnvelopeError(f"Unknown envelope type: {payload.get('type')!r}") from exc
    return Envelope(kind, payload.get("data"))


def connect_envelope(engine_status: Mapping[str, bool]) -> Envelope:
    return Envelope(
        EnvelopeType.connect,
        {"message": "Connected to Chess Engine", "engineStatus": dict(engine_status)},
    )


def play_ack_envelope(skill: int, movetime: int) -> Envelope:
    return Envelope(
        EnvelopeType.info,
        {"message": "Engine thinking...", "skill": skill, "movetime": movetime},
    )


def analysis_info_envelope(result: AnalysisResult) -> Envelope:
    info = result.info
    data: dict[str, Any] = {
        "depth": info.depth if info else None,
        "pv": list(result.principal_variation),
        "score": None,
    }
    if info is not None and info.score_mate is not None:
        data["score"] = {"mate": info.score_mate}
    elif info is not None and info.score_cp is not None:
        data["score"] = {"cp": info.score_cp}
    return Envelope(EnvelopeType.info, data)


def bestmove_envelope(response: BestMoveResponse) -> Envelope:
    data: dict[str, Any] = {"bestmove": response.move or "(none)"}
    if response.ponder:
        data["ponder"] = response.ponder
    return Envelope(EnvelopeType.bestmove, data)


def error_envelope(message: str) -> Envelope:
    return Envelope(EnvelopeType.error, message)


__all__ = [
    "INBOUND_TYPES",
    "INVALID_MESSAGE",
    "Envelope",
    "EnvelopeError",
    "EnvelopeType",
    "analysis_info_envelope",
    "bestmove_envelope",
    "connect_envelope",
    "decode_envelope",
    "encode_envelope",
    "error_envelope",
    "play_ack_envelope",
]
