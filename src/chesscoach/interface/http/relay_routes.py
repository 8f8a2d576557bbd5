from __future__ import annotations

from typing import Any, List

import chess
from flask import Blueprint, jsonify, request

from src.chesscoach.domain.engine.session import EngineError
from src.chesscoach.interface.http.game_routes import game_runtime
from src.chesscoach.interface.relay.envelope import (
    INBOUND_TYPES,
    INVALID_MESSAGE,
    Envelope,
    EnvelopeError,
    EnvelopeType,
    analysis_info_envelope,
    bestmove_envelope,
    connect_envelope,
    decode_envelope,
    error_envelope,
    play_ack_envelope,
)
from src.chesscoach.interface.telemetry.logging import get_logger

relay_bp = Blueprint("relay", __name__)
logger = get_logger("chesscoach.api.relay")

DEFAULT_SKILL = 10
DEFAULT_MOVETIME_MS = 1000
DEFAULT_ANALYSIS_DEPTH = 20


class _InvalidPayload(ValueError):
    pass


def _respond(envelopes: List[Envelope], status: int = 200):
    return jsonify([envelope.to_dict() for envelope in envelopes]), status


def _fen(data: dict[str, Any]) -> str:
    fen = data.get("fen")
    if not isinstance(fen, str):
        raise _InvalidPayload("fen must be provided as a string.")
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        raise _InvalidPayload(f"Invalid FEN: {fen}") from exc
    if not board.is_valid():
        raise _InvalidPayload(f"Impossible position: {fen}")
    return board.fen()


def _non_negative_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise _InvalidPayload(f"{key} must be a non-negative integer.")
    return value


def _handle(envelope: Envelope) -> List[Envelope]:
    runtime = game_runtime()
    session = runtime.manager.session
    data = envelope.data if isinstance(envelope.data, dict) else {}

    if envelope.type is EnvelopeType.play:
        fen = _fen(data)
        skill = _non_negative_int(data, "skill", DEFAULT_SKILL)
        movetime = _non_negative_int(data, "movetime", DEFAULT_MOVETIME_MS)
        ack = play_ack_envelope(skill, movetime)
        response = runtime.call(session.play(fen, skill, movetime))
        return [ack, bestmove_envelope(response)]

    if envelope.type is EnvelopeType.analyze:
        fen = _fen(data)
        depth = _non_negative_int(data, "depth", DEFAULT_ANALYSIS_DEPTH)
        result = runtime.call(session.analyze(fen, depth))
        return [analysis_info_envelope(result), bestmove_envelope(result.best_move)]

    runtime.invoke(session.stop)
    return [Envelope(EnvelopeType.info, {"message": "Stop requested"})]


@relay_bp.get("")
def connect():
    runtime = game_runtime()
    status = runtime.invoke(runtime.manager.session.status)
    return _respond([connect_envelope(status)])


@relay_bp.post("")
def relay():
    try:
        envelope = decode_envelope(request.get_data())
    except EnvelopeError as exc:
        logger.warning("relay_envelope_rejected", detail=str(exc))
        return _respond([error_envelope(INVALID_MESSAGE)], status=400)

    if envelope.type not in INBOUND_TYPES:
        logger.warning("relay_envelope_unsupported", type=envelope.type.value)
        return _respond([error_envelope(f"Unsupported message type: {envelope.type.value}")], status=400)

    try:
        envelopes = _handle(envelope)
    except _InvalidPayload as exc:
        return _respond([error_envelope(str(exc))], status=400)
    except EngineError as exc:
        logger.warning("relay_request_failed", type=envelope.type.value, code=exc.code, detail=str(exc))
        return _respond([error_envelope(str(exc))])

    logger.info("relay_request_completed", type=envelope.type.value, responses=len(envelopes))
    return _respond(envelopes)


__all__ = ["relay_bp"]
