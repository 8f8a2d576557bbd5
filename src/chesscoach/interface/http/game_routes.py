from __future__ import annotations

from typing import Any
from uuid import uuid4

from flask import Blueprint, current_app, jsonify, request

from src.chesscoach.domain.chess.game_manager import GameSnapshot
from src.chesscoach.domain.chess.move_translator import san_line
from src.chesscoach.domain.chess.position_store import GameError, GameRecord, MoveRecord, Position
from src.chesscoach.domain.coaching.advice_service import CoachingFeedback
from src.chesscoach.domain.engine.session import AnalysisResult, EngineError
from src.chesscoach.domain.faults import FaultReport
from src.chesscoach.infrastructure.runtime import GameRuntime
from src.chesscoach.interface.telemetry.logging import bind_trace, get_logger

game_bp = Blueprint("game", __name__)
logger = get_logger("chesscoach.api.game")

_ERROR_STATUS = {
    "illegal_move": 409,
    "stale_position": 409,
    "game_completed": 409,
    "unresolved_move": 409,
    "engine_busy": 409,
    "invalid_state": 409,
    "engine_timeout": 504,
    "session_closed": 503,
    "engine_not_ready": 503,
}


def game_runtime() -> GameRuntime:
    """Return the app's runtime, launching the engine on first use."""
    runtime = current_app.extensions.get("game_runtime")
    if runtime is None:
        runtime = GameRuntime.from_config(current_app.config["APP_CONFIG"])
        current_app.extensions["game_runtime"] = runtime
    runtime.start()
    return runtime


def _trace_id() -> str:
    return request.headers.get("X-Trace-Id") or uuid4().hex


def _serialize_move(move: MoveRecord) -> dict[str, Any]:
    return {
        "ply": move.ply,
        "san": move.san,
        "uci": move.uci,
        "actor": move.actor.value,
        "color": move.color.value,
        "fenAfter": move.fen_after,
        "timestamp": move.timestamp.isoformat(),
    }


def _serialize_record(record: GameRecord) -> dict[str, Any]:
    return {
        "gameId": str(record.game_id),
        "revision": record.revision,
        "status": record.status.value,
        "winner": record.winner.value if record.winner else None,
        "turn": record.position.turn.value,
        "initialFen": record.initial_fen,
        "currentFen": record.current_fen,
        "moves": [_serialize_move(move) for move in record.moves],
    }


def _serialize_state(snapshot: GameSnapshot, trace_id: str | None = None) -> dict[str, Any]:
    payload = _serialize_record(snapshot.record)
    payload.update(
        {
            "humanColor": snapshot.human_color.value,
            "isHumanTurn": snapshot.is_human_turn,
            "autoPlay": snapshot.auto_play,
            "engine": {
                "name": snapshot.engine_name,
                "ready": snapshot.engine_ready,
                "analyzing": snapshot.engine_analyzing,
            },
            "traceId": trace_id,
        }
    )
    return payload


def _serialize_analysis(result: AnalysisResult) -> dict[str, Any]:
    info = result.info
    position = Position(result.fen)
    pv = result.principal_variation
    return {
        "fen": result.fen,
        "bestMove": result.best_move.move,
        "ponder": result.best_move.ponder,
        "depth": info.depth if info else None,
        "scoreCp": info.score_cp if info else None,
        "scoreMate": info.score_mate if info else None,
        "pv": list(pv),
        "pvSan": list(san_line(pv, position)),
    }


def _serialize_feedback(feedback: CoachingFeedback) -> dict[str, Any]:
    evaluation = feedback.evaluation
    return {
        "ply": evaluation.ply,
        "move": evaluation.move,
        "moveSan": evaluation.move_san,
        "color": evaluation.color.value,
        "evalBefore": evaluation.eval_before,
        "evalAfter": evaluation.eval_after,
        "cpLoss": evaluation.cp_loss,
        "classification": evaluation.classification,
        "bestMove": evaluation.best_move,
        "bestMoveSan": evaluation.best_move_san,
        "principalVariation": list(evaluation.principal_variation),
        "principalVariationSan": list(evaluation.principal_variation_san),
        "advice": feedback.advice,
    }


def _serialize_fault(fault: FaultReport) -> dict[str, Any]:
    return {
        "source": fault.source,
        "code": fault.code,
        "message": fault.message,
        "occurredAt": fault.occurred_at.isoformat(),
    }


def _domain_error(code: str, message: str, status: int = 400, detail: Any | None = None):
    payload: dict[str, Any] = {"code": code, "message": message}
    if detail is not None:
        payload["detail"] = detail
    return jsonify(payload), status


def _failure(exc: GameError | EngineError):
    return _domain_error(exc.code, str(exc), status=_ERROR_STATUS.get(exc.code, 500))


@game_bp.get("")
def get_game():
    trace_id = _trace_id()
    runtime = game_runtime()
    snapshot = runtime.invoke(runtime.manager.state)
    return jsonify(_serialize_state(snapshot, trace_id=trace_id)), 200


@game_bp.post("/moves")
def submit_move():
    payload = request.get_json(silent=True) or {}
    trace_id = _trace_id()
    log = bind_trace(logger, trace_id)

    uci = payload.get("uci")
    if not isinstance(uci, str):
        return _domain_error("invalid_move", "uci must be provided as a string.", status=400)

    runtime = game_runtime()
    try:
        record = runtime.invoke(runtime.manager.submit_move, uci)
    except GameError as exc:
        log.warning("move_rejected", uci=uci, code=exc.code, detail=str(exc))
        return _failure(exc)

    log.info("move_accepted", uci=uci, total_moves=len(record.moves))
    snapshot = runtime.invoke(runtime.manager.state)
    return jsonify(_serialize_state(snapshot, trace_id=trace_id)), 200


@game_bp.post("/reset")
def reset_game():
    trace_id = _trace_id()
    log = bind_trace(logger, trace_id)
    runtime = game_runtime()
    try:
        record = runtime.invoke(runtime.manager.reset)
    except EngineError as exc:
        log.warning("reset_failed", code=exc.code, detail=str(exc))
        return _failure(exc)

    log.info("game_reset", game_id=str(record.game_id))
    snapshot = runtime.invoke(runtime.manager.state)
    return jsonify(_serialize_state(snapshot, trace_id=trace_id)), 200


@game_bp.post("/autoplay")
def toggle_auto_play():
    payload = request.get_json(silent=True) or {}
    trace_id = _trace_id()
    log = bind_trace(logger, trace_id)

    enabled = payload.get("enabled")
    if not isinstance(enabled, bool):
        return _domain_error("invalid_toggle", "enabled must be a boolean.", status=400)

    runtime = game_runtime()
    snapshot = runtime.invoke(runtime.manager.set_auto_play, enabled)
    log.info("auto_play_toggled", enabled=enabled)
    return jsonify(_serialize_state(snapshot, trace_id=trace_id)), 200


@game_bp.post("/analysis")
def analyze_position():
    payload = request.get_json(silent=True) or {}
    trace_id = _trace_id()
    log = bind_trace(logger, trace_id)

    depth = payload.get("depth")
    if depth is not None and (isinstance(depth, bool) or not isinstance(depth, int) or depth < 1):
        return _domain_error("invalid_depth", "depth must be a positive integer.", status=400)

    runtime = game_runtime()
    try:
        result = runtime.call(runtime.manager.analyze(depth))
    except EngineError as exc:
        log.warning("analysis_failed", code=exc.code, detail=str(exc))
        return _failure(exc)

    log.info("analysis_completed", best_move=result.best_move.move, depth=depth)
    body = _serialize_analysis(result)
    body["traceId"] = trace_id
    return jsonify(body), 200


@game_bp.get("/legal/<square>")
def legal_destinations(square: str):
    runtime = game_runtime()
    try:
        targets = runtime.invoke(runtime.manager.legal_destinations, square)
    except ValueError:
        return _domain_error("invalid_square", f"{square!r} is not a board square.", status=400)
    return jsonify({"square": square, "destinations": targets}), 200


@game_bp.get("/coaching")
def coaching_feedback():
    runtime = game_runtime()
    feedback = runtime.invoke(runtime.manager.feedback)
    return jsonify({"feedback": [_serialize_feedback(item) for item in feedback]}), 200


@game_bp.get("/faults")
def fault_reports():
    runtime = game_runtime()
    reports = runtime.invoke(lambda: runtime.manager.faults.reports)
    return jsonify({"faults": [_serialize_fault(fault) for fault in reports]}), 200


__all__ = ["game_bp", "game_runtime"]
