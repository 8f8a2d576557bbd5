from __future__ import annotations

import json
from uuid import uuid4

import chess
import pytest
import requests

from src.chesscoach.domain.chess.position_store import PlayerColor
from src.chesscoach.domain.coaching.advice_service import AdviceError
from src.chesscoach.domain.coaching.evaluator import CoachingEvaluation
from src.chesscoach.infrastructure.advice.http_client import HttpAdviceClient


class _StubSession(requests.Session):
    def __init__(self, status: int = 200, body: object | None = None, error: Exception | None = None):
        super().__init__()
        self.status = status
        self.body = body
        self.error = error
        self.calls: list[dict] = []

    def post(self, url, json=None, timeout=None, **kwargs):  # noqa: A002
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.error is not None:
            raise self.error
        response = requests.Response()
        response.status_code = self.status
        response._content = b"" if self.body is None else _dumps(self.body)
        return response


def _dumps(body: object) -> bytes:
    return body if isinstance(body, bytes) else json.dumps(body).encode()


@pytest.fixture
def evaluation() -> CoachingEvaluation:
    return CoachingEvaluation(
        game_id=uuid4(),
        ply=2,
        color=PlayerColor.black,
        move="e7e5",
        move_san="e5",
        fen_before="rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1",
        fen_after="rnbqkbnr/pppp1ppp/8/4p3/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 2",
        eval_before=-30,
        eval_after=-25,
        best_move="e7e5",
        best_move_san="e5",
        principal_variation=("e7e5", "g1f3"),
    )


def test_advice_is_returned_from_backend(evaluation) -> None:
    stub = _StubSession(body={"advice": "Solid central reply."})
    client = HttpAdviceClient("http://coach.local/api/coach", timeout=3.0, session=stub)

    assert client.request_advice(evaluation) == "Solid central reply."
    assert stub.calls == [
        {
            "url": "http://coach.local/api/coach",
            "json": {
                "lastMove": "e7e5",
                "evalBefore": -30,
                "evalAfter": -25,
                "bestMove": "e7e5",
                "pv": "e7e5 g1f3",
            },
            "timeout": 3.0,
        }
    ]


def test_backend_error_text_is_surfaced(evaluation) -> None:
    client = HttpAdviceClient("http://coach", session=_StubSession(status=502, body={"error": "model offline"}))

    with pytest.raises(AdviceError) as excinfo:
        client.request_advice(evaluation)

    assert excinfo.value.code == "advice_rejected"
    assert str(excinfo.value) == "model offline"


def test_non_json_failure_uses_status_code(evaluation) -> None:
    client = HttpAdviceClient("http://coach", session=_StubSession(status=500, body=b"<html>"))

    with pytest.raises(AdviceError, match="HTTP 500"):
        client.request_advice(evaluation)


def test_missing_advice_field_is_malformed(evaluation) -> None:
    client = HttpAdviceClient("http://coach", session=_StubSession(body={"text": "hi"}))

    with pytest.raises(AdviceError) as excinfo:
        client.request_advice(evaluation)

    assert excinfo.value.code == "advice_malformed"


def test_unreachable_backend_is_unavailable(evaluation) -> None:
    stub = _StubSession(error=requests.ConnectionError("refused"))
    client = HttpAdviceClient("http://coach", session=stub)

    with pytest.raises(AdviceError) as excinfo:
        client.request_advice(evaluation)

    assert excinfo.value.code == "advice_unavailable"
