from __future__ import annotations

from typing import Any

import requests

from src.chesscoach.domain.coaching.advice_service import AdviceError
from src.chesscoach.domain.coaching.evaluator import CoachingEvaluation
from src.chesscoach.interface.telemetry.logging import get_logger


class HttpAdviceClient:
    """Advice generator reached over HTTP.

    The backend answers ``{"advice": str}`` on success and a non-2xx status
    with ``{"error": str}`` otherwise.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._http = session or requests.Session()
        self._http.headers.update({"Content-Type": "application/json"})
        self._log = get_logger("chesscoach.advice")

    @property
    def url(self) -> str:
        return self._url

    def request_advice(self, evaluation: CoachingEvaluation) -> str:
        payload = evaluation.advice_request()
        try:
            response = self._http.post(self._url, json=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            self._log.warning("advice_request_failed", url=self._url, error=str(exc))
            raise AdviceError(f"Advice backend unreachable: {exc}") from exc

        body = _json_body(response)
        if not response.ok:
            message = body.get("error") if isinstance(body, dict) else None
            raise AdviceError(
                message or f"Advice backend returned HTTP {response.status_code}.",
                code="advice_rejected",
            )

        advice = body.get("advice") if isinstance(body, dict) else None
        if not isinstance(advice, str):
            raise AdviceError("Advice backend response has no advice text.", code="advice_malformed")

        self._log.info("advice_received", move=evaluation.move, length=len(advice))
        return advice

    def close(self) -> None:
        self._http.close()


def _json_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


__all__ = ["HttpAdviceClient"]
