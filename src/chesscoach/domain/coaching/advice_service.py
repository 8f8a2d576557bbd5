from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from src.chesscoach.domain.coaching.evaluator import CoachingEvaluation


class AdviceError(RuntimeError):
    """Raised when the external coach cannot produce advice."""

    code: str = "advice_unavailable"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


@dataclass(frozen=True)
class CoachingFeedback:
    """Evaluation of a human move, optionally enriched with coach prose."""

    evaluation: CoachingEvaluation
    advice: str | None = None


class AdviceService(Protocol):
    """Contract for turning an evaluation into natural-language advice."""

    def request_advice(self, evaluation: CoachingEvaluation) -> str:
        """Return advice text for the evaluated move."""


__all__ = ["AdviceError", "AdviceService", "CoachingFeedback"]
