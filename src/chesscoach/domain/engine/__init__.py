"""UCI engine session and line protocol."""

from .channel import LineChannel
from .session import (
    AnalysisResult,
    EngineBusyError,
    EngineError,
    EngineSession,
    EngineTimeoutError,
    SessionClosedError,
    SessionState,
)

__all__ = [
    "AnalysisResult",
    "EngineBusyError",
    "EngineError",
    "EngineSession",
    "EngineTimeoutError",
    "LineChannel",
    "SessionClosedError",
    "SessionState",
]
