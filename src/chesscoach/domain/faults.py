from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List

from src.chesscoach.interface.telemetry.logging import get_logger


@dataclass(frozen=True)
class FaultReport:
    source: str
    code: str
    message: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


FaultListener = Callable[[FaultReport], None]


class FaultChannel:
    """Error observation channel for background work.

    Auto-play and coaching run detached from the caller that triggered them,
    so their failures are recorded here instead of being raised into play.
    """

    def __init__(self, *, history: int = 100) -> None:
        self._history = history
        self._reports: List[FaultReport] = []
        self._listeners: List[FaultListener] = []
        self._log = get_logger("chesscoach.faults")

    @property
    def reports(self) -> tuple[FaultReport, ...]:
        return tuple(self._reports)

    def subscribe(self, listener: FaultListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def report(self, source: str, error: BaseException) -> FaultReport:
        fault = FaultReport(
            source=source,
            code=getattr(error, "code", type(error).__name__),
            message=str(error),
        )
        self._reports.append(fault)
        del self._reports[: -self._history]
        self._log.warning("fault_reported", source=source, code=fault.code, message=fault.message)
        for listener in list(self._listeners):
            listener(fault)
        return fault

    def clear(self) -> None:
        self._reports.clear()


__all__ = ["FaultChannel", "FaultListener", "FaultReport"]
