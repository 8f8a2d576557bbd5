from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from src.chesscoach.domain.chess.position_store import Position
from src.chesscoach.domain.engine.channel import LineChannel
from src.chesscoach.domain.engine.protocol import (
    MATE_SCORE,
    BestMoveResponse,
    EngineId,
    EngineResponse,
    HandshakeAck,
    InfoResponse,
    Malformed,
    OptionDeclaration,
    go_depth_command,
    go_movetime_command,
    parse_line,
    position_command,
    setoption_command,
)
from src.chesscoach.interface.telemetry.logging import get_logger

DEFAULT_MOVE_TIME_MS = 1000


class SessionState(str, Enum):
    uninitialized = "uninitialized"
    handshake_pending = "handshake_pending"
    ready = "ready"
    busy = "busy"
    shutting_down = "shutting_down"
    closed = "closed"


class EngineError(RuntimeError):
    """Base class for engine-session errors."""

    code: str = "engine_error"


class EngineBusyError(EngineError):
    code = "engine_busy"


class EngineNotReadyError(EngineError):
    code = "engine_not_ready"


class EngineTimeoutError(EngineError):
    code = "engine_timeout"


class SessionClosedError(EngineError):
    code = "session_closed"


class EngineCancelledError(EngineError):
    code = "engine_cancelled"


class EngineNoMoveError(EngineError):
    code = "engine_no_move"


class EngineStateError(EngineError):
    code = "invalid_state"


@dataclass(frozen=True)
class AnalyzeRequest:
    id: int
    fen: str
    depth: int


@dataclass(frozen=True)
class PlayRequest:
    id: int
    fen: str
    skill: int | None
    move_time_ms: int


EngineRequest = Union[AnalyzeRequest, PlayRequest]


@dataclass(frozen=True)
class AnalysisResult:
    request_id: int
    fen: str
    best_move: BestMoveResponse
    info: InfoResponse | None
    lines: Tuple[InfoResponse, ...] = ()

    @property
    def principal_variation(self) -> Tuple[str, ...]:
        if self.info is not None and self.info.pv:
            return self.info.pv
        if self.best_move.move is not None:
            return (self.best_move.move,)
        return ()

    def centipawns(self, mate_score: int = MATE_SCORE) -> int | None:
        """Score for the side to move in the analysed position."""
        if self.info is None:
            return None
        return self.info.centipawns(mate_score)


@dataclass
class _PendingRequest:
    request: EngineRequest
    future: asyncio.Future
    infos: List[InfoResponse] = field(default_factory=list)
    stop_requested: bool = False
    stop_sent: bool = False
    timed_out: bool = False
    watchdog: Optional[asyncio.TimerHandle] = None
    drain_deadline: Optional[asyncio.TimerHandle] = None

    def cancel_timers(self) -> None:
        for handle in (self.watchdog, self.drain_deadline):
            if handle is not None:
                handle.cancel()
        self.watchdog = None
        self.drain_deadline = None


StateListener = Callable[[SessionState], None]


class EngineSession:
    """Single owner of the line channel to the search engine.

    At most one request is outstanding at a time: a second ``analyze`` or
    ``play`` while busy is rejected with :class:`EngineBusyError`. Every
    request carries a watchdog; when it fires the caller gets
    :class:`EngineTimeoutError`, the engine is told to stop, and the session
    stays busy until the late ``bestmove`` arrives and is discarded.
    """

    def __init__(
        self,
        channel: LineChannel,
        *,
        request_timeout: float = 15.0,
        handshake_timeout: float = 5.0,
        drain_timeout: float = 5.0,
        options: Dict[str, object] | None = None,
    ) -> None:
        self._channel = channel
        self._request_timeout = request_timeout
        self._handshake_timeout = handshake_timeout
        self._drain_timeout = drain_timeout
        self._options = dict(options or {})

        self._state = SessionState.uninitialized
        self._last_request_id = 0
        self._pending: _PendingRequest | None = None
        self._handshake_waiter: tuple[str, asyncio.Future] | None = None
        self._ready_waiters: list[asyncio.Future] = []
        self._listeners: list[StateListener] = []
        self._reader: asyncio.Task | None = None
        self._closing: asyncio.Task | None = None
        self._skill: int | None = None
        self._new_game_pending = False
        self._engine_name: str | None = None
        self._engine_options: set[str] = set()
        self._log = get_logger("chesscoach.engine")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.ready

    @property
    def is_busy(self) -> bool:
        return self._state is SessionState.busy

    @property
    def engine_name(self) -> str | None:
        return self._engine_name

    @property
    def current_request(self) -> EngineRequest | None:
        return self._pending.request if self._pending else None

    def status(self) -> dict[str, bool]:
        return {"ready": self.is_ready, "analyzing": self.is_busy}

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        """Run the ``uci``/``isready`` handshake and enter ``ready``."""
        if self._state is not SessionState.uninitialized:
            raise EngineStateError(f"Session cannot start from state {self._state.value}.")

        self._reader = asyncio.get_running_loop().create_task(self._read_loop())
        self._set_state(SessionState.handshake_pending)
        try:
            await self._handshake_step("uci", "uciok")
            for name, value in self._options.items():
                self._send(setoption_command(name, value))
            await self._handshake_step("isready", "readyok")
        except asyncio.TimeoutError as exc:
            self._log.error("engine_handshake_timeout", timeout=self._handshake_timeout)
            await self.shutdown()
            raise EngineTimeoutError("Engine did not acknowledge the handshake.") from exc

        if self._state is not SessionState.handshake_pending:
            raise SessionClosedError("Engine session closed during handshake.")
        self._set_state(SessionState.ready)
        self._log.info("engine_ready", engine=self._engine_name)

    async def wait_ready(self) -> None:
        while self._state is not SessionState.ready:
            if self._state in (SessionState.shutting_down, SessionState.closed):
                raise SessionClosedError("Engine session is closed.")
            waiter = asyncio.get_running_loop().create_future()
            self._ready_waiters.append(waiter)
            await waiter

    async def analyze(self, position: Position | str, depth: int) -> AnalysisResult:
        fen = _fen_of(position)
        pending = self._begin(lambda request_id: AnalyzeRequest(request_id, fen, depth))
        self._send_prelude()
        self._send(position_command(fen))
        self._send(go_depth_command(depth))
        return await pending.future

    async def play(
        self,
        position: Position | str,
        skill: int | None = None,
        time_budget_ms: int | None = None,
    ) -> BestMoveResponse:
        fen = _fen_of(position)
        move_time = time_budget_ms or DEFAULT_MOVE_TIME_MS
        pending = self._begin(lambda request_id: PlayRequest(request_id, fen, skill, move_time))
        self._send_prelude()
        if skill is not None and skill != self._skill:
            self._send(setoption_command("Skill Level", skill))
            self._skill = skill
        self._send(position_command(fen))
        self._send(go_movetime_command(move_time))
        return await pending.future

    def stop(self) -> None:
        """Ask the engine to finish the outstanding request early."""
        pending = self._pending
        if self._state is not SessionState.busy or pending is None:
            raise EngineStateError("stop() is only valid while a request is outstanding.")
        pending.stop_requested = True
        self._send_stop(pending)

    def new_game(self) -> None:
        """Announce a new game before the next request."""
        if self._state in (SessionState.shutting_down, SessionState.closed):
            raise SessionClosedError("Engine session is closed.")
        self._new_game_pending = True
        if self._state is SessionState.ready:
            self._send_prelude()

    async def shutdown(self) -> None:
        if self._state in (SessionState.shutting_down, SessionState.closed):
            return

        was_busy = self._state is SessionState.busy
        self._set_state(SessionState.shutting_down)

        pending, self._pending = self._pending, None
        if pending is not None:
            pending.cancel_timers()
            if was_busy and not pending.stop_sent:
                with contextlib.suppress(OSError):
                    self._channel.send_line("stop")
            if not pending.future.done():
                pending.future.set_exception(SessionClosedError("Engine session shut down."))
        self._fail_handshake(SessionClosedError("Engine session shut down."))

        with contextlib.suppress(OSError):
            self._channel.send_line("quit")
        await self._channel.close()

        reader = self._reader
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._set_state(SessionState.closed)
        self._log.info("engine_session_closed")

    async def _handshake_step(self, command: str, token: str) -> None:
        future = asyncio.get_running_loop().create_future()
        self._handshake_waiter = (token, future)
        self._send(command)
        try:
            await asyncio.wait_for(future, self._handshake_timeout)
        finally:
            self._handshake_waiter = None

    def _begin(self, build: Callable[[int], EngineRequest]) -> _PendingRequest:
        if self._state in (SessionState.shutting_down, SessionState.closed):
            raise SessionClosedError("Engine session is closed.")
        if self._state is SessionState.busy:
            outstanding = self._pending.request.id if self._pending else None
            raise EngineBusyError(f"Engine is still serving request {outstanding}.")
        if self._state is not SessionState.ready:
            raise EngineNotReadyError(f"Engine session is {self._state.value}.")

        self._last_request_id += 1
        request = build(self._last_request_id)
        loop = asyncio.get_running_loop()
        pending = _PendingRequest(request=request, future=loop.create_future())
        pending.watchdog = loop.call_later(self._request_timeout, self._on_watchdog, pending)
        self._pending = pending
        self._set_state(SessionState.busy)
        self._log.debug(
            "engine_request_started",
            request_id=request.id,
            kind=type(request).__name__,
            fen=request.fen,
        )
        return pending

    def _send_prelude(self) -> None:
        if self._new_game_pending:
            self._new_game_pending = False
            self._send("ucinewgame")

    def _send_stop(self, pending: _PendingRequest) -> None:
        if pending.stop_sent:
            return
        pending.stop_sent = True
        self._send("stop")

    def _send(self, line: str) -> None:
        if self._state is SessionState.closed:
            return
        try:
            self._channel.send_line(line)
        except OSError as exc:
            self._log.error("engine_channel_write_failed", line=line, error=str(exc))
            self._on_channel_closed()
            return
        self._log.debug("engine_command_sent", line=line)

    async def _read_loop(self) -> None:
        try:
            while True:
                line = await self._channel.read_line()
                if line is None:
                    break
                if not line.strip():
                    continue
                self._dispatch(parse_line(line))
        except OSError as exc:
            self._log.error("engine_channel_read_failed", error=str(exc))
        if self._state is not SessionState.shutting_down:
            self._on_channel_closed()

    def _dispatch(self, response: EngineResponse) -> None:
        if isinstance(response, InfoResponse):
            self._on_info(response)
        elif isinstance(response, BestMoveResponse):
            self._on_best_move(response)
        elif isinstance(response, HandshakeAck):
            waiter = self._handshake_waiter
            if waiter is not None and waiter[0] == response.token and not waiter[1].done():
                waiter[1].set_result(None)
        elif isinstance(response, EngineId):
            if response.key == "name":
                self._engine_name = response.value
        elif isinstance(response, OptionDeclaration):
            self._engine_options.add(response.name)
        elif isinstance(response, Malformed):
            self._log.warning("malformed_engine_line", raw=response.raw)

    def _on_info(self, info: InfoResponse) -> None:
        pending = self._pending
        if pending is None or pending.future.done():
            return
        pending.infos.append(info)

    def _on_best_move(self, response: BestMoveResponse) -> None:
        pending = self._pending
        if pending is None:
            self._log.warning("unsolicited_bestmove", move=response.move)
            return

        self._pending = None
        pending.cancel_timers()
        if pending.timed_out:
            self._log.info(
                "engine_late_response_drained",
                request_id=pending.request.id,
                move=response.move,
            )
        elif not pending.future.done():
            self._settle(pending, response)

        if self._state is SessionState.busy:
            self._set_state(SessionState.ready)

    def _settle(self, pending: _PendingRequest, response: BestMoveResponse) -> None:
        request = pending.request
        if isinstance(request, PlayRequest):
            if response.move is None:
                if pending.stop_requested:
                    pending.future.set_exception(
                        EngineCancelledError(f"Request {request.id} stopped before a move was found.")
                    )
                else:
                    pending.future.set_exception(
                        EngineNoMoveError(f"Engine reported no move for request {request.id}.")
                    )
                return
            pending.future.set_result(response)
            return

        info = _principal_info(pending.infos)
        if response.move is None and info is None and pending.stop_requested:
            pending.future.set_exception(
                EngineCancelledError(f"Request {request.id} stopped before any analysis arrived.")
            )
            return
        pending.future.set_result(
            AnalysisResult(
                request_id=request.id,
                fen=request.fen,
                best_move=response,
                info=info,
                lines=tuple(pending.infos),
            )
        )

    def _on_watchdog(self, pending: _PendingRequest) -> None:
        if pending is not self._pending or pending.future.done():
            return
        pending.timed_out = True
        pending.watchdog = None
        self._log.warning(
            "engine_watchdog_fired",
            request_id=pending.request.id,
            timeout=self._request_timeout,
        )
        pending.future.set_exception(
            EngineTimeoutError(
                f"Engine did not answer request {pending.request.id} "
                f"within {self._request_timeout}s."
            )
        )
        self._send_stop(pending)
        if self._pending is pending:
            pending.drain_deadline = asyncio.get_running_loop().call_later(
                self._drain_timeout, self._on_drain_expired, pending
            )

    def _on_drain_expired(self, pending: _PendingRequest) -> None:
        if pending is not self._pending:
            return
        self._log.error(
            "engine_drain_expired",
            request_id=pending.request.id,
            drain_timeout=self._drain_timeout,
        )
        self._closing = asyncio.get_running_loop().create_task(self.shutdown())

    def _on_channel_closed(self) -> None:
        if self._state in (SessionState.closed, SessionState.shutting_down):
            return
        error = SessionClosedError("Engine channel closed unexpectedly.")
        pending, self._pending = self._pending, None
        if pending is not None:
            pending.cancel_timers()
            if not pending.future.done():
                pending.future.set_exception(error)
        self._fail_handshake(error)
        self._log.error("engine_channel_lost")
        self._set_state(SessionState.closed)
        self._closing = asyncio.get_running_loop().create_task(self._channel.close())

    def _fail_handshake(self, error: Exception) -> None:
        waiter = self._handshake_waiter
        if waiter is not None and not waiter[1].done():
            waiter[1].set_exception(error)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        self._log.debug("engine_state_changed", previous=previous.value, state=state.value)

        if state in (SessionState.ready, SessionState.shutting_down, SessionState.closed):
            waiters, self._ready_waiters = self._ready_waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)

        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                self._log.exception("engine_state_listener_failed", state=state.value)


def _fen_of(position: Position | str) -> str:
    return position.fen if isinstance(position, Position) else position


def _principal_info(infos: List[InfoResponse]) -> InfoResponse | None:
    for info in reversed(infos):
        if info.has_score and info.multipv in (None, 1):
            return info
    return None


__all__ = [
    "AnalysisResult",
    "AnalyzeRequest",
    "DEFAULT_MOVE_TIME_MS",
    "EngineBusyError",
    "EngineCancelledError",
    "EngineError",
    "EngineNoMoveError",
    "EngineNotReadyError",
    "EngineRequest",
    "EngineSession",
    "EngineStateError",
    "EngineTimeoutError",
    "PlayRequest",
    "SessionClosedError",
    "SessionState",
    "StateListener",
]
