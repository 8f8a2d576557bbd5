from __future__ import annotations

import asyncio
import threading
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

from src.chesscoach.domain.chess.game_manager import GameManager
from src.chesscoach.domain.chess.position_store import PlayerColor
from src.chesscoach.domain.coaching.advice_service import AdviceService
from src.chesscoach.domain.engine.channel import LineChannel
from src.chesscoach.domain.engine.session import EngineSession
from src.chesscoach.infrastructure.advice.http_client import HttpAdviceClient
from src.chesscoach.infrastructure.config import AppConfig
from src.chesscoach.infrastructure.engine.subprocess_channel import SubprocessChannel
from src.chesscoach.interface.telemetry.logging import get_logger

T = TypeVar("T")


async def open_game_manager(
    config: AppConfig,
    *,
    channel: LineChannel | None = None,
    advice: AdviceService | None = None,
) -> GameManager:
    """Launch the engine described by ``config`` and start a coaching table."""
    if channel is None:
        channel = await SubprocessChannel.open(config.engine_path)
    session = EngineSession(
        channel,
        request_timeout=config.request_timeout_seconds,
        handshake_timeout=config.handshake_timeout_seconds,
        drain_timeout=config.drain_timeout_seconds,
        options=config.engine_options(),
    )
    if advice is None and config.coach_url:
        advice = HttpAdviceClient(config.coach_url, timeout=config.coach_timeout_seconds)

    manager = GameManager(
        session,
        human_color=PlayerColor(config.human_color),
        advice=advice,
        skill=config.engine_skill,
        move_time_ms=config.engine_move_time_ms,
        analysis_depth=config.analysis_depth,
        auto_play=config.auto_play_enabled,
    )
    await manager.start()
    return manager


class GameRuntime:
    """Host a game manager on a private event loop running in a thread.

    Synchronous callers (Flask views, the CLI) submit work through
    :meth:`call` and :meth:`invoke`; everything touching the manager runs on
    the runtime's loop.
    """

    def __init__(
        self,
        factory: Callable[[], Awaitable[GameManager]],
        *,
        call_timeout: float = 30.0,
    ) -> None:
        self._factory = factory
        self._call_timeout = call_timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="chesscoach-runtime", daemon=True)
        self._manager: GameManager | None = None
        self._log = get_logger("chesscoach.runtime")

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        channel_factory: Callable[[], LineChannel] | None = None,
        advice: AdviceService | None = None,
    ) -> "GameRuntime":
        async def factory() -> GameManager:
            channel = channel_factory() if channel_factory is not None else None
            return await open_game_manager(config, channel=channel, advice=advice)

        return cls(factory, call_timeout=config.request_timeout_seconds * 2)

    @property
    def manager(self) -> GameManager:
        if self._manager is None:
            raise RuntimeError("Game runtime has not been started.")
        return self._manager

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> GameManager:
        if self._manager is not None:
            return self._manager
        self._thread.start()
        self._manager = self.call(self._factory())
        self._log.info("game_runtime_started")
        return self._manager

    def call(self, coroutine: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        future = asyncio.run_coroutine_threadsafe(coroutine, self._loop)
        return future.result(timeout or self._call_timeout)

    def invoke(self, function: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a synchronous manager method on the runtime loop."""

        async def _run() -> T:
            return function(*args, **kwargs)

        return self.call(_run())

    def stop(self) -> None:
        if not self._thread.is_alive():
            return
        try:
            if self._manager is not None:
                self.call(self._manager.shutdown())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
            self._loop.close()
            self._log.info("game_runtime_stopped")

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()


__all__ = ["GameRuntime", "open_game_manager"]
