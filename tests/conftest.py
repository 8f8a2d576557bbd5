from __future__ import annotations

import asyncio
from typing import Callable, Iterator

import chess
import pytest

from src.chesscoach.infrastructure.config import AppConfig
from src.chesscoach.infrastructure.runtime import GameRuntime
from src.chesscoach.interface.http.app import create_app

AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"


class FakeEngineChannel:
    """In-memory UCI engine answering searches from a script.

    ``moves`` and ``scores`` are keyed by FEN; unknown positions answer with
    the alphabetically first legal move and ``default_score``. A ``silent``
    engine withholds its answer until ``release()`` or, when
    ``answer_stop`` is set, until it receives ``stop``.
    """

    def __init__(
        self,
        *,
        moves: dict[str, str] | None = None,
        scores: dict[str, int] | None = None,
        default_score: int = 20,
        silent: bool = False,
        answer_stop: bool = True,
        handshake: bool = True,
        name: str = "FakeFish 1.0",
    ) -> None:
        self.moves = dict(moves or {})
        self.scores = dict(scores or {})
        self.default_score = default_score
        self.silent = silent
        self.answer_stop = answer_stop
        self.handshake = handshake
        self.name = name
        self.sent: list[str] = []
        self.closed = False
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._fen = chess.STARTING_FEN
        self._held: list[str] = []

    @property
    def go_commands(self) -> list[str]:
        return [line for line in self.sent if line.startswith("go")]

    @property
    def searched_fens(self) -> list[str]:
        return [line[len("position fen "):] for line in self.sent if line.startswith("position fen ")]

    def send_line(self, line: str) -> None:
        if self.closed:
            raise BrokenPipeError("fake engine is closed")
        self.sent.append(line)
        if line == "uci":
            if self.handshake:
                self.emit(
                    f"id name {self.name}",
                    "option name Skill Level type spin default 20 min 0 max 20",
                    "uciok",
                )
        elif line == "isready":
            if self.handshake:
                self.emit("readyok")
        elif line.startswith("position fen "):
            self._fen = line[len("position fen "):]
        elif line.startswith("go"):
            self._held = self._search(self._fen)
            if not self.silent:
                self.release()
        elif line == "stop" and self.answer_stop:
            self.release()

    def emit(self, *lines: str) -> None:
        for line in lines:
            self._lines.put_nowait(line)

    def release(self) -> None:
        lines, self._held = self._held, []
        self.emit(*lines)

    def hang_up(self) -> None:
        self._lines.put_nowait(None)

    async def read_line(self) -> str | None:
        if self.closed and self._lines.empty():
            return None
        return await self._lines.get()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._lines.put_nowait(None)

    def _search(self, fen: str) -> list[str]:
        board = chess.Board(fen)
        move = self.moves.get(fen)
        if move is None:
            legal = sorted(candidate.uci() for candidate in board.legal_moves)
            move = legal[0] if legal else None
        if move is None:
            return ["info depth 0 score mate 0", "bestmove (none)"]
        score = self.scores.get(fen, self.default_score)
        return [
            f"info depth 1 score cp {score} nodes 20 pv {move}",
            f"info depth 12 seldepth 14 multipv 1 score cp {score} nodes 4096 nps 100000 time 40 pv {move}",
            f"bestmove {move}",
        ]


@pytest.fixture(scope="session")
def app_config() -> AppConfig:
    """Provide a configuration tuned for isolated tests."""
    return AppConfig(
        engine_path="fake-engine",
        human_color="white",
        auto_play_enabled=True,
        analysis_depth=12,
        request_timeout_seconds=5.0,
        handshake_timeout_seconds=1.0,
        drain_timeout_seconds=1.0,
        flask_env="test",
        additional={},
    )


@pytest.fixture
def fake_engine() -> Callable[..., FakeEngineChannel]:
    return FakeEngineChannel


@pytest.fixture
def engine_channels() -> list[FakeEngineChannel]:
    return []


@pytest.fixture
def runtime(app_config: AppConfig, engine_channels: list[FakeEngineChannel]) -> Iterator[GameRuntime]:
    def channel_factory() -> FakeEngineChannel:
        channel = FakeEngineChannel(moves={AFTER_E4: "e7e5"})
        engine_channels.append(channel)
        return channel

    game_runtime = GameRuntime.from_config(app_config, channel_factory=channel_factory)
    game_runtime.start()
    try:
        yield game_runtime
    finally:
        game_runtime.stop()


@pytest.fixture
def app(app_config: AppConfig, runtime: GameRuntime):
    flask_app = create_app(app_config, runtime=runtime)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def settle(runtime: GameRuntime) -> Callable[[], None]:
    """Block until auto-play, coaching and advice work has drained."""

    def _settle() -> None:
        runtime.call(runtime.manager.wait_idle())

    return _settle
