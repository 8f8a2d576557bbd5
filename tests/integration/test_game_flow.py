from __future__ import annotations

import dataclasses
import threading

import chess
import pytest

from src.chesscoach.domain.coaching.advice_service import AdviceError
from src.chesscoach.infrastructure.runtime import GameRuntime

AFTER_D4 = "rnbqkbnr/pppppppp/8/8/3P4/8/PPP1PPPP/RNBQKBNR b KQkq - 0 1"
AFTER_D4_D5 = "rnbqkbnr/ppp1pppp/8/3p4/3P4/8/PPP1PPPP/RNBQKBNR w KQkq - 0 2"


class ScriptedCoach:
    """Advice backend stand-in; fails on the moves listed in ``refuse``."""

    def __init__(self, refuse: tuple[str, ...] = ()) -> None:
        self.refuse = refuse
        self.threads: list[str] = []

    def request_advice(self, evaluation) -> str:
        self.threads.append(threading.current_thread().name)
        if evaluation.move in self.refuse:
            raise AdviceError("Coach declined.", code="advice_rejected")
        return f"{evaluation.move_san} was {evaluation.classification}."


@pytest.fixture
def black_runtime(app_config, fake_engine):
    channels = []
    coach = ScriptedCoach(refuse=("g8f6",))

    def channel_factory():
        channel = fake_engine(
            moves={chess.STARTING_FEN: "d2d4", AFTER_D4: "d7d5", AFTER_D4_D5: "c2c4"},
            scores={AFTER_D4: -15, AFTER_D4_D5: 15},
        )
        channels.append(channel)
        return channel

    config = dataclasses.replace(app_config, human_color="black")
    game_runtime = GameRuntime.from_config(config, channel_factory=channel_factory, advice=coach)
    game_runtime.start()
    try:
        yield game_runtime, channels, coach
    finally:
        game_runtime.stop()


def _settle(runtime: GameRuntime) -> None:
    runtime.call(runtime.manager.wait_idle())


def test_engine_opens_and_human_reply_is_coached(black_runtime):
    runtime, _, coach = black_runtime
    _settle(runtime)

    manager = runtime.manager
    record = runtime.invoke(manager.store.record)
    assert [move.uci for move in record.moves] == ["d2d4"]

    runtime.invoke(manager.submit_move, "d7d5")
    _settle(runtime)

    record = runtime.invoke(manager.store.record)
    assert [move.uci for move in record.moves] == ["d2d4", "d7d5", "c2c4"]

    [feedback] = runtime.invoke(manager.feedback)
    assert feedback.evaluation.eval_before == -15
    assert feedback.evaluation.eval_after == -15
    assert feedback.evaluation.classification == "best"
    assert feedback.advice == "d5 was best."
    assert coach.threads and coach.threads[0] != "chesscoach-runtime"
    assert runtime.invoke(lambda: manager.faults.reports) == ()


def test_refused_advice_becomes_fault(black_runtime):
    runtime, _, _ = black_runtime
    _settle(runtime)
    manager = runtime.manager

    runtime.invoke(manager.submit_move, "g8f6")
    _settle(runtime)

    [feedback] = runtime.invoke(manager.feedback)
    assert feedback.evaluation.move == "g8f6"
    assert feedback.advice is None
    [fault] = runtime.invoke(lambda: manager.faults.reports)
    assert (fault.source, fault.code) == ("advice", "advice_rejected")


def test_reset_mid_game_clears_feedback_and_replays_opening(black_runtime):
    runtime, channels, _ = black_runtime
    _settle(runtime)
    manager = runtime.manager

    runtime.invoke(manager.submit_move, "d7d5")
    first_game = runtime.invoke(lambda: manager.store.game_id)
    runtime.invoke(manager.reset)
    _settle(runtime)

    record = runtime.invoke(manager.store.record)
    assert record.game_id != first_game
    assert [move.uci for move in record.moves] == ["d2d4"]
    assert runtime.invoke(manager.feedback) == ()
    assert "ucinewgame" in channels[0].sent


def test_runtime_stop_shuts_engine_down(app_config, fake_engine):
    channels = []

    def channel_factory():
        channels.append(fake_engine())
        return channels[-1]

    runtime = GameRuntime.from_config(app_config, channel_factory=channel_factory)
    runtime.start()
    assert runtime.running
    runtime.stop()

    assert not runtime.running
    assert channels[0].closed
    assert channels[0].sent[-1] == "quit"
