from __future__ import annotations

import asyncio

import chess
import pytest

from src.chesscoach.domain.chess.position_store import MoveActor, PlayerColor, PositionStore
from src.chesscoach.domain.coaching.auto_play import AutoPlayCoordinator
from src.chesscoach.domain.engine.session import EngineSession
from src.chesscoach.domain.faults import FaultChannel

AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"


async def _table(channel, *, engine_color=PlayerColor.black, enabled=True, initial_fen=None):
    store = PositionStore(initial_fen)
    session = EngineSession(channel)
    await session.start()
    faults = FaultChannel()
    coordinator = AutoPlayCoordinator(
        store,
        session,
        faults,
        engine_color=engine_color,
        skill=3,
        move_time_ms=200,
        enabled=enabled,
    )
    coordinator.attach()
    return store, session, faults, coordinator


@pytest.mark.parametrize("enabled", [True, False])
@pytest.mark.parametrize("engine_to_move", [True, False])
def test_play_only_on_engine_turn_when_enabled(fake_engine, enabled: bool, engine_to_move: bool) -> None:
    channel = fake_engine(moves={AFTER_E4: "e7e5"})
    initial_fen = AFTER_E4 if engine_to_move else chess.STARTING_FEN

    async def scenario():
        store, _, _, coordinator = await _table(channel, enabled=enabled, initial_fen=initial_fen)
        decision = coordinator.should_play()
        coordinator.evaluate()
        await coordinator.wait_idle()
        return decision, store.record()

    decision, record = asyncio.run(scenario())

    expected = enabled and engine_to_move
    assert decision is expected
    assert bool(channel.go_commands) is expected
    assert len(record.moves) == (1 if expected else 0)


def test_engine_opening_move_is_applied(fake_engine) -> None:
    channel = fake_engine(moves={chess.STARTING_FEN: "e2e4"})

    async def scenario():
        store, _, faults, coordinator = await _table(channel, engine_color=PlayerColor.white)
        coordinator.evaluate()
        await coordinator.wait_idle()
        return store.record(), faults

    record, faults = asyncio.run(scenario())

    assert len(record.moves) == 1
    assert record.last_move.uci == "e2e4"
    assert record.last_move.actor is MoveActor.engine
    assert faults.reports == ()
    assert "setoption name Skill Level value 3" in channel.sent
    assert channel.go_commands == ["go movetime 200"]


def test_human_move_triggers_engine_reply(fake_engine) -> None:
    channel = fake_engine(moves={AFTER_E4: "e7e5"})

    async def scenario():
        store, _, _, coordinator = await _table(channel)
        store.apply_move(chess.Move.from_uci("e2e4"))
        await coordinator.wait_idle()
        return store.record()

    record = asyncio.run(scenario())

    assert [move.uci for move in record.moves] == ["e2e4", "e7e5"]
    assert [move.actor for move in record.moves] == [MoveActor.human, MoveActor.engine]


def test_result_for_superseded_revision_is_discarded(fake_engine) -> None:
    channel = fake_engine(silent=True, moves={AFTER_E4: "e7e5"})

    async def scenario():
        store, _, faults, coordinator = await _table(channel, initial_fen=AFTER_E4)
        coordinator.evaluate()
        await asyncio.sleep(0)
        store.reset()
        channel.release()
        await coordinator.wait_idle()
        return store.record(), faults

    record, faults = asyncio.run(scenario())

    assert record.moves == ()
    assert faults.reports == ()


def test_busy_engine_defers_play_until_ready(fake_engine) -> None:
    channel = fake_engine(silent=True, moves={AFTER_E4: "e7e5"})

    async def scenario():
        store, session, _, coordinator = await _table(channel, initial_fen=AFTER_E4)
        analysis = asyncio.get_running_loop().create_task(session.analyze(AFTER_E4, 10))
        await asyncio.sleep(0)
        assert coordinator.evaluate() is None
        channel.silent = False
        channel.release()
        await analysis
        await asyncio.sleep(0)
        await coordinator.wait_idle()
        return store.record()

    record = asyncio.run(scenario())

    assert [move.uci for move in record.moves] == ["e7e5"]
    assert channel.go_commands == ["go depth 10", "go movetime 200"]


def test_unresolvable_engine_move_is_reported(fake_engine) -> None:
    channel = fake_engine(moves={AFTER_E4: "e2e4"})

    async def scenario():
        store, _, faults, coordinator = await _table(channel, initial_fen=AFTER_E4)
        coordinator.evaluate()
        await coordinator.wait_idle()
        return store.record(), faults.reports

    record, reports = asyncio.run(scenario())

    assert record.moves == ()
    assert [(fault.source, fault.code) for fault in reports] == [("auto_play", "unresolved_move")]


def test_enabling_auto_play_triggers_pending_turn(fake_engine) -> None:
    channel = fake_engine(moves={AFTER_E4: "e7e5"})

    async def scenario():
        store, _, _, coordinator = await _table(channel, enabled=False, initial_fen=AFTER_E4)
        assert coordinator.evaluate() is None
        coordinator.set_enabled(True)
        await coordinator.wait_idle()
        return store.record()

    record = asyncio.run(scenario())

    assert record.last_move.uci == "e7e5"


def test_detached_coordinator_ignores_changes(fake_engine) -> None:
    channel = fake_engine()

    async def scenario():
        store, _, _, coordinator = await _table(channel)
        coordinator.detach()
        store.apply_move(chess.Move.from_uci("e2e4"))
        await asyncio.sleep(0)
        await coordinator.wait_idle()
        return store.record()

    record = asyncio.run(scenario())

    assert len(record.moves) == 1
    assert channel.go_commands == []
