from __future__ import annotations

import pytest

from src.chesscoach.domain.faults import FaultChannel
from src.chesscoach.domain.engine.session import EngineTimeoutError
from src.chesscoach.infrastructure.config import AppConfig, load_config

_KEYS = (
    "ENGINE_PATH",
    "HUMAN_COLOR",
    "AUTO_PLAY_ENABLED",
    "ENGINE_SKILL",
    "ENGINE_MOVE_TIME_MS",
    "ANALYSIS_DEPTH",
    "REQUEST_TIMEOUT_SECONDS",
    "COACH_URL",
    "STRUCTLOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
        monkeypatch.delenv(f"COACH_{key}", raising=False)
    return monkeypatch


def test_defaults_without_environment(clean_env) -> None:
    config = load_config()

    assert config.engine_path == "stockfish"
    assert config.human_color == "white"
    assert config.auto_play_enabled is True
    assert config.engine_skill == 10
    assert config.engine_move_time_ms == 1000
    assert config.analysis_depth == 12
    assert config.request_timeout_seconds == 15.0
    assert config.coach_url is None
    assert config.additional == {}


def test_environment_overrides_and_fallbacks(clean_env) -> None:
    clean_env.setenv("HUMAN_COLOR", "Black")
    clean_env.setenv("AUTO_PLAY_ENABLED", "off")
    clean_env.setenv("ENGINE_SKILL", "3")
    clean_env.setenv("ANALYSIS_DEPTH", "deep")
    clean_env.setenv("REQUEST_TIMEOUT_SECONDS", "2.5")
    clean_env.setenv("COACH_URL", "http://localhost:3001/api/coach")
    clean_env.setenv("STRUCTLOG_LEVEL", "debug")

    config = load_config()

    assert config.human_color == "black"
    assert config.auto_play_enabled is False
    assert config.engine_skill == 3
    assert config.analysis_depth == 12
    assert config.request_timeout_seconds == 2.5
    assert config.coach_url == "http://localhost:3001/api/coach"
    assert config.additional == {"STRUCTLOG_LEVEL": "debug"}


def test_prefix_selects_namespaced_variables(clean_env) -> None:
    clean_env.setenv("COACH_ENGINE_SKILL", "18")
    clean_env.setenv("ENGINE_SKILL", "2")

    assert load_config(prefix="COACH_").engine_skill == 18


def test_engine_options_follow_configuration() -> None:
    config = AppConfig(engine_threads=4, engine_hash_mb=64)

    assert config.engine_options() == {"MultiPV": "1", "Threads": "4", "Hash": "64"}


def test_fault_channel_keeps_bounded_history() -> None:
    faults = FaultChannel(history=2)
    seen = []
    faults.subscribe(seen.append)

    for attempt in range(3):
        faults.report("auto_play", EngineTimeoutError(f"attempt {attempt}"))

    assert [fault.message for fault in faults.reports] == ["attempt 1", "attempt 2"]
    assert {fault.code for fault in faults.reports} == {"engine_timeout"}
    assert len(seen) == 3
    faults.clear()
    assert faults.reports == ()
