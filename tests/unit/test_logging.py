from __future__ import annotations

import io
import logging

import pytest
import structlog

from src.chesscoach.interface.telemetry.logging import bind_trace, get_logger, resolve_level, setup_logging


@pytest.fixture
def restore_structlog():
    yield
    structlog.reset_defaults()


@pytest.mark.parametrize(
    "level, expected",
    [("debug", logging.DEBUG), (" WARNING ", logging.WARNING), (logging.ERROR, logging.ERROR), ("chatty", logging.INFO)],
)
def test_resolve_level(level, expected) -> None:
    assert resolve_level(level) == expected


def test_console_renderer_for_terminal_sessions(restore_structlog) -> None:
    setup_logging("debug", renderer="console", stream=io.StringIO())

    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


def test_json_renderer_is_the_default(restore_structlog) -> None:
    setup_logging("INFO")

    assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)


def test_unknown_renderer_is_rejected() -> None:
    with pytest.raises(ValueError):
        setup_logging("INFO", renderer="xml")


def test_bind_trace_adds_context() -> None:
    with structlog.testing.capture_logs() as logs:
        bind_trace(get_logger("chesscoach.test"), "abc123", route="moves").info("move_accepted")

    assert logs == [
        {"event": "move_accepted", "log_level": "info", "trace_id": "abc123", "route": "moves"}
    ]
