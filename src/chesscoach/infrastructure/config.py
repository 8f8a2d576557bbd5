from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Centralized runtime configuration for the coaching table."""

    engine_path: str = "stockfish"
    human_color: str = "white"
    auto_play_enabled: bool = True
    engine_skill: int = 10
    engine_move_time_ms: int = 1000
    analysis_depth: int = 12
    engine_threads: int = 1
    engine_hash_mb: int = 16
    request_timeout_seconds: float = 15.0
    handshake_timeout_seconds: float = 5.0
    drain_timeout_seconds: float = 5.0
    coach_url: str | None = None
    coach_timeout_seconds: float = 10.0
    flask_env: str = "production"
    additional: dict[str, str] = field(default_factory=dict)

    def engine_options(self) -> dict[str, str]:
        """Options pushed to the engine once the handshake completes."""
        return {
            "MultiPV": "1",
            "Threads": str(self.engine_threads),
            "Hash": str(self.engine_hash_mb),
        }


def load_config(prefix: str = "") -> AppConfig:
    """Load application configuration from environment variables."""

    def _get_env(key: str, default: str = "") -> str:
        env_key = f"{prefix}{key}"
        return os.getenv(env_key, default)

    def _parse_float(raw: str, fallback: float) -> float:
        try:
            return float(raw)
        except (TypeError, ValueError):
            return fallback

    def _parse_int(raw: str, fallback: int) -> int:
        try:
            return int(raw)
        except (TypeError, ValueError):
            return fallback

    def _parse_bool(raw: str, fallback: bool) -> bool:
        lowered = raw.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        return fallback

    engine_path = _get_env("ENGINE_PATH", "stockfish")
    if engine_path and Path(engine_path).exists():
        engine_path = str(Path(engine_path).resolve())

    human_color = _get_env("HUMAN_COLOR", "white").lower()
    if human_color not in {"white", "black"}:
        human_color = "white"

    additional_keys = ("STRUCTLOG_LEVEL",)
    additional: dict[str, str] = {}
    for key in additional_keys:
        value = _get_env(key, "")
        if value:
            additional[key] = value

    return AppConfig(
        engine_path=engine_path,
        human_color=human_color,
        auto_play_enabled=_parse_bool(_get_env("AUTO_PLAY_ENABLED", "true"), True),
        engine_skill=_parse_int(_get_env("ENGINE_SKILL", "10"), 10),
        engine_move_time_ms=_parse_int(_get_env("ENGINE_MOVE_TIME_MS", "1000"), 1000),
        analysis_depth=_parse_int(_get_env("ANALYSIS_DEPTH", "12"), 12),
        engine_threads=_parse_int(_get_env("ENGINE_THREADS", "1"), 1),
        engine_hash_mb=_parse_int(_get_env("ENGINE_HASH_MB", "16"), 16),
        request_timeout_seconds=_parse_float(_get_env("REQUEST_TIMEOUT_SECONDS", "15"), 15.0),
        handshake_timeout_seconds=_parse_float(_get_env("HANDSHAKE_TIMEOUT_SECONDS", "5"), 5.0),
        drain_timeout_seconds=_parse_float(_get_env("DRAIN_TIMEOUT_SECONDS", "5"), 5.0),
        coach_url=_get_env("COACH_URL", "") or None,
        coach_timeout_seconds=_parse_float(_get_env("COACH_TIMEOUT_SECONDS", "10"), 10.0),
        flask_env=_get_env("FLASK_ENV", "production"),
        additional=additional,
    )


__all__ = ["AppConfig", "load_config"]
