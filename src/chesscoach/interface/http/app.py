from __future__ import annotations

from flask import Flask

from src.chesscoach.infrastructure.config import AppConfig, load_config
from src.chesscoach.infrastructure.runtime import GameRuntime
from src.chesscoach.interface.http.game_routes import game_bp
from src.chesscoach.interface.http.relay_routes import relay_bp
from src.chesscoach.interface.telemetry.logging import get_logger, setup_logging


def create_app(config: AppConfig | None = None, runtime: GameRuntime | None = None) -> Flask:
    """Instantiate Flask application with shared configuration."""
    cfg = config or load_config()

    setup_logging(cfg.additional.get("STRUCTLOG_LEVEL", "INFO"))
    logger = get_logger("chesscoach.app")

    app = Flask(__name__)
    app.config.update(
        ENGINE_PATH=cfg.engine_path,
        COACH_URL=cfg.coach_url,
        ENV=cfg.flask_env,
        APP_CONFIG=cfg,
    )
    if runtime is not None:
        app.extensions["game_runtime"] = runtime

    app.register_blueprint(game_bp, url_prefix="/api/v1/game")
    app.register_blueprint(relay_bp, url_prefix="/api/v1/relay")

    @app.get("/healthz")
    def healthcheck():
        return {"status": "ok"}, 200

    logger.info(
        "flask_app_initialized",
        env=cfg.flask_env,
        engine_path=cfg.engine_path,
        coaching_advice=bool(cfg.coach_url),
    )
    return app


__all__ = ["create_app"]
