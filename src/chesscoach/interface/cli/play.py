from __future__ import annotations

import sys
from dataclasses import replace

import click

from src.chesscoach.domain.chess.position_store import GameError, GameRecord, MoveActor
from src.chesscoach.domain.coaching.evaluator import CoachingEvaluation
from src.chesscoach.domain.engine.session import EngineError
from src.chesscoach.domain.faults import FaultReport
from src.chesscoach.infrastructure.config import load_config
from src.chesscoach.infrastructure.runtime import GameRuntime
from src.chesscoach.interface.telemetry.logging import setup_logging

_COMMANDS = "Enter a move in UCI (e2e4), or: reset, analyze, autoplay on|off, quit."


def _echo_engine_move(record: GameRecord) -> None:
    move = record.last_move
    if move is not None and move.actor is MoveActor.engine:
        click.echo(f"Engine plays {move.san} ({move.uci}).")
    if record.is_over:
        winner = record.winner.value if record.winner else "nobody"
        click.echo(f"Game over: {record.status.value}, winner {winner}.")


def _echo_evaluation(evaluation: CoachingEvaluation) -> None:
    best = evaluation.best_move_san or evaluation.best_move or "-"
    click.echo(
        f"Coach: {evaluation.move_san} is {evaluation.classification} "
        f"({evaluation.eval_before:+d} -> {evaluation.eval_after:+d} cp, best {best})."
    )


def _echo_fault(fault: FaultReport) -> None:
    click.echo(f"[{fault.source}] {fault.code}: {fault.message}", err=True)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--engine", "engine_path", default=None, help="Engine executable (defaults to ENGINE_PATH).")
@click.option(
    "--color",
    type=click.Choice(["white", "black"]),
    default=None,
    help="Side played by the human (defaults to HUMAN_COLOR).",
)
@click.option("--skill", type=click.IntRange(0, 20), default=None, help="Engine Skill Level for its moves.")
@click.option("--depth", type=int, default=None, help="Search depth for coaching analysis.")
@click.option("--no-auto-play", is_flag=True, help="Let the human move for both sides.")
def main(
    engine_path: str | None,
    color: str | None,
    skill: int | None,
    depth: int | None,
    no_auto_play: bool,
) -> None:
    """Play a coached game against a UCI engine in the terminal."""
    config = load_config()
    overrides = {
        "engine_path": engine_path,
        "human_color": color,
        "engine_skill": skill,
        "analysis_depth": depth,
    }
    config = replace(config, **{key: value for key, value in overrides.items() if value is not None})
    if no_auto_play:
        config = replace(config, auto_play_enabled=False)
    setup_logging(config.additional.get("STRUCTLOG_LEVEL", "WARNING"), renderer="console", stream=sys.stderr)

    runtime = GameRuntime.from_config(config)
    try:
        manager = runtime.start()
    except (EngineError, OSError) as exc:
        raise click.ClickException(f"Could not start engine: {exc}") from exc

    runtime.invoke(manager.store.subscribe, _echo_engine_move)
    runtime.invoke(manager.evaluator.subscribe, _echo_evaluation)
    runtime.invoke(manager.faults.subscribe, _echo_fault)

    click.echo(f"Playing {config.human_color} against {manager.session.engine_name or config.engine_path}.")
    click.echo(_COMMANDS)
    try:
        while True:
            command = click.prompt(">", prompt_suffix=" ").strip()
            if command in ("quit", "exit"):
                break
            if command == "reset":
                try:
                    record = runtime.invoke(manager.reset)
                except EngineError as exc:
                    click.echo(f"Reset failed: {exc}", err=True)
                    continue
                click.echo(f"New game {record.game_id}.")
            elif command == "analyze":
                try:
                    result = runtime.call(manager.analyze())
                except EngineError as exc:
                    click.echo(f"Analysis unavailable: {exc}", err=True)
                    continue
                click.echo(
                    f"Best {result.best_move.move or '-'}, score {result.centipawns()} cp, "
                    f"line {' '.join(result.principal_variation)}"
                )
            elif command.startswith("autoplay"):
                choice = command.split()[-1]
                if choice not in ("on", "off"):
                    click.echo("Usage: autoplay on|off", err=True)
                    continue
                enabled = choice == "on"
                runtime.invoke(manager.set_auto_play, enabled)
                click.echo(f"Auto-play {'on' if enabled else 'off'}.")
            else:
                try:
                    record = runtime.invoke(manager.submit_move, command)
                except GameError as exc:
                    click.echo(f"Rejected: {exc}", err=True)
                    continue
                click.echo(f"You play {record.last_move.san}.")
    except (click.Abort, EOFError):
        click.echo()
    finally:
        runtime.stop()


if __name__ == "__main__":
    main()


__all__ = ["main"]
