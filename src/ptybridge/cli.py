"""CLI entry point for ptybridge."""

from __future__ import annotations

import asyncio
import logging
import shlex

import typer

from ptybridge.bridge import ProcessBridge, SpawnOptions
from ptybridge.config import BridgeConfig
from ptybridge.errors import HelperSpawnError

app = typer.Typer(
    name="ptybridge",
    help="Run commands in PTY sessions hosted by a helper process.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env


async def _run_session(
    config: BridgeConfig,
    command: list[str],
    options: SpawnOptions,
    inputs: list[str],
) -> bool:
    """Run one command through the helper.

    Returns True if the helper confirmed the session before it ended.
    """
    bridge = await ProcessBridge.start(config)
    exited = asyncio.Event()

    async with bridge:
        handle = bridge.spawn(command[0], command[1:], options)
        handle.on_data(lambda data: typer.echo(data, nl=False))
        handle.on_exit(exited.set)
        # Queued until the helper confirms the session
        for text in inputs:
            handle.write(text)
        await bridge.drain()
        await exited.wait()

    return handle.id is not None


@app.command()
def run(
    command: list[str] = typer.Argument(..., help="Command and arguments to run."),
    helper: str | None = typer.Option(
        None,
        "--helper",
        "-H",
        help="Helper command line (default: from env/config).",
    ),
    rows: int | None = typer.Option(None, "--rows", help="Terminal rows."),
    cols: int | None = typer.Option(None, "--cols", help="Terminal columns."),
    env: list[str] = typer.Option(
        [], "--env", "-e", help="KEY=VALUE for the session environment (repeatable)."
    ),
    send: list[str] = typer.Option(
        [], "--send", "-s", help="Text to write to the session once started (repeatable)."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run COMMAND in a helper-hosted PTY and stream its output."""
    setup_logging(verbose)

    config = BridgeConfig.load(config_file)
    if helper:
        config.helper_command = shlex.split(helper)
    if not config.helper_command:
        typer.echo("Error: no helper configured (use --helper or PTYBRIDGE_HELPER)", err=True)
        raise typer.Exit(2)

    options = SpawnOptions(rows=rows, cols=cols, env=_parse_env(env))
    try:
        assigned = asyncio.run(_run_session(config, command, options, send))
    except HelperSpawnError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if not assigned:
        typer.echo("Error: helper never confirmed the session", err=True)
        raise typer.Exit(1)


@app.callback()
def main() -> None:
    """ptybridge command line."""
