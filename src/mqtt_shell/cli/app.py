"""CLI main module for mqtt-shell."""

from __future__ import annotations

from pathlib import Path
from typing import Any, NoReturn

import typer

from mqtt_shell import __version__
from mqtt_shell.cli.live import run_shell
from mqtt_shell.cli.render import Renderer, create_cli_renderer
from mqtt_shell.config import load_settings
from mqtt_shell.core.help import CONFIG_HELP_TEXT
from mqtt_shell.errors import BrokerError, ConfigurationError
from mqtt_shell.logging_utils import configure_logging

app = typer.Typer(
    name="mqtt-shell",
    help="An interactive shell for MQTT brokers.",
    add_completion=False,
    rich_markup_mode="rich",
)


def _exit_with_error() -> NoReturn:
    """Exit with error code."""
    raise typer.Exit(1)


@app.command()
def main(
    env: str | None = typer.Option(None, "-e", "--env", help="The environment which should be used"),
    env_dir: Path | None = typer.Option(None, "--ed", "--env-dir", help="The environment directory"),  # noqa: B008
    broker: str | None = typer.Option(None, "-b", "--broker", help="The broker URI, e.g. tcp://127.0.0.1:1883"),
    ca: Path | None = typer.Option(None, "--ca", help="CA file path (if tls is used)"),  # noqa: B008
    subscribe_qos: int | None = typer.Option(None, "--sq", min=0, max=2, help="Default QoS for subscriptions"),
    publish_qos: int | None = typer.Option(None, "--pq", min=0, max=2, help="Default QoS for publishing"),
    username: str | None = typer.Option(None, "-u", "--username", help="The username"),
    password: str | None = typer.Option(None, "-p", "--password", help="The password"),
    client_id: str | None = typer.Option(None, "-c", "--client-id", help="The client id"),
    clean_session: bool | None = typer.Option(
        None, "--clean-session/--no-clean-session", help="Do not receive messages stored for this client"
    ),
    non_interactive: bool = typer.Option(False, "--ni", help="Run the start commands without opening a shell"),
    history_file: Path | None = typer.Option(None, "--hf", help="The history file path"),  # noqa: B008
    prompt: str | None = typer.Option(None, "--sp", help="The prompt of the shell"),
    commands: list[str] | None = typer.Option(None, "--cmd", help="Command executed at startup (repeatable)"),  # noqa: B008
    macro_files: list[Path] | None = typer.Option(None, "-m", help="Additional macro file (repeatable)"),  # noqa: B008
    color_blacklist: list[str] | None = typer.Option(None, "--cb", help="Color which will not be used (repeatable)"),  # noqa: B008
    config_help: bool = typer.Option(False, "--hh", help="Show detailed help about the configuration"),
    version: bool = typer.Option(False, "-v", "--version", help="Show the version"),
) -> None:
    """Start an interactive shell connected to an MQTT broker."""
    if version:
        typer.echo(__version__)
        return
    if config_help:
        typer.echo(CONFIG_HELP_TEXT)
        return

    overrides: dict[str, Any] = {
        "broker": broker,
        "ca": ca,
        "subscribe_qos": subscribe_qos,
        "publish_qos": publish_qos,
        "username": username,
        "password": password,
        "client_id": client_id,
        "clean_session": clean_session,
        "non_interactive": True if non_interactive else None,
        "history_file": history_file,
        "prompt": prompt,
        "commands": commands,
        "color_blacklist": color_blacklist,
    }
    try:
        settings = load_settings(env=env, env_dir=env_dir, macro_files=macro_files or [], overrides=overrides)
    except ConfigurationError as exc:
        Renderer().error(str(exc))
        _exit_with_error()

    configure_logging(settings.log_level)
    renderer = create_cli_renderer(settings.prompt, settings.history_file)
    try:
        run_shell(settings, renderer)
    except (ConfigurationError, BrokerError) as exc:
        renderer.error(str(exc))
        _exit_with_error()


def run() -> None:
    """Entry point of the ``mqtt-shell`` script."""
    app()
