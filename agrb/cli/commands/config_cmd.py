"""agrb config — inspect and edit the user configuration.

Subcommands:

  agrb config show
      Print every key with its effective value and where it came from
      (default, global, or local).

  agrb config set KEY VALUE
      Validate and write one key to the global config file.

  agrb config edit
      Open the global config file in ``$EDITOR``, then validate it.

  agrb config reset
      Overwrite the global config file with the defaults.

  agrb config path
      Print the global config file path.

Exit codes: 0 success, 1 bad key or value for ``set``, 2 invalid config file.
"""
from __future__ import annotations

import logging

import typer

from agrb.cli._repo import find_repo_root
from agrb.cli.config import (
    canonical_key,
    global_config_path,
    load_config,
    reset_global_config,
    set_global_value,
)
from agrb.cli.errors import ConfigError, ExitCode

logger = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True)


def _render(value: object) -> str:
    return str(value).lower() if isinstance(value, bool) else str(value)


@app.command("show")
def config_show() -> None:
    """Show the effective configuration and the source of each value."""
    try:
        config, sources = load_config(find_repo_root())
    except ConfigError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=exc.exit_code)

    typer.echo("Current effective configuration:")
    for key, value in config.model_dump().items():
        typer.echo(f"  {key}: {_render(value)} ({sources[key]})")


@app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Config key, e.g. on_conflict or onConflict."),
    value: str = typer.Argument(..., help="New value, e.g. skip or true."),
) -> None:
    """Set one key in the global config file."""
    try:
        name = canonical_key(key)
        updated = set_global_value(name, value)
    except ConfigError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=exc.exit_code)
    typer.echo(f"✅ {name} = {_render(getattr(updated, name))} ({global_config_path()})")


@app.command("edit")
def config_edit() -> None:
    """Open the global config file in $EDITOR."""
    path = global_config_path()
    if not path.is_file():
        reset_global_config()
    typer.edit(filename=str(path))
    try:
        load_config(None)
    except ConfigError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=exc.exit_code)
    typer.echo(f"✅ Configuration is valid: {path}")


@app.command("reset")
def config_reset() -> None:
    """Restore the global config file to the defaults."""
    path = reset_global_config()
    typer.echo(f"✅ Configuration reset to default: {path}")


@app.command("path")
def config_path() -> None:
    """Print the global config file path."""
    typer.echo(str(global_config_path()))
