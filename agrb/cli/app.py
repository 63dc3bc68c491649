"""agrb CLI — Typer application root.

Entry point for the ``agrb`` console script.  The root command rebases the
current branch (see :mod:`agrb.cli.commands.rebase`); ``agrb config`` manages
the configuration files.
"""
from __future__ import annotations

import logging
from typing import Optional

import typer

from agrb import __version__
from agrb.cli.commands import config_cmd
from agrb.cli.commands.rebase import run_rebase
from agrb.config import get_settings
from agrb.services.conflict import ConflictStrategy

cli = typer.Typer(
    name="agrb",
    help="agrb — rebase the current branch onto another, safely.",
    add_completion=False,
)

cli.add_typer(config_cmd.app, name="config", help="Show or change agrb configuration.")


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else get_settings().log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"agrb {__version__}")
        raise typer.Exit()


@cli.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    target: Optional[str] = typer.Option(
        None,
        "--target",
        "-t",
        help="Target branch to rebase onto (interactive selection if omitted).",
    ),
    allow_empty: bool = typer.Option(
        False, "--allow-empty", help="Allow empty commits during cherry-pick."
    ),
    linear: bool = typer.Option(
        False, "--linear", help="Use git rebase for linear history (default: cherry-pick)."
    ),
    continue_on_conflict: bool = typer.Option(
        False,
        "--continue-on-conflict",
        help="Linear mode: resolve a conflict once with 'ours' and continue.",
    ),
    on_conflict: Optional[ConflictStrategy] = typer.Option(
        None,
        "--on-conflict",
        case_sensitive=False,
        help="Cherry-pick mode conflict strategy: pause, skip, ours or theirs.",
    ),
    remote_target: bool = typer.Option(
        False, "--remote-target", help="Select the target from remote branches."
    ),
    no_config: bool = typer.Option(
        False, "--no-config", help="Ignore the configuration files."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show the plan without making any changes."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    autostash: bool = typer.Option(
        False, "--autostash", help="Stash local changes before running and restore them after."
    ),
    push_with_lease: bool = typer.Option(
        False,
        "--push-with-lease",
        help="Push to the remote with --force-with-lease after success.",
    ),
    no_backup: bool = typer.Option(
        False, "--no-backup", help="Do not create a backup tag before rewriting the branch."
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Rebase the current branch onto TARGET.

    Commits are replayed one at a time with cherry-pick on a scratch branch;
    your branch only moves once every commit has been applied.  Use
    ``--linear`` to run ``git rebase`` instead.
    """
    _configure_logging(verbose)
    if ctx.invoked_subcommand is not None:
        return
    run_rebase(
        target=target,
        allow_empty=allow_empty,
        linear=linear,
        continue_on_conflict=continue_on_conflict,
        remote_target=remote_target,
        on_conflict=on_conflict,
        no_config=no_config,
        dry_run=dry_run,
        yes=yes,
        autostash=autostash,
        push_with_lease=push_with_lease,
        no_backup=no_backup,
    )


if __name__ == "__main__":
    cli()
