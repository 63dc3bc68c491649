"""Repository detection for the agrb CLI.

Walks up from the working directory to the first ancestor containing
``.git`` (a directory, or a file for linked worktrees).  ``find_repo_root``
returns ``None`` on a miss and never raises; ``require_repo`` turns the miss
into exit code 2.  ``AGRB_REPO_ROOT`` overrides discovery so tests need no
``os.chdir``.
"""
from __future__ import annotations

import logging
import pathlib

import typer

from agrb.cli.errors import ExitCode
from agrb.config import get_settings

logger = logging.getLogger(__name__)


def find_repo_root(start: pathlib.Path | None = None) -> pathlib.Path | None:
    """Walk up from *start* (default ``Path.cwd()``) looking for ``.git``."""
    if env_root := get_settings().repo_root:
        p = env_root.resolve()
        logger.debug("⚠️ AGRB_REPO_ROOT override active: %s", p)
        return p if (p / ".git").exists() else None

    current = (start or pathlib.Path.cwd()).resolve()
    while True:
        if (current / ".git").exists():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent


def require_repo(start: pathlib.Path | None = None) -> pathlib.Path:
    """Return the repo root or exit 2.

    The message goes to stdout so ``CliRunner`` captures it in
    ``result.output``.
    """
    root = find_repo_root(start)
    if root is None:
        typer.echo("❌ Not a git repository (or any of the parent directories).")
        raise typer.Exit(code=ExitCode.REPO_NOT_FOUND)
    return root
