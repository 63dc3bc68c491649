"""Exit-code contract and exception types for the agrb CLI."""
from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 — success
    1 — user error (bad arguments, invalid input) or a failed rebase
    2 — repo-not-found / config invalid
    3 — internal error
    4 — cancelled by the user
    """

    SUCCESS = 0
    USER_ERROR = 1
    REPO_NOT_FOUND = 2
    INTERNAL_ERROR = 3
    CANCELLED = 4


class AgrbCLIError(Exception):
    """Base exception for agrb CLI errors."""

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class RepoNotFoundError(AgrbCLIError):
    """Raised when the current directory is not inside a git repository."""

    def __init__(self, message: str = "Not a git repository.") -> None:
        super().__init__(message, exit_code=ExitCode.REPO_NOT_FOUND)


class ConfigError(AgrbCLIError):
    """Raised when a config file cannot be parsed or fails validation.

    Bad keys or values typed on the command line carry ``USER_ERROR`` instead.
    """

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.REPO_NOT_FOUND) -> None:
        super().__init__(message, exit_code=exit_code)
