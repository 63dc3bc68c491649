"""Exception taxonomy for the rebase engine.

Every fatal condition the engine can hit is a :class:`RebaseError`.  Sessions
catch these at their public entry points and turn them into a terminal
``Failed(reason)`` outcome, so callers only ever see exceptions for API
misuse (:class:`SessionStateError`).

A conflict is *not* an error: it is an :class:`~agrb.services.git_ops.ApplyResult`
status handled by :mod:`agrb.services.conflict`.
"""
from __future__ import annotations


class RebaseError(Exception):
    """Base class for all engine failures."""


class ValidationError(RebaseError):
    """A branch name failed validation before reaching git."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Invalid branch name: {name}")
        self.name = name


class NotFoundError(RebaseError):
    """The target branch does not exist (locally or on the remote) after fetch."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Target branch '{name}' does not exist")
        self.name = name


class DirtyWorkingTreeError(RebaseError):
    """Uncommitted changes are present and autostash is disabled."""

    def __init__(self) -> None:
        super().__init__(
            "Uncommitted changes detected. Please commit or stash your changes "
            "before running agrb (or enable autostash)."
        )


class ToolInvocationError(RebaseError):
    """git exited non-zero for a command that has no richer classification."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")
        self.args_ = list(args)
        self.returncode = returncode
        self.stderr = stderr


class ResolutionFailure(RebaseError):
    """An automatic conflict resolution attempt did not succeed."""


class BackupError(RebaseError):
    """The pre-reset backup reference could not be created."""


class StashError(RebaseError):
    """Uncommitted changes could not be shelved before the session."""


class CleanupError(RebaseError):
    """Post-outcome housekeeping failed (scratch branch removal, stash restore).

    Logged and reported as a warning; never changes a session outcome.
    """


class SessionStateError(RebaseError):
    """An operation was requested in a state that does not allow it."""


def describe_error(exc: BaseException) -> str:
    """Render *exc* and its ``__cause__`` chain as ``outer: inner: ...``."""
    parts: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        text = str(current).strip() or type(current).__name__
        if not parts or text not in parts[-1]:
            parts.append(text)
        current = current.__cause__
    return ": ".join(parts)
