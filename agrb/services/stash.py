"""Autostash — shelve uncommitted work before a session and restore it afterward.

Design
------
- Entries are ordinary git stash entries (``git stash push -u``), labelled
  ``agrb-<pid>`` so the one created for this session can be found in
  ``git stash list`` even if the user stashes something concurrently.
- ``shelve()`` failing, or git reporting nothing to save, means the session
  must not start: a :class:`StashError` is raised.
- ``restore()`` runs after the outcome is already decided; failures surface as
  :class:`CleanupError` so callers can log them as warnings.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from agrb.services.errors import CleanupError, RebaseError, StashError
from agrb.services.git_ops import VersionControl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StashHandle:
    """Opaque reference to a shelved change set.

    Attributes:
        ref:   Stash reference as git reports it (``stash@{0}``).
        label: Message the entry was created with.
    """

    ref: str
    label: str


def default_stash_label() -> str:
    return f"agrb-{os.getpid()}"


class StashCoordinator:
    """Brackets a session with ``shelve()`` / ``restore()``."""

    def __init__(self, vcs: VersionControl, *, label: str | None = None) -> None:
        self._vcs = vcs
        self._label = label or default_stash_label()

    async def shelve(self) -> StashHandle:
        try:
            ref = await self._vcs.shelve_changes(self._label)
        except RebaseError as exc:
            raise StashError("Failed to stash uncommitted changes") from exc
        if not ref:
            raise StashError(f"Stash entry {self._label!r} was not created")
        logger.info("✅ Stashed working tree changes as %s (%s)", ref, self._label)
        return StashHandle(ref=ref, label=self._label)

    async def restore(self, handle: StashHandle) -> None:
        try:
            await self._vcs.restore_shelved(handle.ref)
        except RebaseError as exc:
            raise CleanupError(
                f"Failed to restore stashed changes {handle.ref} ({handle.label}); "
                "they are still in 'git stash list'"
            ) from exc
        logger.info("✅ Restored stashed changes %s", handle.ref)
