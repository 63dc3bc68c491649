"""Backup tags — a recovery point created before a branch pointer is rewritten."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable

from agrb.services.branch_refs import BranchRef
from agrb.services.errors import BackupError, RebaseError
from agrb.services.git_ops import RefKind, VersionControl

logger = logging.getLogger(__name__)

_TAG_PREFIX = "agrb-backup"


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def backup_tag_name(branch: str, epoch_ms: int) -> str:
    """``agrb-backup-<branch with / as ->-<epoch ms>``."""
    safe_branch = branch.replace("/", "-")
    return f"{_TAG_PREFIX}-{safe_branch}-{epoch_ms}"


class BackupRefManager:
    """Creates annotated tags pointing at a branch's pre-rewrite tip.

    Args:
        vcs:   Version-control adapter.
        clock: Millisecond clock; injectable so tests get stable names.
    """

    def __init__(
        self,
        vcs: VersionControl,
        *,
        clock: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._vcs = vcs
        self._clock = clock

    async def create_backup(self, branch: BranchRef) -> str:
        """Tag the current tip of *branch*; return the tag name.

        Raises:
            BackupError: The tip cannot be read, the tag name is taken, or git
                refuses to create it.  Existing tags are never overwritten.
        """
        try:
            tip = await self._vcs.rev_parse(branch.ref)
            tag = backup_tag_name(branch.name, self._clock())
            if await self._vcs.ref_exists(RefKind.TAG, tag):
                raise BackupError(f"Backup tag {tag!r} already exists")
            await self._vcs.create_annotated_ref(
                tag,
                f"Backup before agrb reset: {branch.name} @ {tip}",
                tip,
            )
        except BackupError:
            raise
        except RebaseError as exc:
            raise BackupError("Failed to create backup tag") from exc
        logger.info("✅ Backup tag %s → %s", tag, tip[:8])
        return tag
