"""Resolve a user-supplied branch name to the ref git should actually use.

A target such as ``main`` is rebased against ``origin/main`` when the
remote-tracking ref exists (it is what the user most likely means after a
fetch), falling back to the local branch of the same name.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from agrb.services.branch_names import require_valid_branch_name, strip_remote_prefix
from agrb.services.git_ops import RefKind, VersionControl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchRef:
    """A validated branch name and where it resolved.

    Attributes:
        name:      Bare branch name (no remote prefix), already validated.
        is_remote: True when the remote-tracking ref is the one to use.
        remote:    Remote name used when ``is_remote`` is set.
    """

    name: str
    is_remote: bool = False
    remote: str = "origin"

    @property
    def ref(self) -> str:
        """The revision string to pass to git."""
        return f"{self.remote}/{self.name}" if self.is_remote else self.name

    def __str__(self) -> str:
        return self.ref


def local_branch_ref(name: str, remote: str = "origin") -> BranchRef:
    """Build a local :class:`BranchRef` after validating *name*."""
    return BranchRef(name=require_valid_branch_name(name), is_remote=False, remote=remote)


class BranchRefResolver:
    """Memoizing resolver; one instance per session.

    Only read-only probes are issued, so :meth:`resolve` is safe to call any
    number of times.  The cache can be dropped with :meth:`forget` after a
    fetch changes what exists on the remote.
    """

    def __init__(self, vcs: VersionControl) -> None:
        self._vcs = vcs
        self._cache: dict[str, BranchRef] = {}

    async def resolve(self, name: str) -> BranchRef:
        remote = self._vcs.remote
        bare = require_valid_branch_name(strip_remote_prefix(name, remote))
        cached = self._cache.get(bare)
        if cached is not None:
            return cached
        is_remote = await self._vcs.ref_exists(RefKind.REMOTE, bare)
        branch_ref = BranchRef(name=bare, is_remote=is_remote, remote=remote)
        self._cache[bare] = branch_ref
        logger.debug("✅ Resolved %r → %s", name, branch_ref.ref)
        return branch_ref

    async def exists(self, name: str) -> bool:
        """True when *name* exists as a remote-tracking or local branch."""
        branch_ref = await self.resolve(name)
        if branch_ref.is_remote:
            return True
        return await self._vcs.ref_exists(RefKind.LOCAL, branch_ref.name)

    def forget(self) -> None:
        self._cache.clear()
