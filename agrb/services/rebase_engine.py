"""Rebase engine boundary — what the CLI (or any other front end) calls.

The front end supplies a current branch, a target branch and a
:class:`~agrb.services.rebase_session.SessionConfig`, starts a session with
:func:`open_session` + :func:`start` (or one of the ``start_*`` shortcuts)
and then drives it with :func:`step`,
:func:`resume` and :func:`cancel` until :attr:`SessionHandle.outcome` is set.
Each call returns the latest progress line and the new state; the same lines
are also pushed to the session's :class:`~agrb.services.progress.ProgressSink`.

:func:`plan_rebase` is a read-only preview used for ``--dry-run`` and the
confirmation prompt.  Unlike sessions it raises
:class:`~agrb.services.errors.RebaseError` directly; nothing needs undoing.
"""
from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from agrb.services.branch_names import require_valid_branch_name, strip_remote_prefix
from agrb.services.branch_refs import BranchRef, BranchRefResolver, local_branch_ref
from agrb.services.cherry_pick_session import CherryPickSession
from agrb.services.errors import NotFoundError
from agrb.services.git_ops import VersionControl
from agrb.services.linear_session import LinearRebaseSession
from agrb.services.progress import ProgressSink
from agrb.services.rebase_session import (
    CommitRange,
    SessionConfig,
    SessionOutcome,
    SessionState,
    StepReport,
)

logger = logging.getLogger(__name__)

Session = CherryPickSession | LinearRebaseSession


class RebaseStrategy(str, enum.Enum):
    CHERRY_PICK = "cherry-pick"
    LINEAR = "linear"


@dataclass
class SessionHandle:
    """Caller-owned reference to a running session.

    Attributes:
        session:    The underlying state machine.
        strategy:   Which strategy it runs.
        session_id: Random identifier, handy for log correlation.
    """

    session: Session
    strategy: RebaseStrategy
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def outcome(self) -> SessionOutcome | None:
        return self.session.outcome

    @property
    def is_paused(self) -> bool:
        return self.session.state is SessionState.CONFLICT_PAUSE

    @property
    def is_terminal(self) -> bool:
        return self.session.is_terminal

    def report(self) -> StepReport:
        return self.session.report()


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


def open_session(
    strategy: RebaseStrategy,
    vcs: VersionControl,
    current: str,
    target: str,
    config: SessionConfig | None = None,
    *,
    progress: ProgressSink | None = None,
    clock: Callable[[], int] | None = None,
    stash_label: str | None = None,
    scratch_name: str | None = None,
) -> SessionHandle:
    """Build a session in ``Initializing`` without touching the repository.

    Callers that must be able to cancel during preparation (Ctrl-C while
    fetching) open first and then :func:`start`.
    """
    session: Session
    if strategy is RebaseStrategy.LINEAR:
        session = LinearRebaseSession(
            vcs,
            current,
            target,
            config,
            progress=progress,
            clock=clock,
            stash_label=stash_label,
        )
    else:
        session = CherryPickSession(
            vcs,
            current,
            target,
            config,
            progress=progress,
            clock=clock,
            stash_label=stash_label,
            scratch_name=scratch_name,
        )
    handle = SessionHandle(session=session, strategy=strategy)
    logger.info(
        "🔀 [%s] %s session %s → %s", handle.session_id, strategy.value, current, target
    )
    return handle


async def start(handle: SessionHandle) -> StepReport:
    """Run preparation; the session ends in ``Applying`` or ``Failed``."""
    return await handle.session.start()


async def start_cherry_pick_session(
    vcs: VersionControl,
    current: str,
    target: str,
    config: SessionConfig | None = None,
    **kwargs: Any,
) -> SessionHandle:
    """Open a cherry-pick session and run it up to ``Applying(0)`` (or ``Failed``)."""
    handle = open_session(RebaseStrategy.CHERRY_PICK, vcs, current, target, config, **kwargs)
    await start(handle)
    return handle


async def start_linear_session(
    vcs: VersionControl,
    current: str,
    target: str,
    config: SessionConfig | None = None,
    **kwargs: Any,
) -> SessionHandle:
    """Open a linear session and run its preparation (validate, stash, fetch, resolve)."""
    handle = open_session(RebaseStrategy.LINEAR, vcs, current, target, config, **kwargs)
    await start(handle)
    return handle


async def step(handle: SessionHandle) -> StepReport:
    return await handle.session.step()


async def resume(handle: SessionHandle) -> StepReport:
    return await handle.session.resume()


async def cancel(handle: SessionHandle) -> SessionOutcome:
    return await handle.session.cancel()


async def run_until_pause(handle: SessionHandle) -> StepReport:
    """Step until the session pauses for a conflict or reaches a terminal state."""
    report = handle.report()
    while not handle.is_terminal and not handle.is_paused:
        report = await step(handle)
    return report


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlannedCommit:
    sha: str
    subject: str

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


@dataclass(frozen=True)
class RebasePlan:
    """Preview of a rebase: which commits would be replayed onto which ref.

    Attributes:
        current: The branch to rewrite.
        target:  The resolved target ref (remote-tracking when available).
        base:    Merge base of the two.
        commits: Commits to replay, oldest first, with their subjects.
    """

    current: BranchRef
    target: BranchRef
    base: str
    commits: tuple[PlannedCommit, ...] = ()

    @property
    def commit_range(self) -> CommitRange:
        return CommitRange(base=self.base, commits=tuple(c.sha for c in self.commits))

    @property
    def is_empty(self) -> bool:
        return not self.commits

    def __len__(self) -> int:
        return len(self.commits)


async def plan_rebase(
    vcs: VersionControl,
    current: str,
    target: str,
    *,
    fetch: bool = True,
) -> RebasePlan:
    """Compute what a session would replay, without touching any branch.

    Raises:
        ValidationError: Either branch name is invalid.
        NotFoundError:   The target does not exist after fetching.
        ToolInvocationError: git failed.
    """
    current_ref = local_branch_ref(current, vcs.remote)
    require_valid_branch_name(strip_remote_prefix(target, vcs.remote))

    if fetch:
        await vcs.fetch_remote()
    resolver = BranchRefResolver(vcs)
    if not await resolver.exists(target):
        raise NotFoundError(target)
    target_ref = await resolver.resolve(target)

    base = await vcs.merge_base(target_ref.ref, current_ref.name)
    shas = await vcs.commits_between(base, current_ref.name, exclude_merges=True)
    commits = tuple([PlannedCommit(sha, await vcs.commit_subject(sha)) for sha in shas])
    logger.info(
        "✅ Plan: %d commit(s) from %s onto %s (base %s)",
        len(commits),
        current_ref.name,
        target_ref.ref,
        base[:8],
    )
    return RebasePlan(current=current_ref, target=target_ref, base=base, commits=commits)
