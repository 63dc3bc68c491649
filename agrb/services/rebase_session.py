"""Types and shared lifecycle for rebase sessions.

A session is an explicit state machine object owned by the caller.  Both
strategies share the same bracket around their work:

1. Validate the branch names (no git invoked yet).
2. Refuse a dirty working tree, or shelve it when autostash is enabled.
3. Fetch, then resolve the target (remote-tracking ref preferred).
4. Strategy-specific work.
5. Terminate exactly once: release strategy resources, restore the shelf,
   optionally push, and freeze a :class:`SessionOutcome`.

Fatal :class:`~agrb.services.errors.RebaseError` s raised inside a step are
converted to ``Failed(reason)`` by the session; they never escape to the
caller.  The user's branch pointer is only moved on the success path.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from agrb.services.backup import BackupRefManager
from agrb.services.branch_names import require_valid_branch_name, strip_remote_prefix
from agrb.services.branch_refs import BranchRef, BranchRefResolver, local_branch_ref
from agrb.services.conflict import ConflictStrategy
from agrb.services.errors import (
    CleanupError,
    DirtyWorkingTreeError,
    NotFoundError,
    RebaseError,
    describe_error,
)
from agrb.services.git_ops import VersionControl
from agrb.services.progress import LoggingProgressSink, ProgressSink
from agrb.services.stash import StashCoordinator, StashHandle

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class SessionState(str, enum.Enum):
    INITIALIZING = "initializing"
    FETCHING = "fetching"
    COMPUTING_RANGE = "computing_range"
    CREATING_SCRATCH_BRANCH = "creating_scratch_branch"
    APPLYING = "applying"
    CONFLICT_PAUSE = "conflict_pause"
    FINISHING = "finishing"
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({SessionState.SUCCESS, SessionState.CANCELLED, SessionState.FAILED})


class OutcomeKind(str, enum.Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"


_OUTCOME_STATE = {
    OutcomeKind.SUCCESS: SessionState.SUCCESS,
    OutcomeKind.CANCELLED: SessionState.CANCELLED,
    OutcomeKind.FAILED: SessionState.FAILED,
}


@dataclass(frozen=True)
class SkippedCommit:
    """A commit that was accounted for without being applied.

    Attributes:
        commit: Commit ID.
        reason: ``"empty"`` (nothing left to apply) or ``"conflict"`` (skip strategy).
    """

    commit: str
    reason: str


@dataclass(frozen=True)
class SessionOutcome:
    """Terminal result of a session.  Built once; never mutated.

    Attributes:
        kind:          Success, Cancelled or Failed.
        reason:        Human-readable cause chain (empty on success).
        applied:       Commits applied cleanly or after manual resolution.
        skipped:       Commits skipped, with the reason.
        auto_resolved: Commits completed by an automatic ours/theirs resolution.
        backup_ref:    Backup tag created before the branch was rewritten.
        new_tip:       Commit the branch points at after a successful rewrite.
        warnings:      Non-fatal problems after the outcome was decided.
    """

    kind: OutcomeKind
    reason: str = ""
    applied: tuple[str, ...] = ()
    skipped: tuple[SkippedCommit, ...] = ()
    auto_resolved: tuple[str, ...] = ()
    backup_ref: str | None = None
    new_tip: str | None = None
    warnings: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


@dataclass(frozen=True)
class CommitRange:
    """Commits to migrate, oldest first, merges excluded.  Fixed for the session.

    Attributes:
        base:    Merge base of the target and the current branch.
        commits: Commit IDs in replay order.
    """

    base: str
    commits: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.commits)

    def __iter__(self) -> Iterator[str]:
        return iter(self.commits)

    def __getitem__(self, index: int) -> str:
        return self.commits[index]


@dataclass(frozen=True)
class SessionConfig:
    """Per-session options, resolved from flags and config by the caller.

    Attributes:
        allow_empty:          Pass ``--allow-empty`` to cherry-pick.
        on_conflict:          Cherry-pick conflict strategy.
        continue_on_conflict: Linear strategy: one automatic ``ours`` resolution.
        autostash:            Shelve a dirty working tree instead of refusing it.
        backup:               Tag the branch tip before rewriting it.
        push_with_lease:      ``git push --force-with-lease`` after success.
        fetch:                Fetch before resolving the target.
    """

    allow_empty: bool = False
    on_conflict: ConflictStrategy = ConflictStrategy.PAUSE
    continue_on_conflict: bool = False
    autostash: bool = False
    backup: bool = True
    push_with_lease: bool = False
    fetch: bool = True


@dataclass(frozen=True)
class StepReport:
    """What a ``start``/``step``/``resume`` call did.

    Attributes:
        message: Latest progress line.
        state:   State after the call.
        cursor:  Index of the next commit to apply.
        total:   Number of commits in the range (0 for linear sessions).
        outcome: Set once the session is terminal.
    """

    message: str
    state: SessionState
    cursor: int = 0
    total: int = 0
    outcome: SessionOutcome | None = None


def short_sha(commit: str) -> str:
    return commit[:7]


# ---------------------------------------------------------------------------
# Shared session lifecycle
# ---------------------------------------------------------------------------


class RebaseSessionBase:
    """Bracket shared by the cherry-pick and linear sessions."""

    strategy_label = "rebase"

    def __init__(
        self,
        vcs: VersionControl,
        current: str,
        target: str,
        config: SessionConfig | None = None,
        *,
        progress: ProgressSink | None = None,
        clock: Callable[[], int] | None = None,
        stash_label: str | None = None,
    ) -> None:
        self.vcs = vcs
        self.requested_current = current
        self.requested_target = target
        self.config = config or SessionConfig()
        self.state = SessionState.INITIALIZING
        self.message = "Initializing..."
        self.current_ref: BranchRef | None = None
        self.target_ref: BranchRef | None = None
        self.backup_ref: str | None = None
        self.new_tip: str | None = None
        self.stash_handle: StashHandle | None = None
        self.applied: list[str] = []
        self.skipped: list[SkippedCommit] = []
        self.auto_resolved: list[str] = []
        self.warnings: list[str] = []
        self.resolver = BranchRefResolver(vcs)
        self.stasher = StashCoordinator(vcs, label=stash_label)
        self.backups = BackupRefManager(vcs, clock=clock) if clock else BackupRefManager(vcs)
        self._progress: ProgressSink = progress or LoggingProgressSink()
        self._outcome: SessionOutcome | None = None
        # Set once the user's branch pointer has moved; from then on the
        # session can only end in Success.
        self._rewritten = False
        self._push_started = False

    # ── Introspection ───────────────────────────────────────────────────

    @property
    def outcome(self) -> SessionOutcome | None:
        return self._outcome

    @property
    def is_terminal(self) -> bool:
        return self._outcome is not None

    @property
    def cursor(self) -> int:
        return 0

    @property
    def total(self) -> int:
        return 0

    def report(self) -> StepReport:
        return StepReport(
            message=self.message,
            state=self.state,
            cursor=self.cursor,
            total=self.total,
            outcome=self._outcome,
        )

    def emit(self, message: str) -> None:
        self.message = message
        self._progress.emit(message)

    # ── Shared steps ────────────────────────────────────────────────────

    def _validate_names(self) -> None:
        remote = self.vcs.remote
        self.current_ref = local_branch_ref(self.requested_current, remote)
        require_valid_branch_name(strip_remote_prefix(self.requested_target, remote))

    async def _prepare(self) -> None:
        """Validate, shelve or refuse local changes, fetch, and resolve the target."""
        self._validate_names()

        if not await self.vcs.is_working_tree_clean():
            if not self.config.autostash:
                raise DirtyWorkingTreeError()
            self.emit("Stashing uncommitted changes...")
            self.stash_handle = await self.stasher.shelve()

        self.state = SessionState.FETCHING
        if self.config.fetch:
            self.emit("Fetching all branches...")
            await self.vcs.fetch_remote()
            self.resolver.forget()

        self.emit("Checking if target branch exists...")
        if not await self.resolver.exists(self.requested_target):
            raise NotFoundError(self.requested_target)
        self.target_ref = await self.resolver.resolve(self.requested_target)

    async def _release(self) -> None:
        """Strategy-specific teardown run before every terminal outcome."""

    async def _fail(self, exc: RebaseError) -> StepReport:
        reason = describe_error(exc)
        logger.error("❌ %s session failed: %s", self.strategy_label, reason)
        self.emit(f"Error: {reason}")
        await self._terminate(OutcomeKind.FAILED, reason)
        return self.report()

    async def _terminate(self, kind: OutcomeKind, reason: str = "") -> SessionOutcome:
        """Release resources, restore the shelf, push, and freeze the outcome."""
        if self._outcome is not None:
            return self._outcome

        await self._release()

        if self.stash_handle is not None:
            try:
                await self.stasher.restore(self.stash_handle)
                self.stash_handle = None
            except CleanupError as exc:
                text = describe_error(exc)
                logger.warning("⚠️ %s", text)
                self.warnings.append(text)

        if kind is not OutcomeKind.SUCCESS and self._rewritten:
            assert self.current_ref is not None
            detail = "Interrupted" if kind is OutcomeKind.CANCELLED else reason
            text = f"{detail} after {self.current_ref.name} was rewritten; the rebase was kept"
            logger.warning("⚠️ %s", text)
            self.warnings.append(text)
            kind, reason = OutcomeKind.SUCCESS, ""

        if kind is OutcomeKind.SUCCESS and self.config.push_with_lease and self.current_ref:
            if self._push_started:
                text = (
                    f"Push of {self.current_ref.name} was interrupted; "
                    "run 'git push --force-with-lease' to publish it"
                )
                logger.warning("⚠️ %s", text)
                self.warnings.append(text)
            else:
                self._push_started = True
                self.emit(f"Pushing {self.current_ref.name} with --force-with-lease...")
                try:
                    await self.vcs.push_with_lease(self.current_ref.name)
                except RebaseError as exc:
                    text = f"Push failed: {describe_error(exc)}"
                    logger.warning("⚠️ %s", text)
                    self.warnings.append(text)

        self._outcome = SessionOutcome(
            kind=kind,
            reason=reason,
            applied=tuple(self.applied),
            skipped=tuple(self.skipped),
            auto_resolved=tuple(self.auto_resolved),
            backup_ref=self.backup_ref,
            new_tip=self.new_tip if kind is OutcomeKind.SUCCESS else None,
            warnings=tuple(self.warnings),
        )
        self.state = _OUTCOME_STATE[kind]
        logger.info(
            "✅ %s session finished: %s (%d applied, %d skipped, %d auto-resolved)",
            self.strategy_label,
            kind.value,
            len(self.applied),
            len(self.skipped),
            len(self.auto_resolved),
        )
        return self._outcome
