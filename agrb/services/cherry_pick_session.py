"""Cherry-pick replay session — the commit-by-commit rebase state machine.

Algorithm
---------
1. ``start()``: validate names, shelve or refuse local changes, fetch, resolve
   the target, compute ``merge-base(target, current)`` and the merge-free
   range ``base..current`` (oldest first), then create a scratch branch
   ``temp-rebase-<pid>`` at the target and check it out.
2. ``step()``: cherry-pick the commit at the cursor onto the scratch branch.
   Empty results are skipped automatically; conflicts follow the configured
   :class:`~agrb.services.conflict.ConflictStrategy`; anything else is fatal.
3. When the cursor passes the end, ``finish()`` checks out the original
   branch, tags its tip (backup), and hard-resets it to the scratch tip.  This
   is the only point where the user's branch moves.
4. ``cleanup()`` leaves and deletes the scratch branch on every terminal path.

State transitions::

    Initializing → Fetching → ComputingRange → CreatingScratchBranch
        → Applying(i) → {ConflictPause ⇄ Applying(i) | Finishing}
        → {Success | Cancelled | Failed}

``ConflictPause`` is a returned state, not a blocked thread: the caller
resolves conflicts out of band, then calls ``resume()`` (or ``cancel()``).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable

from agrb.services.conflict import (
    ConflictActionKind,
    ConflictSignal,
    decide_conflict_action,
)
from agrb.services.errors import (
    RebaseError,
    ResolutionFailure,
    SessionStateError,
    ToolInvocationError,
)
from agrb.services.git_ops import (
    ApplyResult,
    ApplyStatus,
    ConflictSide,
    RefKind,
    VersionControl,
)
from agrb.services.progress import ProgressSink
from agrb.services.rebase_session import (
    CommitRange,
    OutcomeKind,
    RebaseSessionBase,
    SessionConfig,
    SessionOutcome,
    SessionState,
    SkippedCommit,
    StepReport,
    short_sha,
)

logger = logging.getLogger(__name__)

_SCRATCH_PREFIX = "temp-rebase"


class CherryPickSession(RebaseSessionBase):
    """Replay ``current``'s commits onto ``target`` one cherry-pick at a time.

    Args:
        vcs:          Version-control adapter.
        current:      Branch being rewritten (must be a local branch).
        target:       Branch to rebase onto; ``origin/`` prefix optional.
        config:       :class:`~agrb.services.rebase_session.SessionConfig`.
        progress:     Sink for status lines.
        clock:        Millisecond clock for backup tag names.
        stash_label:  Label for the autostash entry.
        scratch_name: Scratch branch name; defaults to ``temp-rebase-<pid>``.
    """

    strategy_label = "cherry-pick"

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
        scratch_name: str | None = None,
    ) -> None:
        super().__init__(
            vcs,
            current,
            target,
            config,
            progress=progress,
            clock=clock,
            stash_label=stash_label,
        )
        self.commit_range: CommitRange | None = None
        self.scratch_branch: str | None = None
        self._scratch_name = scratch_name or f"{_SCRATCH_PREFIX}-{os.getpid()}"
        self._cursor = 0
        self._paused_head: str | None = None

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def total(self) -> int:
        return len(self.commit_range) if self.commit_range is not None else 0

    # ── Public state machine ────────────────────────────────────────────

    async def start(self) -> StepReport:
        """Run everything up to ``Applying(0)``; ``Failed`` on any fatal error."""
        if self.state is not SessionState.INITIALIZING:
            raise SessionStateError(f"Session already started (state: {self.state.value})")
        self.emit(f"Rebasing {self.requested_current} onto {self.requested_target} (cherry-pick)")
        try:
            await self._prepare()
            assert self.current_ref is not None and self.target_ref is not None

            self.state = SessionState.COMPUTING_RANGE
            base = await self.vcs.merge_base(self.target_ref.ref, self.current_ref.name)
            commits = await self.vcs.commits_between(
                base, self.current_ref.name, exclude_merges=True
            )
            self.commit_range = CommitRange(base=base, commits=tuple(commits))
            self.emit(f"Found {len(commits)} commits to apply.")

            self.state = SessionState.CREATING_SCRATCH_BRANCH
            name = await self._free_scratch_name()
            await self.vcs.create_branch(name, self.target_ref.ref)
            self.scratch_branch = name
            await self.vcs.checkout(name)
        except RebaseError as exc:
            return await self._fail(exc)

        self.state = SessionState.APPLYING
        logger.info(
            "✅ cherry-pick session ready: %d commit(s) from %s onto %s via %s",
            self.total,
            self.current_ref.name,
            self.target_ref.ref,
            self.scratch_branch,
        )
        return self.report()

    async def step(self) -> StepReport:
        """Apply the commit at the cursor, or finish once the range is exhausted.

        In ``ConflictPause`` this is a no-op that repeats the prompt; on a
        terminal session it simply returns the final report.
        """
        if self.is_terminal:
            return self.report()
        if self.state is SessionState.CONFLICT_PAUSE:
            self.emit(self._pause_message())
            return self.report()
        if self.state is not SessionState.APPLYING or self.commit_range is None:
            raise SessionStateError(f"Cannot step a session in state {self.state.value}")

        if self._cursor >= len(self.commit_range):
            return await self.finish()

        commit = self.commit_range[self._cursor]
        self.emit(f"Applying commit {self._cursor + 1}/{self.total}: {short_sha(commit)}")
        try:
            result = await self.vcs.apply_commit(commit, allow_empty=self.config.allow_empty)
            await self._handle_apply_result(commit, result)
        except RebaseError as exc:
            await self._abort_in_flight()
            return await self._fail(exc)
        return self.report()

    async def resume(self) -> StepReport:
        """Complete the paused step after the user resolved it out of band.

        The cursor advances only once git accepts the resolution.  If the
        conflicts are still unresolved the session stays paused.
        """
        if self.state is not SessionState.CONFLICT_PAUSE or self.commit_range is None:
            raise SessionStateError("No conflict is awaiting resolution")

        commit = self.commit_range[self._cursor]
        self.emit("Attempting to continue cherry-pick...")
        try:
            if not await self.vcs.apply_in_progress():
                await self._settle_external_resolution(commit)
                return self.report()
            result = await self.vcs.continue_in_progress_apply()
        except RebaseError as exc:
            await self._abort_in_flight()
            return await self._fail(exc)

        if result.status is ApplyStatus.APPLIED:
            self.applied.append(commit)
            self._advance(f"Commit {short_sha(commit)} applied after manual resolution.")
        elif result.status is ApplyStatus.EMPTY_NOOP:
            self.skipped.append(SkippedCommit(commit, "empty"))
            self._advance(f"Commit {short_sha(commit)} is empty after resolution, skipping.")
        else:
            self.emit(
                "Failed to continue. Make sure conflicts are resolved and staged. "
                f"Error: {result.detail}"
            )
        return self.report()

    async def finish(self) -> StepReport:
        """Move the real branch to the scratch tip.  Requires the whole range accounted for."""
        if (
            self.state is not SessionState.APPLYING
            or self.commit_range is None
            or self._cursor < len(self.commit_range)
        ):
            raise SessionStateError("Cannot finish before every commit has been processed")
        assert self.current_ref is not None and self.scratch_branch is not None

        self.state = SessionState.FINISHING
        self.emit("Finishing rebase...")
        try:
            scratch_tip = await self.vcs.rev_parse(self.scratch_branch)
            await self.vcs.checkout(self.current_ref.name)
            if self.config.backup:
                self.backup_ref = await self.backups.create_backup(self.current_ref)
            await self.vcs.reset_hard(self.current_ref.name, self.scratch_branch)
        except RebaseError as exc:
            return await self._fail(exc)

        self._rewritten = True
        self.new_tip = scratch_tip
        self.emit(
            f"Successfully rebased {self.current_ref.name} onto {self.requested_target}!"
        )
        await self._terminate(OutcomeKind.SUCCESS)
        return self.report()

    async def cancel(self) -> SessionOutcome:
        """Abandon the session; the original branch is left where it was."""
        if self._outcome is not None:
            return self._outcome
        self.emit("Cancelling rebase...")
        await self._abort_in_flight()
        return await self._terminate(OutcomeKind.CANCELLED, "Cancelled by user")

    async def cleanup(self) -> None:
        """Leave and delete the scratch branch.  Best effort; safe to repeat."""
        scratch = self.scratch_branch
        if scratch is None or self.current_ref is None:
            return
        try:
            if await self.vcs.current_branch() == scratch:
                await self.vcs.checkout(self.current_ref.name)
            if await self.vcs.ref_exists(RefKind.LOCAL, scratch):
                await self.vcs.delete_branch(scratch)
                logger.debug("✅ Deleted scratch branch %s", scratch)
        except RebaseError as exc:
            logger.warning("⚠️ Cleanup of scratch branch %s failed: %s", scratch, exc)

    # ── Internals ───────────────────────────────────────────────────────

    async def _release(self) -> None:
        await self.cleanup()

    def _advance(self, message: str) -> None:
        self._cursor += 1
        self._paused_head = None
        self.state = SessionState.APPLYING
        self.emit(message)

    def _pause_message(self) -> str:
        assert self.commit_range is not None
        return (
            f"Conflict on commit {short_sha(self.commit_range[self._cursor])}. "
            "Resolve and stage the conflicts in the working tree, then resume to continue."
        )

    async def _handle_apply_result(self, commit: str, result: ApplyResult) -> None:
        short = short_sha(commit)
        if result.status is ApplyStatus.APPLIED:
            self.applied.append(commit)
            self._advance(f"Applied commit {short}.")
            return
        if result.status is ApplyStatus.EMPTY_NOOP:
            # Empty commits are never conflicts, whatever the strategy.
            self.skipped.append(SkippedCommit(commit, "empty"))
            self._advance(f"Commit {short} is empty, skipping automatically.")
            return
        if result.status is ApplyStatus.OTHER_ERROR:
            raise ToolInvocationError(["cherry-pick", commit], 1, result.detail)

        action = decide_conflict_action(
            self.config.on_conflict, ConflictSignal(commit=commit, can_pause=True)
        )
        if action.kind is ConflictActionKind.SKIP_STEP:
            self.emit(f"Conflict on commit {short}, skipping as per config.")
            await self.vcs.skip_in_progress_apply()
            self.skipped.append(SkippedCommit(commit, "conflict"))
            self._advance(f"Skipped commit {short}.")
        elif action.kind is ConflictActionKind.RESOLVE_WITH:
            assert action.side is not None
            self.emit(f"Conflict on commit {short}, resolving with '{action.side.value}'.")
            await self._resolve_automatically(commit, action.side)
        elif action.kind is ConflictActionKind.PAUSE:
            self._paused_head = await self.vcs.rev_parse("HEAD")
            self.state = SessionState.CONFLICT_PAUSE
            self.emit(self._pause_message())
        else:
            raise ResolutionFailure(f"Conflict on commit {short}")

    async def _resolve_automatically(self, commit: str, side: ConflictSide) -> None:
        short = short_sha(commit)
        try:
            await self.vcs.resolve_conflicts(side)
            result = await self.vcs.continue_in_progress_apply()
        except RebaseError as exc:
            raise ResolutionFailure(
                f"Automatic '{side.value}' resolution of commit {short} failed"
            ) from exc

        if result.status is ApplyStatus.APPLIED:
            self.auto_resolved.append(commit)
            self._advance(f"Commit {short} applied with '{side.value}' resolution.")
        elif result.status is ApplyStatus.EMPTY_NOOP:
            self.skipped.append(SkippedCommit(commit, "empty"))
            self._advance(f"Commit {short} is empty after '{side.value}' resolution, skipping.")
        else:
            action = decide_conflict_action(
                self.config.on_conflict,
                ConflictSignal(commit=commit, resolution_tried=True),
            )
            assert action.kind is ConflictActionKind.ABORT
            raise ResolutionFailure(
                f"Automatic '{side.value}' resolution of commit {short} failed: {result.detail}"
            )

    async def _settle_external_resolution(self, commit: str) -> None:
        """The user finished the cherry-pick themselves (``--continue`` or ``--skip``)."""
        head = await self.vcs.rev_parse("HEAD")
        if self._paused_head is not None and head != self._paused_head:
            self.applied.append(commit)
            self._advance(f"Commit {short_sha(commit)} was committed manually.")
        else:
            self.skipped.append(SkippedCommit(commit, "conflict"))
            self._advance(f"Commit {short_sha(commit)} was skipped manually.")

    async def _abort_in_flight(self) -> None:
        try:
            if await self.vcs.apply_in_progress():
                await self.vcs.abort_in_progress_apply()
                logger.info("✅ Aborted in-progress cherry-pick")
        except RebaseError as exc:
            logger.warning("⚠️ Failed to abort in-progress cherry-pick: %s", exc)

    async def _free_scratch_name(self) -> str:
        candidate = self._scratch_name
        suffix = 1
        while await self.vcs.ref_exists(RefKind.LOCAL, candidate):
            candidate = f"{self._scratch_name}-{suffix}"
            suffix += 1
        return candidate
