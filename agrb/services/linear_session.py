"""Native linear rebase session.

The whole replay is delegated to ``git rebase <target>``.  A single ``step()``
runs it to completion:

- clean run → ``Success``;
- conflict with ``continue_on_conflict`` → one automatic ``ours`` resolution
  (``checkout --ours .``, ``add .``, ``rebase --continue``); a clean
  continuation is ``Success``, any further conflict is fatal;
- conflict without it, or any other error → ``rebase --abort`` and ``Failed``.

There is no ``ConflictPause``: the rebase either finishes or is rolled back.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from agrb.services.conflict import (
    ConflictActionKind,
    ConflictSignal,
    decide_conflict_action,
    linear_strategy,
)
from agrb.services.errors import (
    RebaseError,
    ResolutionFailure,
    SessionStateError,
    ToolInvocationError,
)
from agrb.services.git_ops import ApplyResult, ApplyStatus, ConflictSide, VersionControl
from agrb.services.progress import ProgressSink
from agrb.services.rebase_session import (
    OutcomeKind,
    RebaseSessionBase,
    SessionConfig,
    SessionOutcome,
    SessionState,
    StepReport,
)

logger = logging.getLogger(__name__)


class LinearRebaseSession(RebaseSessionBase):
    """Rebase ``current`` onto ``target`` with ``git rebase``."""

    strategy_label = "linear"

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
        super().__init__(
            vcs,
            current,
            target,
            config,
            progress=progress,
            clock=clock,
            stash_label=stash_label,
        )
        self._auto_continued = False

    async def start(self) -> StepReport:
        if self.state is not SessionState.INITIALIZING:
            raise SessionStateError(f"Session already started (state: {self.state.value})")
        self.emit(f"Rebasing {self.requested_current} onto {self.requested_target} (linear)")
        try:
            await self._prepare()
        except RebaseError as exc:
            return await self._fail(exc)
        self.state = SessionState.APPLYING
        return self.report()

    async def step(self) -> StepReport:
        if self.is_terminal:
            return self.report()
        if self.state is not SessionState.APPLYING:
            raise SessionStateError(f"Cannot step a session in state {self.state.value}")
        assert self.current_ref is not None and self.target_ref is not None

        strategy_option = "ours" if self.config.continue_on_conflict else None
        try:
            await self.vcs.checkout(self.current_ref.name)
            if self.config.backup:
                self.backup_ref = await self.backups.create_backup(self.current_ref)
            self.emit(f"Running git rebase onto {self.target_ref.ref}...")
            result = await self.vcs.start_rebase(
                self.target_ref.ref, strategy_option=strategy_option
            )
            if result.status is ApplyStatus.CONFLICT:
                result = await self._handle_conflict(result)
            if result.status is not ApplyStatus.APPLIED:
                raise ToolInvocationError(["rebase", self.target_ref.ref], 1, result.detail)
            self._rewritten = True
            self.new_tip = await self.vcs.rev_parse(self.current_ref.name)
        except RebaseError as exc:
            await self._abort_in_flight()
            return await self._fail(exc)

        if self._auto_continued:
            self.emit("Linear rebase completed successfully with conflicts auto-resolved")
        else:
            self.emit("Linear rebase completed successfully")
        await self._terminate(OutcomeKind.SUCCESS)
        return self.report()

    async def resume(self) -> StepReport:
        raise SessionStateError("Linear rebase sessions never pause for manual resolution")

    async def cancel(self) -> SessionOutcome:
        if self._outcome is not None:
            return self._outcome
        self.emit("Cancelling rebase...")
        await self._abort_in_flight()
        return await self._terminate(OutcomeKind.CANCELLED, "Cancelled by user")

    # ── Internals ───────────────────────────────────────────────────────

    async def _handle_conflict(self, result: ApplyResult) -> ApplyResult:
        strategy = linear_strategy(self.config.continue_on_conflict)
        action = decide_conflict_action(strategy, ConflictSignal(can_pause=False))
        if action.kind is not ConflictActionKind.RESOLVE_WITH:
            raise ResolutionFailure("Rebase stopped on a conflict") from ToolInvocationError(
                ["rebase", self.target_ref.ref if self.target_ref else ""], 1, result.detail
            )

        side = action.side or ConflictSide.OURS
        self.emit(f"Conflict detected, resolving with '{side.value}' and continuing...")
        stopped_at = await self._stopped_commit()
        try:
            await self.vcs.resolve_conflicts(side)
            continued = await self.vcs.continue_rebase()
        except RebaseError as exc:
            raise ResolutionFailure("Automatic conflict resolution failed") from exc

        if continued.status is ApplyStatus.CONFLICT:
            # One attempt only.
            retry = decide_conflict_action(
                strategy, ConflictSignal(resolution_tried=True, can_pause=False)
            )
            assert retry.kind is ConflictActionKind.ABORT
            raise ResolutionFailure(
                "Conflict persisted after automatic resolution"
            ) from ToolInvocationError(["rebase", "--continue"], 1, continued.detail)
        if continued.status is ApplyStatus.APPLIED:
            self._auto_continued = True
            if stopped_at:
                self.auto_resolved.append(stopped_at)
        return continued

    async def _stopped_commit(self) -> str | None:
        try:
            return await self.vcs.rev_parse("REBASE_HEAD")
        except RebaseError:
            return None

    async def _abort_in_flight(self) -> None:
        try:
            if await self.vcs.rebase_in_progress():
                await self.vcs.abort_rebase()
                logger.info("✅ Aborted in-progress rebase")
        except RebaseError as exc:
            logger.warning("⚠️ Failed to abort in-progress rebase: %s", exc)
