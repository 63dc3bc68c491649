"""Rebase engine for agrb."""
from __future__ import annotations

from agrb.services.conflict import ConflictStrategy
from agrb.services.errors import RebaseError, SessionStateError
from agrb.services.git_ops import GitOperations, VersionControl
from agrb.services.progress import (
    CallbackProgressSink,
    LoggingProgressSink,
    ProgressSink,
    RecordingProgressSink,
)
from agrb.services.rebase_engine import (
    PlannedCommit,
    RebasePlan,
    RebaseStrategy,
    SessionHandle,
    cancel,
    open_session,
    plan_rebase,
    resume,
    run_until_pause,
    start,
    start_cherry_pick_session,
    start_linear_session,
    step,
)
from agrb.services.rebase_session import (
    OutcomeKind,
    SessionConfig,
    SessionOutcome,
    SessionState,
    StepReport,
)

__all__ = [
    "ConflictStrategy",
    "RebaseError",
    "SessionStateError",
    "GitOperations",
    "VersionControl",
    "CallbackProgressSink",
    "LoggingProgressSink",
    "ProgressSink",
    "RecordingProgressSink",
    "PlannedCommit",
    "RebasePlan",
    "RebaseStrategy",
    "SessionHandle",
    "cancel",
    "open_session",
    "plan_rebase",
    "resume",
    "run_until_pause",
    "start",
    "start_cherry_pick_session",
    "start_linear_session",
    "step",
    "OutcomeKind",
    "SessionConfig",
    "SessionOutcome",
    "SessionState",
    "StepReport",
]
