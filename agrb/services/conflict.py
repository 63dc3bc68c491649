"""Conflict strategy decision table shared by both session types.

Pure: given the configured strategy and what just happened, return the action
to take.  Sessions carry the action out; nothing here touches git.

=============  ======================  ===========================
strategy       first conflict          after an auto-resolution
=============  ======================  ===========================
pause          Pause (if supported)    Abort
skip           SkipStep                Abort
ours           ResolveWith(ours)       Abort
theirs         ResolveWith(theirs)     Abort
(none)         Abort                   Abort
=============  ======================  ===========================

A session that cannot suspend (the linear strategy) turns ``Pause`` into
``Abort``.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass

from agrb.services.git_ops import ConflictSide


class ConflictStrategy(str, enum.Enum):
    """What to do when a replay step conflicts.  Values are the CLI spellings."""

    PAUSE = "pause"
    SKIP = "skip"
    TAKE_OURS = "ours"
    TAKE_THEIRS = "theirs"


class ConflictActionKind(str, enum.Enum):
    PAUSE = "pause"
    SKIP_STEP = "skip_step"
    RESOLVE_WITH = "resolve_with"
    ABORT = "abort"


@dataclass(frozen=True)
class ConflictAction:
    """Decision returned by :func:`decide_conflict_action`.

    Attributes:
        kind: What to do.
        side: Winning side; set only for ``RESOLVE_WITH``.
    """

    kind: ConflictActionKind
    side: ConflictSide | None = None


@dataclass(frozen=True)
class ConflictSignal:
    """Context for a conflict reported by git.

    Attributes:
        commit:            Commit being applied, if known (linear rebases do not say).
        resolution_tried:  An automatic resolution was already attempted for this step.
        can_pause:         The caller supports suspending for manual resolution.
    """

    commit: str | None = None
    resolution_tried: bool = False
    can_pause: bool = True


PAUSE = ConflictAction(ConflictActionKind.PAUSE)
SKIP_STEP = ConflictAction(ConflictActionKind.SKIP_STEP)
ABORT = ConflictAction(ConflictActionKind.ABORT)


def decide_conflict_action(
    strategy: ConflictStrategy | None,
    signal: ConflictSignal,
) -> ConflictAction:
    """Map *strategy* and *signal* to a :class:`ConflictAction`."""
    if signal.resolution_tried or strategy is None:
        return ABORT
    if strategy is ConflictStrategy.PAUSE:
        return PAUSE if signal.can_pause else ABORT
    if strategy is ConflictStrategy.SKIP:
        return SKIP_STEP
    if strategy is ConflictStrategy.TAKE_OURS:
        return ConflictAction(ConflictActionKind.RESOLVE_WITH, ConflictSide.OURS)
    return ConflictAction(ConflictActionKind.RESOLVE_WITH, ConflictSide.THEIRS)


def linear_strategy(continue_on_conflict: bool) -> ConflictStrategy | None:
    """The only strategy the linear session supports: one ``ours`` attempt, or none."""
    return ConflictStrategy.TAKE_OURS if continue_on_conflict else None
