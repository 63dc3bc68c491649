"""Tests for the conflict strategy decision table."""
from __future__ import annotations

import pytest

from agrb.services.conflict import (
    ABORT,
    PAUSE,
    SKIP_STEP,
    ConflictActionKind,
    ConflictSignal,
    ConflictStrategy,
    decide_conflict_action,
    linear_strategy,
)
from agrb.services.git_ops import ConflictSide


def test_pause_strategy_pauses_when_supported() -> None:
    assert decide_conflict_action(ConflictStrategy.PAUSE, ConflictSignal("c1")) == PAUSE


def test_pause_strategy_aborts_when_caller_cannot_pause() -> None:
    signal = ConflictSignal(can_pause=False)
    assert decide_conflict_action(ConflictStrategy.PAUSE, signal) == ABORT


def test_skip_strategy_skips() -> None:
    assert decide_conflict_action(ConflictStrategy.SKIP, ConflictSignal("c1")) == SKIP_STEP


@pytest.mark.parametrize(
    ("strategy", "side"),
    [
        (ConflictStrategy.TAKE_OURS, ConflictSide.OURS),
        (ConflictStrategy.TAKE_THEIRS, ConflictSide.THEIRS),
    ],
)
def test_take_side_strategies_resolve(strategy: ConflictStrategy, side: ConflictSide) -> None:
    action = decide_conflict_action(strategy, ConflictSignal("c1"))
    assert action.kind is ConflictActionKind.RESOLVE_WITH
    assert action.side is side


@pytest.mark.parametrize("strategy", list(ConflictStrategy))
def test_second_conflict_after_resolution_always_aborts(strategy: ConflictStrategy) -> None:
    signal = ConflictSignal("c1", resolution_tried=True)
    assert decide_conflict_action(strategy, signal) == ABORT


def test_no_strategy_aborts() -> None:
    assert decide_conflict_action(None, ConflictSignal()) == ABORT


def test_linear_strategy_mapping() -> None:
    assert linear_strategy(True) is ConflictStrategy.TAKE_OURS
    assert linear_strategy(False) is None


def test_strategy_values_are_cli_spellings() -> None:
    assert [s.value for s in ConflictStrategy] == ["pause", "skip", "ours", "theirs"]
