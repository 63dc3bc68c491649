"""Tests for the engine boundary in ``agrb.services.rebase_engine``.

Covers:
- ``open_session`` / ``start`` / ``step`` / ``resume`` / ``cancel`` through a
  ``SessionHandle`` for both strategies.
- ``run_until_pause`` stopping on a conflict and on a terminal state.
- ``plan_rebase`` previews, including its error paths.
- End-to-end runs of both strategies against a real repository.
"""
from __future__ import annotations

import pathlib

import pytest

from agrb.services import (
    GitOperations,
    OutcomeKind,
    RebaseStrategy,
    RecordingProgressSink,
    SessionConfig,
    SessionState,
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
from agrb.services.errors import NotFoundError, ValidationError
from agrb.services.git_ops import ApplyStatus, RefKind
from tests.fake_git import FakeGit
from tests.git_helpers import commit_file, git, requires_git


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------


def test_open_session_touches_nothing(fake_git: FakeGit) -> None:
    handle = open_session(RebaseStrategy.CHERRY_PICK, fake_git, "feature", "main")
    assert handle.state is SessionState.INITIALIZING
    assert not handle.is_terminal
    assert handle.outcome is None
    assert len(handle.session_id) == 12
    assert fake_git.calls == []


def test_open_session_picks_strategy(fake_git: FakeGit) -> None:
    cherry = open_session(RebaseStrategy.CHERRY_PICK, fake_git, "feature", "main")
    linear = open_session(RebaseStrategy.LINEAR, fake_git, "feature", "main")
    assert cherry.session.strategy_label == "cherry-pick"
    assert linear.session.strategy_label == "linear"
    assert cherry.session_id != linear.session_id


@pytest.mark.anyio
async def test_start_reaches_applying(fake_git: FakeGit) -> None:
    handle = open_session(
        RebaseStrategy.CHERRY_PICK, fake_git, "feature", "main", scratch_name="scratch"
    )
    report = await start(handle)
    assert report.state is SessionState.APPLYING
    assert report.cursor == 0
    assert report.total == 3


@pytest.mark.anyio
async def test_run_until_pause_stops_on_conflict_then_finishes(fake_git: FakeGit) -> None:
    fake_git.script_apply("c2", ApplyStatus.CONFLICT)
    handle = await start_cherry_pick_session(
        fake_git, "feature", "main", progress=RecordingProgressSink(), clock=lambda: 1,
        scratch_name="scratch",
    )

    report = await run_until_pause(handle)
    assert handle.is_paused
    assert report.state is SessionState.CONFLICT_PAUSE
    assert report.cursor == 1

    await resume(handle)
    report = await run_until_pause(handle)

    assert handle.is_terminal
    assert report.outcome is not None and report.outcome.succeeded
    assert report.outcome.applied == ("c1", "c2", "c3")


@pytest.mark.anyio
async def test_cancel_through_handle(fake_git: FakeGit) -> None:
    fake_git.script_apply("c1", ApplyStatus.CONFLICT)
    handle = await start_cherry_pick_session(fake_git, "feature", "main", scratch_name="scratch")
    await step(handle)
    assert handle.is_paused

    outcome = await cancel(handle)

    assert outcome.kind is OutcomeKind.CANCELLED
    assert handle.state is SessionState.CANCELLED
    assert fake_git.local["feature"] == "f-tip"
    assert "scratch" not in fake_git.local


@pytest.mark.anyio
async def test_linear_session_through_handle(fake_git: FakeGit) -> None:
    handle = await start_linear_session(
        fake_git, "feature", "main", SessionConfig(backup=False)
    )
    assert handle.strategy is RebaseStrategy.LINEAR

    report = await run_until_pause(handle)

    assert report.state is SessionState.SUCCESS
    assert not handle.is_paused


@pytest.mark.anyio
async def test_failed_start_is_terminal(fake_git: FakeGit) -> None:
    fake_git.remote_branches.clear()
    handle = await start_cherry_pick_session(fake_git, "feature", "ghost")
    assert handle.is_terminal
    outcome = handle.outcome
    assert outcome is not None and outcome.kind is OutcomeKind.FAILED
    assert "ghost" in outcome.reason


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_plan_rebase_lists_commits(fake_git: FakeGit) -> None:
    plan = await plan_rebase(fake_git, "feature", "main")

    assert plan.target.ref == "origin/main"
    assert plan.base == "base"
    assert len(plan) == 3
    assert not plan.is_empty
    assert [c.subject for c in plan.commits] == ["Subject of c1", "Subject of c2", "Subject of c3"]
    assert list(plan.commit_range) == ["c1", "c2", "c3"]
    assert fake_git.called("fetch_remote") == [()]
    assert fake_git.called("merge_base") == [("origin/main", "feature")]


@pytest.mark.anyio
async def test_plan_rebase_without_fetch_changes_nothing(fake_git: FakeGit) -> None:
    plan = await plan_rebase(fake_git, "feature", "main", fetch=False)
    assert plan.current.name == "feature"
    assert fake_git.called("fetch_remote") == []
    mutating = {"checkout", "create_branch", "reset_hard", "apply_commit", "start_rebase"}
    assert not [name for name, _ in fake_git.calls if name in mutating]


@pytest.mark.anyio
async def test_plan_rebase_empty_range(fake_git: FakeGit) -> None:
    fake_git.commits = []
    plan = await plan_rebase(fake_git, "feature", "main")
    assert plan.is_empty


@pytest.mark.anyio
async def test_plan_rebase_missing_target(fake_git: FakeGit) -> None:
    with pytest.raises(NotFoundError):
        await plan_rebase(fake_git, "feature", "ghost")


@pytest.mark.anyio
async def test_plan_rebase_invalid_name(fake_git: FakeGit) -> None:
    with pytest.raises(ValidationError):
        await plan_rebase(fake_git, "feature", "-rf")
    assert fake_git.calls == []


def test_planned_commit_short_sha() -> None:
    from agrb.services import PlannedCommit

    assert PlannedCommit("0123456789abcdef", "msg").short_sha == "0123456"


# ---------------------------------------------------------------------------
# Real git, end to end
# ---------------------------------------------------------------------------


def _diverge(repo: pathlib.Path) -> tuple[str, str]:
    """Give ``feature`` two commits and ``main`` one non-overlapping commit."""
    commit_file(repo, "feature-1.txt", "one\n", "Feature one")
    commit_file(repo, "feature-2.txt", "two\n", "Feature two")
    git(repo, "checkout", "-q", "main")
    main_tip = commit_file(repo, "main.txt", "main\n", "Main work")
    git(repo, "checkout", "-q", "feature")
    return main_tip, git(repo, "rev-parse", "feature")


@requires_git
@pytest.mark.anyio
async def test_cherry_pick_end_to_end(git_repo: pathlib.Path) -> None:
    main_tip, old_tip = _diverge(git_repo)
    ops = GitOperations(git_repo)

    handle = await start_cherry_pick_session(
        ops, "feature", "main", clock=lambda: 99, scratch_name="temp-rebase-e2e"
    )
    report = await run_until_pause(handle)

    outcome = report.outcome
    assert outcome is not None and outcome.succeeded, outcome
    assert len(outcome.applied) == 2
    assert git(git_repo, "rev-parse", "feature~2") == main_tip
    assert git(git_repo, "log", "--format=%s", "-2", "feature").splitlines() == [
        "Feature two",
        "Feature one",
    ]
    assert await ops.current_branch() == "feature"
    assert not await ops.ref_exists(RefKind.LOCAL, "temp-rebase-e2e")
    assert outcome.backup_ref == "agrb-backup-feature-99"
    assert git(git_repo, "rev-parse", "agrb-backup-feature-99^{commit}") == old_tip


@requires_git
@pytest.mark.anyio
async def test_cherry_pick_conflict_cancel_restores_branch(git_repo: pathlib.Path) -> None:
    old_tip = commit_file(git_repo, "base.txt", "feature side\n", "Feature edit")
    git(git_repo, "checkout", "-q", "main")
    commit_file(git_repo, "base.txt", "main side\n", "Main edit")
    git(git_repo, "checkout", "-q", "feature")
    ops = GitOperations(git_repo)

    handle = await start_cherry_pick_session(ops, "feature", "main", scratch_name="temp-rebase-e2e")
    await run_until_pause(handle)
    assert handle.is_paused

    outcome = await cancel(handle)

    assert outcome.kind is OutcomeKind.CANCELLED
    assert git(git_repo, "rev-parse", "feature") == old_tip
    assert await ops.current_branch() == "feature"
    assert not await ops.apply_in_progress()
    assert not await ops.ref_exists(RefKind.LOCAL, "temp-rebase-e2e")


@requires_git
@pytest.mark.anyio
async def test_linear_end_to_end(git_repo: pathlib.Path) -> None:
    main_tip, _ = _diverge(git_repo)
    ops = GitOperations(git_repo)

    handle = await start_linear_session(ops, "feature", "main", SessionConfig(backup=False))
    report = await run_until_pause(handle)

    assert report.outcome is not None and report.outcome.succeeded
    assert git(git_repo, "rev-parse", "feature~2") == main_tip
    assert not await ops.rebase_in_progress()


@requires_git
@pytest.mark.anyio
async def test_linear_conflict_auto_resolved_end_to_end(git_repo: pathlib.Path) -> None:
    # A modify/delete conflict survives -X ours, so the rebase really stops.
    git(git_repo, "rm", "-q", "base.txt")
    git(git_repo, "commit", "-q", "-m", "Drop base")
    git(git_repo, "checkout", "-q", "main")
    main_tip = commit_file(git_repo, "base.txt", "main side\n", "Main edit")
    git(git_repo, "checkout", "-q", "feature")
    ops = GitOperations(git_repo)

    handle = await start_linear_session(
        ops, "feature", "main", SessionConfig(continue_on_conflict=True, backup=False)
    )
    report = await run_until_pause(handle)

    assert report.outcome is not None and report.outcome.succeeded, report.outcome
    assert git(git_repo, "merge-base", "--is-ancestor", main_tip, "feature") == ""
    assert not await ops.rebase_in_progress()
    assert report.outcome.auto_resolved
    assert (git_repo / "base.txt").read_text() == "main side\n"
