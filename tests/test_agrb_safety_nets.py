"""Tests for backup tags, the autostash coordinator, branch ref resolution and progress sinks."""
from __future__ import annotations

import pytest

from agrb.services.backup import BackupRefManager, backup_tag_name
from agrb.services.branch_refs import BranchRef, BranchRefResolver, local_branch_ref
from agrb.services.errors import (
    BackupError,
    CleanupError,
    StashError,
    ToolInvocationError,
    ValidationError,
    describe_error,
)
from agrb.services.git_ops import RefKind
from agrb.services.progress import CallbackProgressSink, RecordingProgressSink
from agrb.services.stash import StashCoordinator, StashHandle
from tests.fake_git import FakeGit


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


def test_backup_tag_name_replaces_slashes() -> None:
    assert backup_tag_name("feature/login", 123) == "agrb-backup-feature-login-123"


@pytest.mark.anyio
async def test_backup_tags_branch_tip(fake_git: FakeGit) -> None:
    manager = BackupRefManager(fake_git, clock=lambda: 7)
    tag = await manager.create_backup(BranchRef("feature"))
    assert tag == "agrb-backup-feature-7"
    assert fake_git.tags[tag] == ("f-tip", "Backup before agrb reset: feature @ f-tip")


@pytest.mark.anyio
async def test_backup_never_overwrites(fake_git: FakeGit) -> None:
    fake_git.tags["agrb-backup-feature-7"] = ("old", "old")
    manager = BackupRefManager(fake_git, clock=lambda: 7)
    with pytest.raises(BackupError):
        await manager.create_backup(BranchRef("feature"))
    assert fake_git.called("create_annotated_ref") == []


@pytest.mark.anyio
async def test_backup_wraps_git_failure(fake_git: FakeGit) -> None:
    fake_git.fail("create_annotated_ref")
    manager = BackupRefManager(fake_git, clock=lambda: 7)
    with pytest.raises(BackupError) as excinfo:
        await manager.create_backup(BranchRef("feature"))
    assert isinstance(excinfo.value.__cause__, ToolInvocationError)
    assert describe_error(excinfo.value).startswith("Failed to create backup tag: git ")


# ---------------------------------------------------------------------------
# Stash
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_stash_round_trip(fake_git: FakeGit) -> None:
    fake_git.dirty = True
    stasher = StashCoordinator(fake_git, label="agrb-1")

    handle = await stasher.shelve()
    assert handle == StashHandle(ref="stash@{0}", label="agrb-1")
    assert not fake_git.dirty

    await stasher.restore(handle)
    assert fake_git.dirty
    assert fake_git.stashes == []


@pytest.mark.anyio
async def test_shelve_failure_is_stash_error(fake_git: FakeGit) -> None:
    fake_git.fail("shelve_changes")
    with pytest.raises(StashError):
        await StashCoordinator(fake_git).shelve()


@pytest.mark.anyio
async def test_restore_failure_is_cleanup_error(fake_git: FakeGit) -> None:
    fake_git.fail("restore_shelved")
    stasher = StashCoordinator(fake_git, label="agrb-1")
    with pytest.raises(CleanupError) as excinfo:
        await stasher.restore(StashHandle("stash@{0}", "agrb-1"))
    assert "git stash list" in str(excinfo.value)


def test_default_stash_label_uses_pid() -> None:
    import os

    from agrb.services.stash import default_stash_label

    assert default_stash_label() == f"agrb-{os.getpid()}"


# ---------------------------------------------------------------------------
# Branch refs
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_resolver_prefers_remote_tracking_ref(fake_git: FakeGit) -> None:
    resolver = BranchRefResolver(fake_git)
    ref = await resolver.resolve("main")
    assert ref == BranchRef("main", is_remote=True)
    assert ref.ref == "origin/main"
    assert str(ref) == "origin/main"


@pytest.mark.anyio
async def test_resolver_accepts_remote_prefix_and_memoizes(fake_git: FakeGit) -> None:
    resolver = BranchRefResolver(fake_git)
    first = await resolver.resolve("origin/main")
    second = await resolver.resolve("main")
    assert first is second
    assert len(fake_git.called("ref_exists")) == 1

    resolver.forget()
    await resolver.resolve("main")
    assert len(fake_git.called("ref_exists")) == 2


@pytest.mark.anyio
async def test_resolver_falls_back_to_local(fake_git: FakeGit) -> None:
    fake_git.local["develop"] = "d"
    resolver = BranchRefResolver(fake_git)
    ref = await resolver.resolve("develop")
    assert not ref.is_remote
    assert await resolver.exists("develop")
    assert not await resolver.exists("ghost")


@pytest.mark.anyio
async def test_resolver_rejects_invalid_names_without_probing(fake_git: FakeGit) -> None:
    with pytest.raises(ValidationError):
        await BranchRefResolver(fake_git).resolve("a//b")
    assert fake_git.calls == []


def test_local_branch_ref_validates() -> None:
    assert local_branch_ref("feature").ref == "feature"
    with pytest.raises(ValidationError):
        local_branch_ref("bad..name")


def test_ref_kind_values() -> None:
    assert {k.value for k in RefKind} == {"local", "remote", "tag"}


# ---------------------------------------------------------------------------
# Progress and error rendering
# ---------------------------------------------------------------------------


def test_recording_sink_sanitizes() -> None:
    sink = RecordingProgressSink()
    assert sink.last is None
    sink.emit("Applying\x1b commit")
    assert sink.messages == ["Applying commit"]


def test_callback_sink_forwards() -> None:
    seen: list[str] = []
    CallbackProgressSink(seen.append).emit("hello\x00")
    assert seen == ["hello"]


def test_describe_error_joins_cause_chain() -> None:
    try:
        try:
            raise ToolInvocationError(["tag", "x"], 128, "fatal: tag exists")
        except ToolInvocationError as inner:
            raise BackupError("Failed to create backup tag") from inner
    except BackupError as outer:
        text = describe_error(outer)
    assert text == "Failed to create backup tag: git tag x failed: fatal: tag exists"
