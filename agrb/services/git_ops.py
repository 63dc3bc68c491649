"""git adapter — the only module that spawns git or reads its output.

The engine talks to version control exclusively through the
:class:`VersionControl` protocol.  :class:`GitOperations` is the production
implementation: every method is one (occasionally two) ``git`` invocations
run through :func:`run_git`, awaited to completion before the next starts.

Classification of cherry-pick / rebase output into a structured
:class:`ApplyResult` happens in :func:`classify_apply_output` and nowhere
else.  git is run with ``LC_ALL=C`` so the markers it looks for are stable.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Protocol

from agrb.services.errors import ToolInvocationError

logger = logging.getLogger(__name__)

_EMPTY_MARKERS = ("is now empty", "nothing to commit", "allow-empty")
_CONFLICT_MARKER = "CONFLICT"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class ApplyStatus(str, enum.Enum):
    """Structured outcome of applying (or continuing) a single replay step."""

    APPLIED = "applied"
    EMPTY_NOOP = "empty_noop"
    CONFLICT = "conflict"
    OTHER_ERROR = "other_error"


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of ``cherry-pick`` / ``rebase`` style commands.

    Attributes:
        status: Classified result tag.
        detail: Raw combined git output, kept for error messages.
    """

    status: ApplyStatus
    detail: str = ""


class RefKind(str, enum.Enum):
    """Namespaces probed by :meth:`VersionControl.ref_exists`."""

    LOCAL = "local"
    REMOTE = "remote"
    TAG = "tag"


class ConflictSide(str, enum.Enum):
    """Which side wins when conflicts are resolved automatically."""

    OURS = "ours"
    THEIRS = "theirs"


@dataclass(frozen=True)
class GitCommandResult:
    """Captured result of one git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, the way a terminal would show them."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def classify_apply_output(result: GitCommandResult) -> ApplyResult:
    """Map a cherry-pick / rebase invocation onto an :class:`ApplyStatus`.

    Order matters: git's conflict marker wins over the empty-commit phrases
    (an empty-commit notice mentions "conflict resolution" in lower case only).
    """
    if result.ok:
        return ApplyResult(ApplyStatus.APPLIED, result.output)
    text = result.output
    if _CONFLICT_MARKER in text:
        return ApplyResult(ApplyStatus.CONFLICT, text)
    lowered = text.lower()
    if any(marker in lowered for marker in _EMPTY_MARKERS):
        return ApplyResult(ApplyStatus.EMPTY_NOOP, text)
    return ApplyResult(ApplyStatus.OTHER_ERROR, text)


async def run_git(
    args: list[str],
    *,
    cwd: pathlib.Path,
    git_binary: str = "git",
) -> GitCommandResult:
    """Run ``git <args>`` in *cwd* and capture its output.

    Never raises on a non-zero exit; callers decide what a failure means.
    ``GIT_EDITOR=true`` keeps ``--continue`` from opening an editor and
    ``GIT_TERMINAL_PROMPT=0`` keeps fetch/push from waiting on credentials.
    """
    env = {
        **os.environ,
        "GIT_EDITOR": "true",
        "GIT_TERMINAL_PROMPT": "0",
        "LC_ALL": "C",
    }
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    proc = await asyncio.create_subprocess_exec(
        git_binary,
        *args,
        cwd=str(cwd),
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    result = GitCommandResult(
        args=tuple(args),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if not result.ok:
        logger.debug("⚠️ git %s exited %d: %s", args[0], result.returncode, result.stderr.strip())
    return result


# ---------------------------------------------------------------------------
# Capability interface
# ---------------------------------------------------------------------------


class VersionControl(Protocol):
    """Structural interface for everything the engine asks of version control."""

    remote: str

    async def current_branch(self) -> str: ...
    async def is_working_tree_clean(self) -> bool: ...
    async def fetch_remote(self) -> None: ...
    async def ref_exists(self, kind: RefKind, name: str) -> bool: ...
    async def merge_base(self, a: str, b: str) -> str: ...
    async def commits_between(self, from_ref: str, to_ref: str, *, exclude_merges: bool = True) -> list[str]: ...
    async def commit_subject(self, commit: str) -> str: ...
    async def rev_parse(self, ref: str) -> str: ...
    async def list_local_branches(self) -> list[str]: ...
    async def list_remote_branches(self) -> list[str]: ...
    async def create_branch(self, name: str, start_point: str) -> None: ...
    async def checkout(self, name: str) -> None: ...
    async def apply_commit(self, commit: str, *, allow_empty: bool = False) -> ApplyResult: ...
    async def continue_in_progress_apply(self) -> ApplyResult: ...
    async def skip_in_progress_apply(self) -> None: ...
    async def abort_in_progress_apply(self) -> None: ...
    async def apply_in_progress(self) -> bool: ...
    async def resolve_conflicts(self, side: ConflictSide) -> None: ...
    async def start_rebase(self, onto: str, *, strategy_option: str | None = None) -> ApplyResult: ...
    async def continue_rebase(self) -> ApplyResult: ...
    async def abort_rebase(self) -> None: ...
    async def rebase_in_progress(self) -> bool: ...
    async def reset_hard(self, branch: str, target: str) -> None: ...
    async def create_annotated_ref(self, name: str, message: str, target: str) -> None: ...
    async def delete_branch(self, name: str) -> None: ...
    async def shelve_changes(self, label: str) -> str | None: ...
    async def restore_shelved(self, handle: str) -> None: ...
    async def push_with_lease(self, branch: str) -> None: ...


# ---------------------------------------------------------------------------
# Production implementation
# ---------------------------------------------------------------------------


class GitOperations:
    """:class:`VersionControl` backed by the ``git`` executable.

    Args:
        cwd:        Working tree root.
        git_binary: Executable to run (``AGRB_GIT_BINARY``).
        remote:     Remote whose tracking branches are preferred as targets.
    """

    def __init__(
        self,
        cwd: pathlib.Path,
        *,
        git_binary: str = "git",
        remote: str = "origin",
    ) -> None:
        self.cwd = cwd
        self.git_binary = git_binary
        self.remote = remote

    async def _run(self, *args: str) -> GitCommandResult:
        return await run_git(list(args), cwd=self.cwd, git_binary=self.git_binary)

    async def _check(self, *args: str) -> GitCommandResult:
        result = await self._run(*args)
        if not result.ok:
            raise ToolInvocationError(list(args), result.returncode, result.stderr or result.stdout)
        return result

    # ── Read-only probes ─────────────────────────────────────────────────

    async def current_branch(self) -> str:
        result = await self._check("rev-parse", "--abbrev-ref", "HEAD")
        return result.stdout.strip() or "HEAD"

    async def is_working_tree_clean(self) -> bool:
        result = await self._check("status", "--porcelain")
        return not result.stdout.strip()

    async def fetch_remote(self) -> None:
        await self._check("fetch", "--all")

    async def ref_exists(self, kind: RefKind, name: str) -> bool:
        if kind is RefKind.REMOTE:
            ref = f"refs/remotes/{self.remote}/{name}"
        elif kind is RefKind.TAG:
            ref = f"refs/tags/{name}"
        else:
            ref = f"refs/heads/{name}"
        result = await self._run("show-ref", "--verify", "--quiet", ref)
        return result.ok

    async def merge_base(self, a: str, b: str) -> str:
        result = await self._check("merge-base", a, b)
        return result.stdout.strip()

    async def commits_between(
        self, from_ref: str, to_ref: str, *, exclude_merges: bool = True
    ) -> list[str]:
        args = ["rev-list", "--reverse"]
        if exclude_merges:
            args.append("--no-merges")
        args.append(f"{from_ref}..{to_ref}")
        result = await self._check(*args)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def commit_subject(self, commit: str) -> str:
        result = await self._check("show", "-s", "--format=%s", commit)
        return result.stdout.strip()

    async def rev_parse(self, ref: str) -> str:
        result = await self._check("rev-parse", "--verify", ref)
        return result.stdout.strip()

    async def list_local_branches(self) -> list[str]:
        result = await self._check("for-each-ref", "--format=%(refname:short)", "refs/heads")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def list_remote_branches(self) -> list[str]:
        result = await self._check(
            "for-each-ref", "--format=%(refname)", f"refs/remotes/{self.remote}"
        )
        prefix = f"refs/remotes/{self.remote}/"
        branches: list[str] = []
        for line in result.stdout.splitlines():
            ref = line.strip()
            if not ref.startswith(prefix):
                continue
            name = ref[len(prefix):]
            if name and name != "HEAD":
                branches.append(name)
        return branches

    # ── Branch manipulation ──────────────────────────────────────────────

    async def create_branch(self, name: str, start_point: str) -> None:
        await self._check("branch", name, start_point)

    async def checkout(self, name: str) -> None:
        await self._check("checkout", name)

    async def reset_hard(self, branch: str, target: str) -> None:
        if await self.current_branch() != branch:
            await self.checkout(branch)
        await self._check("reset", "--hard", target)

    async def create_annotated_ref(self, name: str, message: str, target: str) -> None:
        # No -f: an existing tag of this name must never be replaced.
        await self._check("tag", "-a", name, "-m", message, target)

    async def delete_branch(self, name: str) -> None:
        await self._check("branch", "-D", name)

    # ── Cherry-pick primitives ───────────────────────────────────────────

    async def apply_in_progress(self) -> bool:
        result = await self._run("rev-parse", "-q", "--verify", "CHERRY_PICK_HEAD")
        return result.ok

    async def _settle_empty(self, outcome: ApplyResult) -> ApplyResult:
        """Clear the pending cherry-pick git leaves behind for an empty commit."""
        if outcome.status is ApplyStatus.EMPTY_NOOP and await self.apply_in_progress():
            await self.skip_in_progress_apply()
        return outcome

    async def apply_commit(self, commit: str, *, allow_empty: bool = False) -> ApplyResult:
        args = ["cherry-pick"]
        if allow_empty:
            args.append("--allow-empty")
        args.append(commit)
        outcome = classify_apply_output(await self._run(*args))
        return await self._settle_empty(outcome)

    async def continue_in_progress_apply(self) -> ApplyResult:
        outcome = classify_apply_output(await self._run("cherry-pick", "--continue"))
        return await self._settle_empty(outcome)

    async def skip_in_progress_apply(self) -> None:
        await self._check("cherry-pick", "--skip")

    async def abort_in_progress_apply(self) -> None:
        await self._check("cherry-pick", "--abort")

    async def resolve_conflicts(self, side: ConflictSide) -> None:
        await self._check("checkout", f"--{side.value}", ".")
        await self._check("add", ".")

    # ── Native rebase primitives ─────────────────────────────────────────

    async def start_rebase(self, onto: str, *, strategy_option: str | None = None) -> ApplyResult:
        args = ["rebase"]
        if strategy_option:
            args.extend(["-X", strategy_option])
        args.append(onto)
        return classify_apply_output(await self._run(*args))

    async def continue_rebase(self) -> ApplyResult:
        outcome = classify_apply_output(await self._run("rebase", "--continue"))
        if outcome.status is ApplyStatus.EMPTY_NOOP and await self.rebase_in_progress():
            # The resolved step produced no changes; drop it and let the rest replay.
            outcome = classify_apply_output(await self._run("rebase", "--skip"))
        return outcome

    async def abort_rebase(self) -> None:
        await self._check("rebase", "--abort")

    async def rebase_in_progress(self) -> bool:
        for marker in ("rebase-merge", "rebase-apply"):
            result = await self._check("rev-parse", "--git-path", marker)
            path = pathlib.Path(result.stdout.strip())
            if not path.is_absolute():
                path = self.cwd / path
            if path.exists():
                return True
        return False

    # ── Stash and remote ─────────────────────────────────────────────────

    async def shelve_changes(self, label: str) -> str | None:
        await self._check("stash", "push", "-u", "-m", label)
        listing = await self._check("stash", "list", "--format=%gd %gs")
        for line in listing.stdout.splitlines():
            line = line.strip()
            if label in line:
                return line.split(" ", 1)[0] or None
        return None

    async def restore_shelved(self, handle: str) -> None:
        await self._check("stash", "pop", handle)

    async def push_with_lease(self, branch: str) -> None:
        await self._check("push", "-u", self.remote, branch, "--force-with-lease")
