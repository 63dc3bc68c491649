"""agrb — rebase the current branch onto a target branch.

Flow
----
1. Locate the repository and load the config files (unless ``--no-config``).
2. Read the current branch; a detached HEAD is refused.
3. No ``--target``: pick one interactively from local branches (or, with
   ``--remote-target``, from the remote's branches), excluding the current
   one.  Typing text filters the list: whitespace-separated terms, all must
   match, case-insensitive.
4. Plan (fetch, resolve the target, list the commits) and print it.
   ``--dry-run`` stops here.
5. Confirm unless ``--yes``.
6. Drive the session, echoing every progress line.  On a conflict pause the
   user resolves and stages in another terminal, then presses Enter to
   resume or types ``abort``.  Ctrl-C cancels at any point.

Each engine call runs in its own ``asyncio.run``; prompts happen between
calls so Ctrl-C always lands as ``KeyboardInterrupt`` in this module.
"""
from __future__ import annotations

import asyncio
import logging
import pathlib
from collections.abc import Iterable
from dataclasses import dataclass

import typer

from agrb.cli._repo import require_repo
from agrb.cli.config import AgrbConfig, load_config
from agrb.cli.errors import ConfigError, ExitCode
from agrb.config import get_settings
from agrb.services.conflict import ConflictStrategy
from agrb.services.errors import RebaseError, describe_error
from agrb.services.git_ops import GitOperations, VersionControl
from agrb.services.progress import CallbackProgressSink
from agrb.services.rebase_engine import (
    RebasePlan,
    RebaseStrategy,
    SessionHandle,
    cancel,
    open_session,
    plan_rebase,
    resume,
    start,
    step,
)
from agrb.services.rebase_session import OutcomeKind, SessionConfig, SessionOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RebaseOptions:
    """Command-line flags merged over the config files."""

    target: str | None = None
    allow_empty: bool = False
    linear: bool = False
    continue_on_conflict: bool = False
    remote_target: bool = False
    on_conflict: ConflictStrategy = ConflictStrategy.PAUSE
    dry_run: bool = False
    yes: bool = False
    autostash: bool = False
    push_with_lease: bool = False
    no_backup: bool = False

    @property
    def strategy(self) -> RebaseStrategy:
        return RebaseStrategy.LINEAR if self.linear else RebaseStrategy.CHERRY_PICK

    def session_config(self) -> SessionConfig:
        # The plan step has already fetched.
        return SessionConfig(
            allow_empty=self.allow_empty,
            on_conflict=self.on_conflict,
            continue_on_conflict=self.continue_on_conflict,
            autostash=self.autostash,
            backup=not self.no_backup,
            push_with_lease=self.push_with_lease,
            fetch=False,
        )


def merge_options(
    config: AgrbConfig,
    *,
    target: str | None = None,
    allow_empty: bool = False,
    linear: bool = False,
    continue_on_conflict: bool = False,
    remote_target: bool = False,
    on_conflict: ConflictStrategy | None = None,
    dry_run: bool = False,
    yes: bool = False,
    autostash: bool = False,
    push_with_lease: bool = False,
    no_backup: bool = False,
) -> RebaseOptions:
    """Flags can only switch options on; an absent flag falls back to *config*."""
    return RebaseOptions(
        target=target,
        allow_empty=allow_empty or config.allow_empty,
        linear=linear or config.linear,
        continue_on_conflict=continue_on_conflict or config.continue_on_conflict,
        remote_target=remote_target or config.remote_target,
        on_conflict=on_conflict or ConflictStrategy(config.on_conflict),
        dry_run=dry_run or config.dry_run,
        yes=yes or config.yes,
        autostash=autostash or config.autostash,
        push_with_lease=push_with_lease or config.push_with_lease,
        no_backup=no_backup or config.no_backup,
    )


# ---------------------------------------------------------------------------
# Target selection
# ---------------------------------------------------------------------------


def filter_branches(branches: Iterable[str], query: str) -> list[str]:
    """Keep branches containing every whitespace-separated term of *query*."""
    terms = [term.lower() for term in query.split()]
    return [name for name in branches if all(term in name.lower() for term in terms)]


async def _candidate_branches(vcs: VersionControl, current: str, remote: bool) -> list[str]:
    if remote:
        await vcs.fetch_remote()
        branches = await vcs.list_remote_branches()
    else:
        branches = await vcs.list_local_branches()
    return sorted(name for name in set(branches) if name != current)


def _select_target_branch(branches: list[str]) -> str:
    """Prompt until the user picks a branch by number or exact name."""
    query = ""
    while True:
        candidates = filter_branches(branches, query)
        if not candidates:
            typer.echo(f"⚠️ No branches match '{query}'.")
            query = ""
            continue
        typer.echo("Select a target branch:")
        for index, name in enumerate(candidates, start=1):
            typer.echo(f"  {index}. {name}")
        answer = typer.prompt("Number, name, or filter terms", default="", show_default=False)
        answer = answer.strip()
        if answer.isdigit() and 1 <= int(answer) <= len(candidates):
            return candidates[int(answer) - 1]
        if answer in candidates:
            return answer
        if not answer and len(candidates) == 1:
            return candidates[0]
        query = answer


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _echo_plan(plan: RebasePlan, strategy: RebaseStrategy) -> None:
    typer.echo(
        f"Rebase plan: {plan.current.name} onto {plan.target.ref} ({strategy.value})"
    )
    typer.echo(f"Merge base: {plan.base[:7]}")
    if plan.is_empty:
        typer.echo("No commits to apply.")
        return
    typer.echo(f"{len(plan)} commit(s) to apply:")
    for commit in plan.commits:
        typer.echo(f"  {commit.short_sha} {commit.subject}")


def _echo_outcome(outcome: SessionOutcome, current: str, target: str) -> None:
    for warning in outcome.warnings:
        typer.echo(f"⚠️ {warning}")
    if outcome.kind is OutcomeKind.SUCCESS:
        if outcome.backup_ref:
            typer.echo(f"Backup tag: {outcome.backup_ref}")
        if outcome.skipped:
            typer.echo(f"Skipped {len(outcome.skipped)} commit(s).")
        typer.echo(f"✅ Rebased {current} onto {target}.")
    elif outcome.kind is OutcomeKind.CANCELLED:
        typer.echo("⚠️ Rebase cancelled; your branch was not changed.")
    else:
        typer.echo(f"❌ Rebase failed: {outcome.reason}")


_EXIT_BY_OUTCOME = {
    OutcomeKind.SUCCESS: ExitCode.SUCCESS,
    OutcomeKind.CANCELLED: ExitCode.CANCELLED,
    OutcomeKind.FAILED: ExitCode.USER_ERROR,
}


# ---------------------------------------------------------------------------
# Session driver
# ---------------------------------------------------------------------------


def _prompt_on_pause() -> bool:
    """Return True to resume, False to abort."""
    typer.echo(
        "Resolve the conflicts and stage them (git add), then press Enter to "
        "continue. Type 'abort' to cancel the rebase."
    )
    answer = typer.prompt("Continue", default="", show_default=False)
    return answer.strip().lower() != "abort"


def drive_session(handle: SessionHandle) -> SessionOutcome:
    """Run *handle* to a terminal outcome, prompting on conflict pauses."""
    try:
        asyncio.run(start(handle))
        while not handle.is_terminal:
            if handle.is_paused:
                if _prompt_on_pause():
                    asyncio.run(resume(handle))
                else:
                    asyncio.run(cancel(handle))
            else:
                asyncio.run(step(handle))
    except (KeyboardInterrupt, typer.Abort):
        typer.echo("")
        typer.echo("⚠️ Interrupted; cancelling...")
        asyncio.run(cancel(handle))

    outcome = handle.outcome
    assert outcome is not None
    return outcome


def run_rebase(
    *,
    target: str | None = None,
    allow_empty: bool = False,
    linear: bool = False,
    continue_on_conflict: bool = False,
    remote_target: bool = False,
    on_conflict: ConflictStrategy | None = None,
    no_config: bool = False,
    dry_run: bool = False,
    yes: bool = False,
    autostash: bool = False,
    push_with_lease: bool = False,
    no_backup: bool = False,
) -> None:
    """Entry point for the root ``agrb`` command."""
    settings = get_settings()
    root: pathlib.Path = require_repo()

    try:
        config = AgrbConfig() if no_config else load_config(root)[0]
    except ConfigError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=exc.exit_code)
    options = merge_options(
        config,
        target=target,
        allow_empty=allow_empty,
        linear=linear,
        continue_on_conflict=continue_on_conflict,
        remote_target=remote_target,
        on_conflict=on_conflict,
        dry_run=dry_run,
        yes=yes,
        autostash=autostash,
        push_with_lease=push_with_lease,
        no_backup=no_backup,
    )

    vcs = GitOperations(root, git_binary=settings.git_binary, remote=settings.remote_name)

    try:
        current = asyncio.run(vcs.current_branch())
        if current == "HEAD":
            typer.echo("❌ HEAD is detached; check out a branch first.")
            raise typer.Exit(code=ExitCode.USER_ERROR)

        target = options.target
        if not target:
            branches = asyncio.run(_candidate_branches(vcs, current, options.remote_target))
            if not branches:
                typer.echo("❌ No other branches to rebase onto.")
                raise typer.Exit(code=ExitCode.USER_ERROR)
            target = _select_target_branch(branches)

        typer.echo("Fetching all branches...")
        plan = asyncio.run(plan_rebase(vcs, current, target, fetch=True))
    except RebaseError as exc:
        typer.echo(f"❌ {describe_error(exc)}")
        logger.error("❌ agrb planning error: %s", exc)
        raise typer.Exit(code=ExitCode.USER_ERROR)
    except (KeyboardInterrupt, typer.Abort):
        typer.echo("")
        typer.echo("⚠️ Cancelled.")
        raise typer.Exit(code=ExitCode.CANCELLED)

    _echo_plan(plan, options.strategy)
    if options.dry_run:
        typer.echo("Dry run: no changes were made.")
        return

    if not options.yes:
        try:
            proceed = typer.confirm("Proceed with rebase?", default=True)
        except typer.Abort:
            proceed = False
        if not proceed:
            typer.echo("⚠️ Cancelled.")
            raise typer.Exit(code=ExitCode.CANCELLED)

    handle = open_session(
        options.strategy,
        vcs,
        current,
        target,
        options.session_config(),
        progress=CallbackProgressSink(typer.echo),
    )
    try:
        outcome = drive_session(handle)
    except RebaseError as exc:
        typer.echo(f"❌ agrb failed: {describe_error(exc)}")
        logger.error("❌ agrb error: %s", exc, exc_info=True)
        raise typer.Exit(code=ExitCode.INTERNAL_ERROR)

    _echo_outcome(outcome, current, target)
    code = _EXIT_BY_OUTCOME[outcome.kind]
    if code is not ExitCode.SUCCESS:
        raise typer.Exit(code=code)
