"""Branch name validation and display sanitizing.

Names typed by the user (or read from config) are substituted into git
argument lists, so anything that is not a plain ref name is rejected before a
subprocess is ever spawned.
"""
from __future__ import annotations

import re

from agrb.services.errors import ValidationError

_ALLOWED = re.compile(r"^[A-Za-z0-9\-._/]+$")
_NON_PRINTABLE = re.compile(r"[^ -~\n\r\t]")


def is_valid_branch_name(name: str) -> bool:
    """Return ``True`` when *name* is safe to hand to git as a branch name.

    Rejects: empty names, characters outside ``[A-Za-z0-9-._/]``, ``..``,
    leading/trailing/double ``/``, a trailing ``.``, any path component
    starting with ``.`` or ending with ``.lock``, and a leading ``-`` (git
    would parse it as an option).
    """
    if not name:
        return False
    if not _ALLOWED.match(name):
        return False
    if ".." in name:
        return False
    if name.startswith(("/", "-")) or name.endswith("/") or "//" in name:
        return False
    if name.endswith("."):
        return False
    for component in name.split("/"):
        if component.startswith(".") or component.endswith(".lock"):
            return False
    return True


def require_valid_branch_name(name: str) -> str:
    """Return *name* unchanged or raise :class:`ValidationError`."""
    if not is_valid_branch_name(name):
        raise ValidationError(name)
    return name


def strip_remote_prefix(name: str, remote: str = "origin") -> str:
    """Drop a leading ``<remote>/`` so ``origin/main`` and ``main`` name the same branch."""
    prefix = f"{remote}/"
    return name[len(prefix):] if name.startswith(prefix) else name


def sanitize_message(text: str) -> str:
    """Strip non-printable characters from git output before it reaches a terminal."""
    return _NON_PRINTABLE.sub("", text)
