"""One-way progress channel from the engine to whatever displays it."""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from agrb.services.branch_names import sanitize_message

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    """Receives human-readable status lines.  Must not raise."""

    def emit(self, message: str) -> None: ...


class CallbackProgressSink:
    """Forward sanitized messages to a plain callable (e.g. ``typer.echo``)."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        self._callback = callback

    def emit(self, message: str) -> None:
        self._callback(sanitize_message(message))


class RecordingProgressSink:
    """Keep every message; used by tests and by callers that render later."""

    def __init__(self) -> None:
        self.messages: list[str] = []

    def emit(self, message: str) -> None:
        self.messages.append(sanitize_message(message))

    @property
    def last(self) -> str | None:
        return self.messages[-1] if self.messages else None


class LoggingProgressSink:
    """Default sink: progress goes to the ``agrb.services.progress`` logger."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def emit(self, message: str) -> None:
        logger.log(self._level, "%s", sanitize_message(message))
