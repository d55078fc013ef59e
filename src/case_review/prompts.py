"""User interaction capabilities injected into the workflow.

The workflow never talks to a terminal or a dialog library directly; it
asks these collaborators. Console implementations back the command line
front end, and tests pass scripted ones.
"""

from __future__ import annotations

import sys
from typing import Protocol, TextIO


class Confirmer(Protocol):
    def confirm(self, prompt: str) -> bool:
        """Return True if the user accepted."""
        ...


class JustificationCollector(Protocol):
    def collect_justification(self, prompt: str) -> str | None:
        """Return the entered text, or None if the user cancelled."""
        ...


class Notifier(Protocol):
    def success(self, title: str, message: str) -> None: ...

    def warning(self, title: str, message: str) -> None: ...

    def error(self, title: str, message: str) -> None: ...


class ConsolePrompter:
    """Confirmation and justification prompts on a text stream."""

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._in = stdin or sys.stdin
        self._out = stdout or sys.stdout

    def _ask(self, prompt: str) -> str | None:
        self._out.write(prompt)
        self._out.flush()
        line = self._in.readline()
        if not line:
            return None
        return line.rstrip("\n")

    def confirm(self, prompt: str) -> bool:
        answer = self._ask(f"{prompt} [y/N] ")
        return (answer or "").strip().lower() in ("y", "yes", "s", "si")

    def collect_justification(self, prompt: str) -> str | None:
        return self._ask(f"{prompt}\n> ")


class AssumeYes:
    """Confirmer that accepts everything (``--yes``)."""

    def confirm(self, prompt: str) -> bool:
        return True


class ConsoleNotifier:
    """Prints notifications to stderr, one line each."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stderr

    def _emit(self, level: str, title: str, message: str) -> None:
        self._stream.write(f"[{level}] {title}: {message}\n")
        self._stream.flush()

    def success(self, title: str, message: str) -> None:
        self._emit("ok", title, message)

    def warning(self, title: str, message: str) -> None:
        self._emit("warning", title, message)

    def error(self, title: str, message: str) -> None:
        self._emit("error", title, message)
