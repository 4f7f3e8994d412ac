"""Output rendering for the nexus-compliance CLI.

File: src/nexus_compliance/ui/render.py

Purpose
- Provide a thin plain-text rendering layer for CLI output.
- Keep stdout deterministic so command output can be diffed and tested.

Functional requirements
- All public methods write to the configured stream (stdout by default).
- Rendering never raises for empty inputs.

Non-functional requirements
- No dependencies beyond the standard library.
"""

from __future__ import annotations

import sys
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

_SEVERITY_LABELS = {
    "high": "HIGH",
    "medium": "MED ",
    "low": "LOW ",
    "error": "ERR ",
    "warning": "WARN",
    "info": "INFO",
}


class CLIRenderer:
    """Plain-text CLI output renderer."""

    def __init__(self, *, stream: IO[str] | None = None, verbose: bool = False) -> None:
        self.verbose = verbose
        self._stream = stream

    def heading(self, text: str) -> None:
        self._write(text)

    def kv(self, key: str, value: object) -> None:
        self._write(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._write(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._write(f"\n{title}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._write(f"  {prefix}{entry}")

    def finding(self, severity: str, subject: str, message: str) -> None:
        """Print one severity-tagged finding: ``[HIGH] subject: message``."""

        label = _SEVERITY_LABELS.get(severity, severity.upper())
        self._write(f"  [{label}] {subject}: {message}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            return "  ".join(
                (str(cells[i]) if i < len(cells) else "").ljust(widths[i])
                for i in range(col_count)
            ).rstrip()

        if title:
            self.section(title)
        self._write(f"  {_pad(list(headers))}")
        self._write(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            self._write(f"  {_pad(list(row))}")

    def ok(self, label: str) -> None:
        self._write(f"  OK  {label}")

    def fail(self, label: str) -> None:
        self._write(f"  FAIL  {label}")

    def _write(self, line: str) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(line + "\n")


def create_renderer(*, verbose: bool = False, stream: IO[str] | None = None) -> CLIRenderer:
    return CLIRenderer(stream=stream, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
