"""Output managers: render check results as text, JSON, TAP, or a table."""

from __future__ import annotations

import json
import sys
import threading
from typing import TYPE_CHECKING, Any, Protocol

import click

from confgate.errors import OutputError
from confgate.parsers import STDIN_LABEL

if TYPE_CHECKING:
    from typing import TextIO

    from confgate.results import CheckResult, Result

OUTPUT_STDOUT = "stdout"
OUTPUT_JSON = "json"
OUTPUT_TAP = "tap"
OUTPUT_TABLE = "table"


def valid_outputs() -> list[str]:
    """Return the available output formats."""
    return [OUTPUT_STDOUT, OUTPUT_JSON, OUTPUT_TAP, OUTPUT_TABLE]


class OutputManager(Protocol):
    """Records results one subject at a time, then flushes once.

    ``put`` is the record step of the record/flush contract: it is called
    once per subject in evaluation order, and ``flush`` once at the end.
    """

    def put(self, filename: str, result: CheckResult) -> None: ...

    def flush(self) -> None: ...


def _indicator(filename: str) -> str:
    if filename == STDIN_LABEL:
        return " - "
    return f" - {filename} - "


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------


class StdOutputManager:
    """Human-readable lines: successes, warnings, failures, then traces.

    Example::

        PASS - deploy.yaml - data.main.deny_privileged
        WARN - deploy.yaml - Deployment has no resource limits
        FAIL - deploy.yaml - Container web must not run as root
    """

    _LABELS: tuple[tuple[str, str, str], ...] = (
        ("successes", "PASS", "green"),
        ("warnings", "WARN", "yellow"),
        ("failures", "FAIL", "red"),
    )

    def __init__(self, *, color: bool = True, stream: TextIO | None = None) -> None:
        self.color = color
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def _label(self, text: str, fg: str) -> str:
        return click.style(text, fg=fg) if self.color else text

    def put(self, filename: str, result: CheckResult) -> None:
        indicator = _indicator(filename)
        with self._lock:
            for attr, text, fg in self._LABELS:
                for r in getattr(result, attr):
                    self._echo(f"{self._label(text, fg)}{indicator}{r}")
            for line in result.traces:
                self._echo(f"{self._label('TRAC', 'blue')}{indicator}{line}")

    def _echo(self, line: str) -> None:
        click.echo(line, file=self.stream, color=self.color)

    def flush(self) -> None:
        return None


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


class JsonOutputManager:
    """Buffers results and prints a single JSON array on flush.

    Every list field is always an array, never ``null``.  In structured mode
    each message is emitted as ``{"msg": ..., "metadata": {...}}``.
    """

    def __init__(self, *, structured: bool = False, stream: TextIO | None = None) -> None:
        self.structured = structured
        self.stream = stream or sys.stdout
        self.data: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def _messages(self, results: list[Result]) -> list[Any]:
        if self.structured:
            return [{"msg": r.message, "metadata": dict(r.metadata)} for r in results]
        return [r.message for r in results]

    def put(self, filename: str, result: CheckResult) -> None:
        record = {
            "filename": "" if filename == STDIN_LABEL else filename,
            "warnings": self._messages(result.warnings),
            "failures": self._messages(result.failures),
            "successes": self._messages(result.successes),
            "traces": list(result.traces),
        }
        with self._lock:
            self.data.append(record)

    def flush(self) -> None:
        try:
            text = json.dumps(self.data, indent="\t")
        except (TypeError, ValueError) as exc:
            msg = f"cannot encode results as JSON: {exc}"
            raise OutputError(msg) from exc
        click.echo(text, file=self.stream)


# ---------------------------------------------------------------------------
# TAP
# ---------------------------------------------------------------------------


class TapOutputManager:
    """Test Anything Protocol output, one plan per subject."""

    def __init__(self, *, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def put(self, filename: str, result: CheckResult) -> None:
        indicator = _indicator(filename)
        failures, warnings, successes = result.failures, result.warnings, result.successes
        issues = len(failures) + len(warnings) + len(successes) + len(result.traces)
        if issues == 0:
            return

        lines = [f"1..{issues}"]
        for i, r in enumerate(failures, start=1):
            lines.append(f"not ok {i}{indicator}{r}")
        if warnings:
            lines.append("# Warnings")
            for i, r in enumerate(warnings, start=len(failures) + 1):
                lines.append(f"not ok {i}{indicator}{r}")
        if successes:
            lines.append("# Successes")
            for i, r in enumerate(successes, start=len(failures) + len(warnings) + 1):
                lines.append(f"ok {i}{indicator}{r}")
        if result.traces:
            lines.append("# Traces")
            for i, line in enumerate(result.traces, start=1):
                lines.append(f"trace {i}{indicator}{line}")

        with self._lock:
            click.echo("\n".join(lines), file=self.stream)

    def flush(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


class TableOutputManager:
    """Collects rows and renders a ``result | file | message`` table on flush."""

    def __init__(self, *, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout
        self.rows: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def put(self, filename: str, result: CheckResult) -> None:
        rows = [("success", filename, "") for _ in result.successes]
        rows += [("warning", filename, r.message) for r in result.warnings]
        rows += [("failure", filename, r.message) for r in result.failures]
        rows += [("trace", filename, line) for line in result.traces]
        with self._lock:
            self.rows.extend(rows)

    def flush(self) -> None:
        if not self.rows:
            return

        from rich.console import Console
        from rich.table import Table
        from rich.text import Text

        table = Table()
        for column in ("result", "file", "message"):
            table.add_column(column)
        for row in self.rows:
            table.add_row(*(Text(cell) for cell in row))

        console = Console(file=self.stream, width=120)
        console.print(table)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def get_output_manager(
    fmt: str,
    *,
    color: bool = True,
    structured: bool = False,
    stream: TextIO | None = None,
) -> OutputManager:
    """Select the output manager for *fmt*; unknown formats fall back to stdout."""
    if fmt == OUTPUT_JSON:
        return JsonOutputManager(structured=structured, stream=stream)
    if fmt == OUTPUT_TAP:
        return TapOutputManager(stream=stream)
    if fmt == OUTPUT_TABLE:
        return TableOutputManager(stream=stream)
    return StdOutputManager(color=color, stream=stream)
