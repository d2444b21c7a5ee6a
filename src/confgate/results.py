"""Result records, failure classification, and exit status resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from confgate.errors import MetadataError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from confgate.config import RunConfig


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Result:
    """A single message produced by one rule against one unit."""

    message: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass
class CheckResult:
    """Outcome of evaluating one subject (a file or the combined group).

    Warnings, failures and successes are independent; a subject can have
    both warnings and failures.
    """

    filename: str = ""
    warnings: list[Result] = field(default_factory=list)
    failures: list[Result] = field(default_factory=list)
    successes: list[Result] = field(default_factory=list)
    traces: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def new_result(message: str) -> Result:
    """Create a plain result carrying only a message."""
    return Result(message=message)


def result_from_metadata(metadata: Mapping[str, Any]) -> Result:
    """Create a result from a structured rule value.

    The mapping must hold a string ``msg``; every other key becomes metadata.

    Raises
    ------
    MetadataError
        When ``msg`` is missing or not a string.
    """
    if "msg" not in metadata:
        msg = f"rule missing msg field: {dict(metadata)}"
        raise MetadataError(msg)
    if not isinstance(metadata["msg"], str):
        msg = f"msg field must be string: {dict(metadata)}"
        raise MetadataError(msg)

    extra = {k: v for k, v in metadata.items() if k != "msg"}
    return Result(message=metadata["msg"], metadata=extra)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def is_failure(result: CheckResult, *, fail_on_warn: bool = False) -> bool:
    """Return True if *result* counts as failed under the given policy."""
    return bool(result.failures) or (fail_on_warn and bool(result.warnings))


def has_failures(results: Iterable[CheckResult]) -> bool:
    return any(r.failures for r in results)


def has_warnings(results: Iterable[CheckResult]) -> bool:
    return any(r.warnings for r in results)


# ---------------------------------------------------------------------------
# Exit status
# ---------------------------------------------------------------------------


def exit_code(results: list[CheckResult]) -> int:
    """Basic policy: 1 if any subject has a failure, otherwise 0."""
    return 1 if any(is_failure(r) for r in results) else 0


def exit_code_fail_on_warn(results: list[CheckResult]) -> int:
    """Warning-sensitive policy: 2 on any failure, 1 on any warning, else 0."""
    if has_failures(results):
        return 2
    if has_warnings(results):
        return 1
    return 0


def resolve_exit_code(results: list[CheckResult], config: RunConfig) -> int:
    """Pick the exit policy from *config* and apply it to *results*."""
    if config.fail_on_warn:
        return exit_code_fail_on_warn(results)
    return exit_code(results)
