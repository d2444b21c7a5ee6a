"""Exception hierarchy shared by every confgate stage."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class ConfgateError(Exception):
    """Base class for errors that abort a run."""


# ---------------------------------------------------------------------------
# Setup errors (raised before any unit is evaluated)
# ---------------------------------------------------------------------------


class NoFilesError(ConfgateError):
    """Raised when no non-blank input file names were given."""

    def __init__(self) -> None:
        super().__init__("no file specified")


class DuplicateFileError(ConfgateError):
    """Raised when the same input file name is given more than once."""

    def __init__(self, filename: str) -> None:
        self.filename = filename
        super().__init__(f"file '{filename}' given more than once")


class PolicyReadError(ConfgateError):
    """Raised when policy sources cannot be located or read."""


class CompileError(ConfgateError):
    """Raised when policy sources fail to compile into a rule set."""


class ParseError(ConfgateError):
    """Raised when an input document cannot be parsed."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(f"{filename}: {reason}")


# ---------------------------------------------------------------------------
# Evaluation errors (abort a run in progress)
# ---------------------------------------------------------------------------


class EvaluationError(ConfgateError):
    """Raised by the rule engine when a query cannot be evaluated."""


class EvaluationCancelled(EvaluationError):
    """Raised when the run context was cancelled mid-evaluation."""

    def __init__(self) -> None:
        super().__init__("evaluation cancelled")


class QueryError(ConfgateError):
    """Wraps an ``EvaluationError`` with the failing query and unit."""

    def __init__(self, query: str, label: str, cause: Exception) -> None:
        self.query = query
        self.label = label
        super().__init__(f"query {query} on {label}: {cause}")


class MetadataError(ConfgateError):
    """Raised when a structured rule result lacks a valid ``msg`` field."""


class OutputError(ConfgateError):
    """Raised when results cannot be rendered."""
