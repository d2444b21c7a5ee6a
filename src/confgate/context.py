"""Cancellation context threaded through every engine call."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from confgate.errors import EvaluationCancelled


@dataclass
class RunContext:
    """Carries the cancellation signal for one run.

    The engine calls :meth:`check` between units of work; once
    :meth:`cancel` has been called, the next check raises
    :class:`EvaluationCancelled` and no partial result is returned.
    """

    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self) -> None:
        """Raise ``EvaluationCancelled`` if the run was cancelled."""
        if self._cancelled.is_set():
            raise EvaluationCancelled
