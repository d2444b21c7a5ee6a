"""Evaluation unit builder: shape parsed documents into test subjects."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from confgate.errors import DuplicateFileError, NoFilesError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

COMBINED_LABEL = "Combined"


@dataclass(frozen=True)
class EvaluationUnit:
    """A (label, document) pair submitted to the engine as one subject."""

    label: str
    document: Any


def filter_files(names: Iterable[str]) -> list[str]:
    """Drop blank file names.

    Raises ``NoFilesError`` when nothing is left and ``DuplicateFileError``
    when a name repeats, since every file must yield exactly one unit.
    """
    files = [n for n in names if n and n.strip()]
    if not files:
        raise NoFilesError
    seen: set[str] = set()
    for name in files:
        if name in seen:
            raise DuplicateFileError(name)
        seen.add(name)
    return files


def build_units(configurations: Mapping[str, Any], *, combine: bool) -> list[EvaluationUnit]:
    """Build the evaluation units for a run.

    Without *combine* every file becomes its own unit, in the given order.
    With *combine* a single ``"Combined"`` unit holds a mapping of file
    label to a copy of that file's document.  Sequences are not split here;
    the query runner fans out over lists of records.
    """
    if combine:
        combined = {label: copy.deepcopy(doc) for label, doc in configurations.items()}
        logger.debug("Combined %d document(s) into one unit", len(combined))
        return [EvaluationUnit(label=COMBINED_LABEL, document=combined)]

    return [EvaluationUnit(label=label, document=doc) for label, doc in configurations.items()]
