"""Policy discovery: locate and read policy sources."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from confgate.errors import PolicyReadError

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

POLICY_EXTENSIONS: frozenset[str] = frozenset({".yml", ".yaml"})


def _discover(path: Path) -> list[Path]:
    if path.is_file():
        return [path]
    return sorted(
        p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in POLICY_EXTENSIONS
    )


def read_files(paths: Iterable[str | Path]) -> dict[str, str]:
    """Read every policy source under *paths*.

    Directories are searched recursively for ``.yml``/``.yaml`` files in
    sorted order; explicit file paths are taken as given.  Returns an
    ordered mapping of path to source text.

    Raises
    ------
    PolicyReadError
        When a path does not exist, a file cannot be read, or no policy
        source is found at all.
    """
    sources: dict[str, str] = {}
    for raw in paths:
        path = Path(raw)
        if not path.exists():
            msg = f"policy path '{path}' does not exist"
            raise PolicyReadError(msg)

        for file_path in _discover(path):
            key = str(file_path)
            if key in sources:
                continue
            try:
                sources[key] = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                msg = f"cannot read '{file_path}': {exc}"
                raise PolicyReadError(msg) from exc

    if not sources:
        msg = "no policies found"
        raise PolicyReadError(msg)

    logger.debug("Read %d policy source(s)", len(sources))
    return sources
