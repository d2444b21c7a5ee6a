"""Run configuration: defaults, optional ``confgate.yml`` file, CLI overrides."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING, Any

import yaml

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "confgate.yml"
DEFAULT_NAMESPACE = "main"
DEFAULT_POLICY_DIR = "policy"


@dataclass(frozen=True)
class RunConfig:
    """Settings for one test run.

    Passed explicitly to the unit builder, the query runner and the exit
    status resolver.
    """

    policy: tuple[str, ...] = (DEFAULT_POLICY_DIR,)
    namespace: str = DEFAULT_NAMESPACE
    combine: bool = False
    fail_on_warn: bool = False
    trace: bool = False
    structured: bool = False
    input_type: str | None = None
    output: str = "stdout"
    color: bool = True

    def with_overrides(self, **overrides: Any) -> RunConfig:
        """Return a copy with every non-``None`` override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if isinstance(changes.get("policy"), (list, str)):
            changes["policy"] = _as_policy_tuple(changes["policy"])
        return replace(self, **changes)


def _as_policy_tuple(raw: object) -> tuple[str, ...]:
    if isinstance(raw, str):
        return (raw,)
    if isinstance(raw, (list, tuple)):
        return tuple(str(p) for p in raw)
    msg = f"'policy' must be a string or list of strings, got {type(raw).__name__}"
    raise ValueError(msg)


def load_config(project_root: Path) -> RunConfig:
    """Load defaults from ``confgate.yml`` in *project_root*.

    Falls back to built-in defaults for a missing file, an unreadable file,
    or unknown keys.
    """
    config_path = project_root / CONFIG_FILENAME
    if not config_path.is_file():
        return RunConfig()

    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        logger.warning("Failed to read %s, using defaults", CONFIG_FILENAME)
        return RunConfig()

    if not isinstance(data, dict):
        return RunConfig()

    known = {f.name for f in fields(RunConfig)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        if name not in known:
            logger.warning("Ignoring unknown key '%s' in %s", key, CONFIG_FILENAME)
            continue
        kwargs[name] = value

    if "policy" in kwargs:
        try:
            kwargs["policy"] = _as_policy_tuple(kwargs["policy"])
        except ValueError as exc:
            logger.warning("%s: %s, using default policy path", CONFIG_FILENAME, exc)
            del kwargs["policy"]

    return RunConfig(**kwargs)
