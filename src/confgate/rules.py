"""Rule selection: classify rule names and enumerate the ones a run queries."""

from __future__ import annotations

import enum
import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from confgate.engine import RuleSet

logger = logging.getLogger(__name__)

FAILURE_PATTERN = re.compile(r"^(deny|violation)(_[a-zA-Z]+)*$")
WARNING_PATTERN = re.compile(r"^warn(_[a-zA-Z]+)*$")


class RuleClass(enum.Enum):
    WARNING = "warning"
    FAILURE = "failure"
    NONE = "none"


def classify(name: str) -> RuleClass:
    """Classify a rule name by the naming convention."""
    if FAILURE_PATTERN.match(name):
        return RuleClass.FAILURE
    if WARNING_PATTERN.match(name):
        return RuleClass.WARNING
    return RuleClass.NONE


def select_rules(rule_set: RuleSet, pattern: re.Pattern[str]) -> list[str]:
    """Return the distinct rule names matching *pattern*, first-seen order.

    The same name may be defined in several modules; it is queried and
    reported once.
    """
    rules: list[str] = []
    seen: set[str] = set()
    for module in rule_set.modules:
        for rule in module.rules:
            if rule.name in seen or not pattern.match(rule.name):
                continue
            seen.add(rule.name)
            rules.append(rule.name)

    logger.debug("Selected %d rule(s) for pattern %s: %s", len(rules), pattern.pattern, rules)
    return rules
