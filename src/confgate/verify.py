"""Policy unit tests: run the ``tests:`` blocks of compiled policy modules."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from confgate.errors import QueryError
from confgate.results import CheckResult, Result, new_result

if TYPE_CHECKING:
    from confgate.context import RunContext
    from confgate.engine import PolicyModule, PolicyTest, RuleSet
    from confgate.runner import QueryRunner

logger = logging.getLogger(__name__)


def _describe(test: PolicyTest, got: list[str]) -> str | None:
    """Return a mismatch description, or None when the test passes."""
    if test.expect_count is not None:
        if len(got) != test.expect_count:
            return f"expected {test.expect_count} result(s), got {len(got)}: {got}"
        return None
    expected = list(test.expect or ())
    if got != expected:
        return f"expected {expected}, got {got}"
    return None


def run_module_tests(
    ctx: RunContext,
    runner: QueryRunner,
    module: PolicyModule,
    rule_set: RuleSet,
) -> CheckResult:
    """Run every test of *module*; one success or failure per test.

    An engine error inside a test is reported as that test's failure unless
    the run was cancelled.
    """
    result = CheckResult(filename=module.path)
    for test in module.tests:
        name = f"{module.package}.{test.name}"
        pattern = re.compile(f"^{re.escape(test.rule)}$")
        try:
            found = runner.run_rules(ctx, module.package, test.input, pattern, rule_set)
        except QueryError as exc:
            if ctx.cancelled:
                raise
            result.failures.append(Result(message=f"{name}: {exc}", metadata={"error": str(exc)}))
            continue

        detail = _describe(test, [r.message for r in found])
        if detail is None:
            result.successes.append(new_result(name))
        else:
            logger.debug("%s failed: %s", name, detail)
            result.failures.append(Result(message=f"{name}: {detail}", metadata={"detail": detail}))
    return result


def run_tests(ctx: RunContext, runner: QueryRunner, rule_set: RuleSet) -> list[CheckResult]:
    """Run the tests of every module that defines any, in module order."""
    return [
        run_module_tests(ctx, runner, module, rule_set)
        for module in rule_set.modules
        if module.tests
    ]
