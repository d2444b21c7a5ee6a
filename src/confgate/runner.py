"""Query runner and result aggregation for a test run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from confgate.errors import EvaluationError, QueryError
from confgate.results import CheckResult, Result, new_result, result_from_metadata
from confgate.rules import FAILURE_PATTERN, WARNING_PATTERN, select_rules

if TYPE_CHECKING:
    import re

    from confgate.config import RunConfig
    from confgate.context import RunContext
    from confgate.engine import RuleEngine, RuleSet
    from confgate.output import OutputManager
    from confgate.units import EvaluationUnit

logger = logging.getLogger(__name__)


def is_record_sequence(document: Any) -> bool:
    """Return True if *document* is a list made only of mappings.

    An empty list qualifies and fans out to no queries at all.
    """
    return isinstance(document, list) and all(isinstance(item, dict) for item in document)


@dataclass
class _QueryOutcome:
    messages: list[Result] = field(default_factory=list)
    traces: list[str] = field(default_factory=list)
    # True once the engine returned an expression, i.e. the rule is defined.
    defined: bool = False

    def extend(self, other: _QueryOutcome) -> None:
        self.messages.extend(other.messages)
        self.traces.extend(other.traces)
        self.defined = self.defined or other.defined


class QueryRunner:
    """Runs the warning and failure rules of a rule set against units."""

    def __init__(self, engine: RuleEngine, config: RunConfig) -> None:
        self.engine = engine
        self.config = config

    def run(
        self,
        ctx: RunContext,
        namespace: str,
        unit: EvaluationUnit,
        rule_set: RuleSet,
    ) -> CheckResult:
        """Evaluate one unit and return its :class:`CheckResult`.

        Warning rules run first, then failure rules.

        Raises
        ------
        QueryError
            When the engine fails on any query; the run must stop.
        """
        result = CheckResult(filename=unit.label)
        result.warnings = self.run_rules(
            ctx, namespace, unit.document, WARNING_PATTERN, rule_set, result=result
        )
        result.failures = self.run_rules(
            ctx, namespace, unit.document, FAILURE_PATTERN, rule_set, result=result
        )
        return result

    def run_rules(
        self,
        ctx: RunContext,
        namespace: str,
        document: Any,
        pattern: re.Pattern[str],
        rule_set: RuleSet,
        *,
        result: CheckResult | None = None,
    ) -> list[Result]:
        """Evaluate every rule matching *pattern* and concatenate the messages.

        Messages follow rule discovery order, then engine order.  A document
        that is a sequence of records is evaluated record by record.  When
        *result* is given, traces and (in structured mode) successes are
        recorded on it.
        """
        label = result.filename if result is not None else "input"
        messages: list[Result] = []
        for rule in select_rules(rule_set, pattern):
            query = f"data.{namespace}.{rule}"
            try:
                outcome = self._run_query(ctx, query, document, rule_set)
            except EvaluationError as exc:
                raise QueryError(query, label, exc) from exc

            messages.extend(outcome.messages)
            if result is not None:
                result.traces.extend(outcome.traces)
                # A rule missing from the namespace is not a pass.
                if self.config.structured and outcome.defined and not outcome.messages:
                    result.successes.append(new_result(query))
        return messages

    def _run_query(
        self, ctx: RunContext, query: str, document: Any, rule_set: RuleSet
    ) -> _QueryOutcome:
        if not is_record_sequence(document):
            return self._run_single(ctx, query, document, rule_set)

        outcome = _QueryOutcome()
        for record in document:
            outcome.extend(self._run_single(ctx, query, record, rule_set))
        return outcome

    def _run_single(
        self, ctx: RunContext, query: str, document: Any, rule_set: RuleSet
    ) -> _QueryOutcome:
        evaluation = self.engine.evaluate(
            rule_set, query, document, trace=self.config.trace, ctx=ctx
        )
        for line in evaluation.trace:
            logger.debug("trace: %s", line)

        outcome = _QueryOutcome(
            traces=list(evaluation.trace), defined=bool(evaluation.expressions)
        )
        for expression in evaluation.expressions:
            if not isinstance(expression, list):
                continue
            for value in expression:
                message = self._to_result(query, value)
                if message is not None:
                    outcome.messages.append(message)
        return outcome

    def _to_result(self, query: str, value: Any) -> Result | None:
        if isinstance(value, str):
            return new_result(value)
        if isinstance(value, dict):
            if self.config.structured:
                return result_from_metadata(value)
            msg = value.get("msg")
            if isinstance(msg, str):
                return new_result(msg)
        logger.warning("Skipping malformed result from %s: %r", query, value)
        return None


def check_units(
    ctx: RunContext,
    runner: QueryRunner,
    units: list[EvaluationUnit],
    rule_set: RuleSet,
    output: OutputManager,
) -> list[CheckResult]:
    """Evaluate every unit in order and report each result.

    Every unit is evaluated and recorded even after a failing one; the
    output manager is flushed exactly once at the end.
    """
    results: list[CheckResult] = []
    for unit in units:
        result = runner.run(ctx, runner.config.namespace, unit, rule_set)
        results.append(result)
        output.put(unit.label, result)
        logger.debug(
            "%s: %d warning(s), %d failure(s)",
            unit.label,
            len(result.warnings),
            len(result.failures),
        )
    output.flush()
    return results
