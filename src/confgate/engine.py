"""Rule engine: compile YAML policy sources and evaluate rule queries.

A policy source is a YAML mapping::

    package: main
    rules:
      - name: deny_latest_tag
        for_each: spec.containers
        when:
          all:
            - {path: kind, op: eq, value: Pod}
            - {path: item.image, op: matches, value: ":latest$"}
        msg: "Container {item.name} uses the latest tag"
        metadata: {id: IMG-001}
    tests:
      - name: test_latest_denied
        rule: deny_latest_tag
        input: {kind: Pod, spec: {containers: [{name: web, image: "nginx:latest"}]}}
        expect: ["Container web uses the latest tag"]

Queries are addressed as ``data.<package>.<rule>``.  Every definition of the
rule in that package contributes its messages; the combined value behaves as
a set with stable first-seen order.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import yaml

from confgate.errors import CompileError, EvaluationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from confgate.context import RunContext

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VALID_OPS: frozenset[str] = frozenset(
    {"eq", "ne", "gt", "gte", "lt", "lte", "in", "contains", "exists", "missing", "matches"}
)
_COMBINATORS: frozenset[str] = frozenset({"all", "any", "not"})

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PACKAGE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_TEMPLATE_RE = re.compile(r"\{((?:input|item)(?:\.[^{}\s]+)?)\}")

_MISSING_TEXT = "<undefined>"

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Compare:
    """Compare the value at *path* against *value* with *op*."""

    path: str
    op: str
    value: Any = None


@dataclass(frozen=True)
class AllOf:
    conditions: tuple[Condition, ...]


@dataclass(frozen=True)
class AnyOf:
    conditions: tuple[Condition, ...]


@dataclass(frozen=True)
class Not:
    condition: Condition


Condition = Compare | AllOf | AnyOf | Not


@dataclass(frozen=True)
class RuleDef:
    """One definition of a named rule."""

    name: str
    msg: str
    when: Condition | None = None
    for_each: str | None = None
    description: str = ""
    metadata: dict[str, Any] | None = None
    location: str = ""


@dataclass(frozen=True)
class PolicyTest:
    """A unit test for a rule, run by ``confgate verify``."""

    name: str
    rule: str
    input: Any = None
    expect: tuple[str, ...] | None = None
    expect_count: int | None = None
    location: str = ""


@dataclass(frozen=True)
class PolicyModule:
    """A compiled policy source file."""

    path: str
    package: str
    rules: tuple[RuleDef, ...] = ()
    tests: tuple[PolicyTest, ...] = ()


@dataclass(frozen=True)
class RuleSet:
    """All compiled policy modules, in discovery order."""

    modules: tuple[PolicyModule, ...] = ()

    def definitions(self, package: str, rule: str) -> list[RuleDef]:
        """Return every definition of *rule* in *package*, in module order."""
        return [
            r for m in self.modules if m.package == package for r in m.rules if r.name == rule
        ]


@dataclass
class Evaluation:
    """Raw engine output for one query.

    ``expressions`` is empty when no definition of the rule exists; otherwise
    it holds a single list of messages (strings or ``msg`` mappings).
    """

    expressions: list[Any] = field(default_factory=list)
    trace: list[str] = field(default_factory=list)


class RuleEngine(Protocol):
    """Contract between the query runner and a rule-evaluation engine."""

    def compile(self, sources: Mapping[str, str]) -> RuleSet: ...

    def evaluate(
        self,
        rule_set: RuleSet,
        query: str,
        document: Any,
        *,
        trace: bool = False,
        ctx: RunContext | None = None,
    ) -> Evaluation: ...


# ---------------------------------------------------------------------------
# YAML parsing
# ---------------------------------------------------------------------------


def _parse_condition(data: object, context: str) -> Condition:
    """Parse a condition tree node, validating operators and shapes."""
    if not isinstance(data, dict):
        msg = f"{context}: condition must be a mapping"
        raise ValueError(msg)

    combinators = data.keys() & _COMBINATORS
    if combinators:
        if len(data) != 1:
            msg = f"{context}: '{sorted(combinators)[0]}' must be the only key of its mapping"
            raise ValueError(msg)
        key = next(iter(combinators))
        inner = data[key]
        if key == "not":
            return Not(condition=_parse_condition(inner, f"{context}.not"))
        if not isinstance(inner, list) or not inner:
            msg = f"{context}: '{key}' must be a non-empty list"
            raise ValueError(msg)
        children = tuple(
            _parse_condition(child, f"{context}.{key}[{idx}]") for idx, child in enumerate(inner)
        )
        return AllOf(conditions=children) if key == "all" else AnyOf(conditions=children)

    path = data.get("path")
    op = data.get("op", "exists")
    if not isinstance(path, str) or not path.strip():
        msg = f"{context}: condition requires a non-empty 'path'"
        raise ValueError(msg)
    if not isinstance(op, str) or op not in VALID_OPS:
        msg = f"{context}: invalid op '{op}', must be one of {sorted(VALID_OPS)}"
        raise ValueError(msg)
    if op == "matches":
        pattern = data.get("value")
        if not isinstance(pattern, str):
            msg = f"{context}: 'matches' requires a string pattern"
            raise ValueError(msg)
        try:
            re.compile(pattern)
        except re.error as exc:
            msg = f"{context}: invalid pattern '{pattern}': {exc}"
            raise ValueError(msg) from exc
    return Compare(path=path.strip(), op=str(op), value=data.get("value"))


def _parse_rule(data: object, context: str) -> RuleDef:
    if not isinstance(data, dict):
        msg = f"{context}: rule must be a mapping"
        raise ValueError(msg)

    name = data.get("name")
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        msg = f"{context}: rule requires an identifier 'name', got {name!r}"
        raise ValueError(msg)
    context = f"{context} ({name})"

    msg_template = data.get("msg")
    if not isinstance(msg_template, str) or not msg_template:
        msg = f"{context}: rule requires a non-empty string 'msg'"
        raise ValueError(msg)

    for_each = data.get("for_each")
    if for_each is not None and (not isinstance(for_each, str) or not for_each.strip()):
        msg = f"{context}: 'for_each' must be a non-empty path string"
        raise ValueError(msg)

    when_raw = data.get("when")
    when = _parse_condition(when_raw, f"{context}.when") if when_raw is not None else None

    metadata = data.get("metadata")
    if metadata is not None:
        if not isinstance(metadata, dict):
            msg = f"{context}: 'metadata' must be a mapping"
            raise ValueError(msg)
        if "msg" in metadata:
            msg = f"{context}: 'metadata' must not define 'msg'"
            raise ValueError(msg)
        metadata = {str(k): v for k, v in metadata.items()}

    return RuleDef(
        name=name,
        msg=msg_template,
        when=when,
        for_each=for_each.strip() if for_each else None,
        description=str(data.get("description", "")),
        metadata=metadata,
        location=context,
    )


def _parse_test(data: object, context: str) -> PolicyTest:
    if not isinstance(data, dict):
        msg = f"{context}: test must be a mapping"
        raise ValueError(msg)

    name = data.get("name")
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        msg = f"{context}: test requires an identifier 'name', got {name!r}"
        raise ValueError(msg)
    context = f"{context} ({name})"

    rule = data.get("rule")
    if not isinstance(rule, str) or not _IDENT_RE.match(rule):
        msg = f"{context}: test requires an identifier 'rule', got {rule!r}"
        raise ValueError(msg)

    expect_raw = data.get("expect")
    count_raw = data.get("expect_count")
    if expect_raw is not None and count_raw is not None:
        msg = f"{context}: use either 'expect' or 'expect_count', not both"
        raise ValueError(msg)

    expect: tuple[str, ...] | None = None
    if expect_raw is not None:
        if not isinstance(expect_raw, list):
            msg = f"{context}: 'expect' must be a list of messages"
            raise ValueError(msg)
        expect = tuple(str(e) for e in expect_raw)

    expect_count: int | None = None
    if count_raw is not None:
        if isinstance(count_raw, bool) or not isinstance(count_raw, int) or count_raw < 0:
            msg = f"{context}: 'expect_count' must be a non-negative integer"
            raise ValueError(msg)
        expect_count = count_raw

    if expect is None and expect_count is None:
        expect = ()

    return PolicyTest(
        name=name,
        rule=rule,
        input=data.get("input", {}),
        expect=expect,
        expect_count=expect_count,
        location=context,
    )


def parse_module(path: str, text: str) -> PolicyModule:
    """Parse a single policy source.

    Raises ``ValueError`` on schema errors.
    """
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        msg = f"{path}: policy source must be a YAML mapping"
        raise ValueError(msg)

    package = data.get("package")
    if not isinstance(package, str) or not _PACKAGE_RE.match(package):
        msg = f"{path}: missing or invalid 'package', got {package!r}"
        raise ValueError(msg)

    rules_raw = data.get("rules", [])
    if rules_raw is None:
        rules_raw = []
    if not isinstance(rules_raw, list):
        msg = f"{path}: 'rules' must be a list"
        raise ValueError(msg)

    tests_raw = data.get("tests", [])
    if tests_raw is None:
        tests_raw = []
    if not isinstance(tests_raw, list):
        msg = f"{path}: 'tests' must be a list"
        raise ValueError(msg)

    rules = tuple(_parse_rule(r, f"{path}: rules[{i}]") for i, r in enumerate(rules_raw))
    tests = tuple(_parse_test(t, f"{path}: tests[{i}]") for i, t in enumerate(tests_raw))

    seen_tests: set[str] = set()
    for test in tests:
        if test.name in seen_tests:
            msg = f"{path}: duplicate test name '{test.name}'"
            raise ValueError(msg)
        seen_tests.add(test.name)

    return PolicyModule(path=path, package=package, rules=rules, tests=tests)


def compile_policies(sources: Mapping[str, str]) -> RuleSet:
    """Compile policy sources (path -> text) into a :class:`RuleSet`.

    Raises
    ------
    CompileError
        When any source is not valid YAML, violates the policy schema, or a
        test refers to a rule its package does not define.
    """
    modules: list[PolicyModule] = []
    for path, text in sources.items():
        try:
            modules.append(parse_module(path, text))
        except yaml.YAMLError as exc:
            msg = f"{path}: invalid YAML: {exc}"
            raise CompileError(msg) from exc
        except ValueError as exc:
            raise CompileError(str(exc)) from exc

    rule_set = RuleSet(modules=tuple(modules))

    for module in rule_set.modules:
        for test in module.tests:
            if not rule_set.definitions(module.package, test.rule):
                msg = (
                    f"{test.location}: rule '{test.rule}' is not defined "
                    f"in package '{module.package}'"
                )
                raise CompileError(msg)

    return rule_set


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def parse_query(query: str) -> tuple[str, str]:
    """Split ``data.<package>.<rule>`` into ``(package, rule)``."""
    parts = query.split(".")
    if len(parts) < 3 or parts[0] != "data" or not all(parts):
        msg = f"invalid query '{query}', expected data.<package>.<rule>"
        raise EvaluationError(msg)
    return ".".join(parts[1:-1]), parts[-1]


def resolve_path(path: str, scope: Mapping[str, Any]) -> Any:
    """Resolve a dotted *path* against the evaluation scope.

    Paths rooted at ``input`` or ``item`` address that binding; any other
    path is resolved against ``input``.  Integer segments index lists.
    Missing values resolve to ``None``.
    """
    segments = path.split(".")
    if segments[0] in scope:
        current = scope[segments[0]]
        segments = segments[1:]
    else:
        current = scope.get("input")

    for seg in segments:
        if isinstance(current, dict):
            current = current.get(seg)
        elif isinstance(current, list):
            try:
                current = current[int(seg)]
            except (ValueError, IndexError):
                return None
        else:
            return None
        if current is None:
            return None
    return current


def _compare(cond: Compare, scope: Mapping[str, Any]) -> bool:
    actual = resolve_path(cond.path, scope)
    op = cond.op

    if op == "exists":
        return actual is not None
    if op == "missing":
        return actual is None
    if op == "eq":
        return bool(actual == cond.value)
    if op == "ne":
        return bool(actual != cond.value)
    if actual is None:
        return False

    try:
        if op == "gt":
            return bool(actual > cond.value)
        if op == "gte":
            return bool(actual >= cond.value)
        if op == "lt":
            return bool(actual < cond.value)
        if op == "lte":
            return bool(actual <= cond.value)
        if op == "in":
            return actual in (cond.value or [])
        if op == "contains":
            return cond.value in actual
        if op == "matches":
            return re.search(str(cond.value), str(actual)) is not None
    except TypeError as exc:
        msg = f"cannot apply '{op}' at path '{cond.path}': {exc}"
        raise EvaluationError(msg) from exc

    msg = f"unknown op '{op}'"
    raise EvaluationError(msg)


def evaluate_condition(cond: Condition, scope: Mapping[str, Any]) -> bool:
    """Evaluate a condition tree against *scope*."""
    if isinstance(cond, Compare):
        return _compare(cond, scope)
    if isinstance(cond, AllOf):
        return all(evaluate_condition(c, scope) for c in cond.conditions)
    if isinstance(cond, AnyOf):
        return any(evaluate_condition(c, scope) for c in cond.conditions)
    return not evaluate_condition(cond.condition, scope)


def _format_value(value: Any) -> str:
    if value is None:
        return _MISSING_TEXT
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def render_message(template: str, scope: Mapping[str, Any]) -> str:
    """Substitute ``{input.x}`` / ``{item.y}`` references in *template*."""
    return _TEMPLATE_RE.sub(lambda m: _format_value(resolve_path(m.group(1), scope)), template)


def _bindings(rule: RuleDef, document: Any) -> list[dict[str, Any]]:
    scope: dict[str, Any] = {"input": document}
    if rule.for_each is None:
        return [scope]

    items = resolve_path(rule.for_each, scope)
    if isinstance(items, dict):
        items = list(items.values())
    if not isinstance(items, list):
        return []
    return [{"input": document, "item": item} for item in items]


def _dedupe_key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


class YamlRuleEngine:
    """Default :class:`RuleEngine` implementation for YAML policy sources."""

    def compile(self, sources: Mapping[str, str]) -> RuleSet:
        return compile_policies(sources)

    def evaluate(
        self,
        rule_set: RuleSet,
        query: str,
        document: Any,
        *,
        trace: bool = False,
        ctx: RunContext | None = None,
    ) -> Evaluation:
        """Evaluate *query* against *document*.

        Raises
        ------
        EvaluationError
            On a malformed query or a comparison between incompatible types.
        EvaluationCancelled
            When *ctx* is cancelled during evaluation.
        """
        package, rule_name = parse_query(query)
        definitions = rule_set.definitions(package, rule_name)
        result = Evaluation()
        if trace:
            result.trace.append(f"Enter {query}")

        if not definitions:
            if trace:
                result.trace.append(f"Exit {query} (undefined)")
            return result

        values: list[Any] = []
        seen: set[str] = set()
        for rule in definitions:
            if ctx is not None:
                ctx.check()
            if trace:
                result.trace.append(f"| Eval {rule.location}")
            for idx, scope in enumerate(_bindings(rule, document)):
                if ctx is not None:
                    ctx.check()
                matched = rule.when is None or evaluate_condition(rule.when, scope)
                if trace:
                    where = f"item[{idx}]" if "item" in scope else "input"
                    result.trace.append(f"| | {where}: {'true' if matched else 'false'}")
                if not matched:
                    continue

                message = render_message(rule.msg, scope)
                value: Any = message
                if rule.metadata is not None:
                    value = {"msg": message, **rule.metadata}
                key = _dedupe_key(value)
                if key in seen:
                    continue
                seen.add(key)
                values.append(value)
                if trace:
                    result.trace.append(f"| | Emit {message!r}")

        if trace:
            result.trace.append(f"Exit {query} ({len(values)} results)")
        result.expressions.append(values)
        return result
