"""Shared test fixtures for confgate."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
import yaml

from confgate.config import RunConfig
from confgate.context import RunContext
from confgate.engine import RuleSet, YamlRuleEngine
from confgate.runner import QueryRunner

if TYPE_CHECKING:
    from pathlib import Path


KUBERNETES_POLICY = """\
package: main
rules:
  - name: deny
    for_each: spec.containers
    when:
      all:
        - {path: kind, op: eq, value: Deployment}
        - {path: item.securityContext.runAsNonRoot, op: ne, value: true}
    msg: "Containers must not run as root in Deployment {input.metadata.name}"
  - name: deny_latest
    for_each: spec.containers
    when: {path: item.image, op: matches, value: ":latest$"}
    msg: "Container {item.name} uses the latest tag"
  - name: warn_labels
    when: {path: metadata.labels.app, op: missing}
    msg: "{input.kind} {input.metadata.name} has no app label"
tests:
  - name: test_root_denied
    rule: deny
    input:
      kind: Deployment
      metadata: {name: web}
      spec: {containers: [{name: web, image: "nginx:1.25"}]}
    expect: ["Containers must not run as root in Deployment web"]
  - name: test_non_root_allowed
    rule: deny
    input:
      kind: Deployment
      metadata: {name: web}
      spec:
        containers: [{name: web, image: "nginx:1.25", securityContext: {runAsNonRoot: true}}]
    expect_count: 0
"""

ROOT_DEPLOYMENT = """\
kind: Deployment
metadata:
  name: hello
spec:
  containers:
    - name: app
      image: "hello:latest"
"""

CLEAN_DEPLOYMENT = """\
kind: Deployment
metadata:
  name: clean
  labels:
    app: clean
spec:
  containers:
    - name: app
      image: "clean:1.0"
      securityContext:
        runAsNonRoot: true
"""


@pytest.fixture()
def engine() -> YamlRuleEngine:
    return YamlRuleEngine()


@pytest.fixture()
def rule_set(engine: YamlRuleEngine) -> RuleSet:
    """The Kubernetes sample policy, compiled."""
    return engine.compile({"policy/k8s.yml": KUBERNETES_POLICY})


@pytest.fixture()
def root_deployment() -> dict[str, Any]:
    """A Deployment with one warning and two failures."""
    return yaml.safe_load(ROOT_DEPLOYMENT)


@pytest.fixture()
def clean_deployment() -> dict[str, Any]:
    return yaml.safe_load(CLEAN_DEPLOYMENT)


@pytest.fixture()
def ctx() -> RunContext:
    return RunContext()


@pytest.fixture()
def runner(engine: YamlRuleEngine) -> QueryRunner:
    return QueryRunner(engine, RunConfig())


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    """Create a project with a policy directory and two deployment files."""
    policy_dir = tmp_path / "policy"
    policy_dir.mkdir()
    (policy_dir / "k8s.yml").write_text(KUBERNETES_POLICY)
    (tmp_path / "root.yaml").write_text(ROOT_DEPLOYMENT)
    (tmp_path / "clean.yaml").write_text(CLEAN_DEPLOYMENT)
    return tmp_path
