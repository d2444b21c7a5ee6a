"""Tests for `confgate test` CLI command."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from click.testing import CliRunner

from confgate.cli import main

if TYPE_CHECKING:
    from pathlib import Path

    import pytest

_WARN_ONLY = """\
kind: Deployment
metadata:
  name: quiet
spec:
  containers:
    - name: app
      image: "quiet:1.0"
      securityContext:
        runAsNonRoot: true
"""

_COMBINED_POLICY = """\
package: main
rules:
  - name: deny
    for_each: input
    when: {path: item.metadata.labels.app, op: missing}
    msg: "{item.metadata.name} is unlabeled"
"""


def _invoke(project: Path, monkeypatch: pytest.MonkeyPatch, *args: str, **kwargs: object):
    monkeypatch.chdir(project)
    return CliRunner().invoke(main, ["test", "--no-color", *args], **kwargs)


# ---------------------------------------------------------------------------
# Findings and exit codes
# ---------------------------------------------------------------------------


class TestFindings:
    def test_failures_exit_1(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch, "root.yaml")
        assert result.exit_code == 1, result.output
        assert result.output.splitlines() == [
            "WARN - root.yaml - Deployment hello has no app label",
            "FAIL - root.yaml - Containers must not run as root in Deployment hello",
            "FAIL - root.yaml - Container app uses the latest tag",
        ]

    def test_clean_exit_0(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch, "clean.yaml")
        assert result.exit_code == 0, result.output
        assert result.output == ""

    def test_fail_on_warn_with_failures_exit_2(
        self, project: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        result = _invoke(project, monkeypatch, "--fail-on-warn", "root.yaml", "clean.yaml")
        assert result.exit_code == 2, result.output

    def test_warnings_only(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (project / "quiet.yaml").write_text(_WARN_ONLY)
        assert _invoke(project, monkeypatch, "quiet.yaml").exit_code == 0
        result = _invoke(project, monkeypatch, "--fail-on-warn", "quiet.yaml")
        assert result.exit_code == 1
        assert "WARN - quiet.yaml - Deployment quiet has no app label" in result.output

    def test_all_files_reported(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (project / "again.yaml").write_text((project / "root.yaml").read_text())
        result = _invoke(project, monkeypatch, "root.yaml", "clean.yaml", "again.yaml")
        assert result.exit_code == 1
        lines = result.output.splitlines()
        assert len(lines) == 6
        assert all(" - root.yaml - " in line for line in lines[:3])
        assert all(" - again.yaml - " in line for line in lines[3:])

    def test_stdin(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(
            project, monkeypatch, "-", input=(project / "root.yaml").read_text()
        )
        assert result.exit_code == 1
        assert "FAIL - Container app uses the latest tag" in result.output

    def test_namespace(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch, "--namespace", "other", "root.yaml")
        assert result.exit_code == 0
        assert result.output == ""

    def test_combine(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        combined = project / "combined"
        combined.mkdir()
        (combined / "labels.yml").write_text(_COMBINED_POLICY)
        result = _invoke(
            project, monkeypatch, "--combine", "-p", "combined", "root.yaml", "clean.yaml"
        )
        assert result.exit_code == 1, result.output
        assert result.output.splitlines() == ["FAIL - Combined - hello is unlabeled"]


# ---------------------------------------------------------------------------
# Output formats and configuration
# ---------------------------------------------------------------------------


class TestOutput:
    def test_json(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch, "-o", "json", "root.yaml", "clean.yaml")
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert [d["filename"] for d in data] == ["root.yaml", "clean.yaml"]
        assert data[0]["warnings"] == ["Deployment hello has no app label"]
        assert data[1]["failures"] == []

    def test_tap(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch, "--output", "tap", "root.yaml")
        assert result.output.splitlines()[:2] == [
            "1..3",
            "not ok 1 - root.yaml - Containers must not run as root in Deployment hello",
        ]

    def test_trace(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch, "--trace", "clean.yaml")
        assert result.exit_code == 0
        assert "TRAC - clean.yaml - Enter data.main.deny" in result.output

    def test_structured_successes(
        self, project: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        result = _invoke(project, monkeypatch, "--structured", "clean.yaml")
        assert result.exit_code == 0
        assert "PASS - clean.yaml - data.main.deny_latest" in result.output

    def test_config_file_defaults(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (project / "confgate.yml").write_text("output: json\nfail-on-warn: true\n")
        result = _invoke(project, monkeypatch, "root.yaml")
        assert result.exit_code == 2
        assert json.loads(result.output)[0]["filename"] == "root.yaml"

    def test_flag_overrides_config_file(
        self, project: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (project / "confgate.yml").write_text("fail-on-warn: true\n")
        result = _invoke(project, monkeypatch, "--no-fail-on-warn", "root.yaml")
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Setup errors
# ---------------------------------------------------------------------------


class TestErrors:
    def test_no_files(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch)
        assert result.exit_code == 3
        assert "Error: no file specified" in result.output

    def test_repeated_file(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch, "root.yaml", "root.yaml")
        assert result.exit_code == 3
        assert "Error: file 'root.yaml' given more than once" in result.output

    def test_missing_policy_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "a.yaml").write_text("a: 1\n")
        result = _invoke(tmp_path, monkeypatch, "a.yaml")
        assert result.exit_code == 3
        assert "Error: read policy files:" in result.output

    def test_broken_policy(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (project / "policy" / "broken.yml").write_text("package: main\nrules: nope\n")
        result = _invoke(project, monkeypatch, "root.yaml")
        assert result.exit_code == 3
        assert "Error: build compiler:" in result.output

    def test_missing_input(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = _invoke(project, monkeypatch, "missing.yaml")
        assert result.exit_code == 3
        assert "Error: get configurations: missing.yaml" in result.output

    def test_evaluation_error(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (project / "policy" / "replicas.yml").write_text(
            "package: main\n"
            "rules:\n"
            "  - {name: deny_replicas, msg: x, when: {path: spec.replicas, op: gt, value: 3}}\n"
        )
        (project / "odd.yaml").write_text("spec:\n  replicas: three\n")
        result = _invoke(project, monkeypatch, "odd.yaml")
        assert result.exit_code == 3
        assert "Error: evaluating policy: query data.main.deny_replicas on odd.yaml" in (
            result.output
        )
