"""Tests for confgate.policy — policy source discovery."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from confgate.errors import PolicyReadError
from confgate.policy import read_files

if TYPE_CHECKING:
    from pathlib import Path


class TestReadFiles:
    def test_directory_is_walked_sorted(self, tmp_path: Path) -> None:
        (tmp_path / "b.yml").write_text("b")
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "a.yaml").write_text("a")
        (tmp_path / "notes.txt").write_text("ignored")
        sources = read_files([tmp_path])
        assert list(sources) == [str(tmp_path / "b.yml"), str(tmp_path / "nested" / "a.yaml")]
        assert sources[str(tmp_path / "b.yml")] == "b"

    def test_explicit_file_any_extension(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.policy"
        path.write_text("x")
        assert read_files([str(path)]) == {str(path): "x"}

    def test_overlapping_paths_read_once(self, tmp_path: Path) -> None:
        (tmp_path / "a.yml").write_text("a")
        sources = read_files([tmp_path, tmp_path / "a.yml"])
        assert list(sources) == [str(tmp_path / "a.yml")]

    def test_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyReadError, match="does not exist"):
            read_files([tmp_path / "nope"])

    def test_empty_directory(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyReadError, match="no policies found"):
            read_files([tmp_path])
