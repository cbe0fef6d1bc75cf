"""Tests for label table loading."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from classifyx.ml.errors import LabelLoadError
from classifyx.ml.labels import Label, LabelTable, load_label_table

if TYPE_CHECKING:
    from pathlib import Path


def _write_labels(directory: Path, content: object) -> None:
    text = content if isinstance(content, str) else json.dumps(content)
    (directory / "labels.json").write_text(text, encoding="utf-8")


class TestLabel:
    def test_names_are_normalized(self) -> None:
        label = Label(name="  Chicken ", categories=("Bird",), aliases=frozenset({"HEN"}))
        assert label.name == "chicken"
        assert label.categories == ("bird",)
        assert label.aliases == frozenset({"hen"})

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Label(name="  ")

    def test_frozen(self) -> None:
        label = Label(name="cat")
        with pytest.raises(ValidationError):
            label.name = "dog"  # type: ignore[misc]

    def test_matches_name_and_alias(self) -> None:
        label = Label(name="chicken", aliases=frozenset({"hen"}))
        assert label.matches("chicken")
        assert label.matches("hen")
        assert not label.matches("duck")


class TestLoadLabelTable:
    def test_loads_valid_file(self, tmp_path: Path) -> None:
        _write_labels(
            tmp_path,
            {
                "0": {"name": "goldfish", "categories": ["fish"]},
                "1": {"name": "Chicken", "categories": ["bird"], "priority": 2, "aliases": ["hen"]},
                "2": {"name": "iguana", "threshold": 0.4},
            },
        )

        table = load_label_table(tmp_path)

        assert len(table) == 3
        assert table[1].name == "chicken"
        assert table[1].priority == 2
        assert table[1].aliases == frozenset({"hen"})
        assert table[2].threshold == pytest.approx(0.4)
        assert [label.name for label in table] == ["goldfish", "chicken", "iguana"]

    def test_keys_need_not_be_ordered(self, tmp_path: Path) -> None:
        _write_labels(tmp_path, {"1": {"name": "b"}, "0": {"name": "a"}})
        table = load_label_table(tmp_path)
        assert [label.name for label in table] == ["a", "b"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(LabelLoadError, match="Could not read label file"):
            load_label_table(tmp_path)

    def test_invalid_json(self, tmp_path: Path) -> None:
        _write_labels(tmp_path, "{not json")
        with pytest.raises(LabelLoadError, match="Invalid label file"):
            load_label_table(tmp_path)

    def test_invalid_record(self, tmp_path: Path) -> None:
        _write_labels(tmp_path, {"0": {"name": "cat", "threshold": 3}})
        with pytest.raises(LabelLoadError, match="Invalid label file"):
            load_label_table(tmp_path)

    def test_unknown_field_rejected(self, tmp_path: Path) -> None:
        _write_labels(tmp_path, {"0": {"name": "cat", "colour": "grey"}})
        with pytest.raises(LabelLoadError):
            load_label_table(tmp_path)

    def test_gap_in_indices(self, tmp_path: Path) -> None:
        _write_labels(tmp_path, {"0": {"name": "a"}, "2": {"name": "c"}})
        with pytest.raises(LabelLoadError, match="missing=\\[1\\]"):
            load_label_table(tmp_path)

    def test_empty_table(self, tmp_path: Path) -> None:
        _write_labels(tmp_path, {})
        with pytest.raises(LabelLoadError, match="defines no labels"):
            load_label_table(tmp_path)

    def test_error_chains_cause(self, tmp_path: Path) -> None:
        with pytest.raises(LabelLoadError) as exc_info:
            load_label_table(tmp_path / "nope")
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)


class TestLabelTable:
    def test_indexing_and_length(self) -> None:
        table = LabelTable([Label(name="a"), Label(name="b")])
        assert len(table) == 2
        assert table[0].name == "a"
        with pytest.raises(IndexError):
            table[2]
