"""Label table: maps classifier output indices to label metadata.

The table is read from ``labels.json`` inside the model directory. The
file is a JSON object keyed by the decimal output index::

    {"8": {"name": "chicken", "categories": ["bird"], "aliases": ["hen"]}}

Indices must cover ``0..N-1`` without gaps so that the table lines up with
the model's output vector.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, ValidationError

from classifyx.ml.errors import LabelLoadError

logger = logging.getLogger(__name__)

LABELS_FILENAME = "labels.json"

LabelName = Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True, min_length=1)]


class Label(BaseModel):
    """Metadata for a single classifier output."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: LabelName
    categories: tuple[LabelName, ...] = ()
    priority: int = 0
    aliases: frozenset[LabelName] = frozenset()
    threshold: float = Field(default=0.0, ge=0.0, le=1.0)

    def matches(self, name: str) -> bool:
        """Return True if ``name`` is this label's name or one of its aliases."""
        return name == self.name or name in self.aliases


_TABLE_ADAPTER = TypeAdapter(dict[int, Label])


class LabelTable:
    """Immutable, index-addressed collection of labels."""

    def __init__(self, labels: list[Label] | tuple[Label, ...]) -> None:
        self._labels: tuple[Label, ...] = tuple(labels)

    @classmethod
    def from_mapping(cls, mapping: dict[int, Label]) -> LabelTable:
        """Build a table from an index mapping, rejecting gaps in the index domain."""
        expected = set(range(len(mapping)))
        if set(mapping) != expected:
            missing = sorted(expected - set(mapping))
            extra = sorted(set(mapping) - expected)
            raise LabelLoadError(
                f"label indices must cover 0..{len(mapping) - 1} (missing={missing[:5]}, unexpected={extra[:5]})"
            )
        return cls([mapping[i] for i in range(len(mapping))])

    def __len__(self) -> int:
        return len(self._labels)

    def __getitem__(self, index: int) -> Label:
        return self._labels[index]

    def __iter__(self) -> Iterator[Label]:
        return iter(self._labels)


def load_label_table(model_dir: str | Path) -> LabelTable:
    """Read and validate ``labels.json`` from a model directory.

    Raises:
        LabelLoadError: If the file is missing, unreadable, or malformed.
    """
    path = Path(model_dir) / LABELS_FILENAME
    try:
        raw = path.read_bytes()
    except OSError as err:
        raise LabelLoadError(f"Could not read label file {path}: {err}") from err

    try:
        mapping = _TABLE_ADAPTER.validate_json(raw)
    except ValidationError as err:
        raise LabelLoadError(f"Invalid label file {path}: {err.error_count()} error(s)\n{err}") from err

    if not mapping:
        raise LabelLoadError(f"Label file {path} defines no labels")

    table = LabelTable.from_mapping(mapping)
    logger.info("Loaded %d labels from %s", len(table), path)
    return table
