"""Turn a probability vector into ranked, deduplicated labels.

Ranking runs in two stages. Scores below the confidence threshold are
dropped, then the survivors are sorted and merged so that labels sharing a
name, alias, or category collapse into the most confident one.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from classifyx.ml.labels import Label, LabelTable

logger = logging.getLogger(__name__)

SOURCE_IMAGE = "image"


@dataclass(frozen=True)
class ClassificationResult:
    """A single label assigned to an image.

    ``uncertainty`` runs from 0 (certain) to 100 (no confidence).
    """

    name: str
    uncertainty: int
    categories: tuple[str, ...] = ()
    source: str = SOURCE_IMAGE


@dataclass(frozen=True)
class RankOptions:
    min_confidence: float = 0.05
    max_results: int = 1


@dataclass
class _Group:
    label: Label
    uncertainty: int
    categories: list[str]
    names: set[str] = field(default_factory=set)

    def overlaps(self, label: Label) -> bool:
        if any(label.matches(name) for name in self.names):
            return True
        return not set(self.categories).isdisjoint(label.categories)

    def absorb(self, label: Label, uncertainty: int) -> None:
        self.uncertainty = min(self.uncertainty, uncertainty)
        self.names.add(label.name)
        self.names.update(label.aliases)
        for category in label.categories:
            if category not in self.categories:
                self.categories.append(category)


def uncertainty_from(confidence: float) -> int:
    """Convert a probability in [0, 1] to an uncertainty in [0, 100].

    The percentage is computed in float32, the precision the model emits,
    then rounded half away from zero: 0.125 becomes 87 rather than 88, and
    float32(0.005) becomes 99.
    """
    scaled = np.float32(confidence) * np.float32(100)
    percent = math.floor(float(scaled) + 0.5)
    return min(100, max(0, 100 - percent))


def rank(
    probabilities: Sequence[float],
    labels: LabelTable | None,
    options: RankOptions | None = None,
) -> list[ClassificationResult]:
    """Rank the labels for one probability vector, most confident first."""
    if labels is None:
        return []
    options = options or RankOptions()

    candidates: list[tuple[int, Label]] = []
    for index, label in enumerate(labels):
        if index >= len(probabilities):
            break
        confidence = float(probabilities[index])
        if confidence < options.min_confidence or confidence < label.threshold:
            continue
        candidates.append((uncertainty_from(confidence), label))

    candidates.sort(key=lambda item: (item[0], -item[1].priority, item[1].name))

    groups: list[_Group] = []
    for uncertainty, label in candidates:
        group = next((g for g in groups if g.overlaps(label)), None)
        if group is not None:
            group.absorb(label, uncertainty)
            continue
        if len(groups) >= options.max_results:
            continue
        group = _Group(label=label, uncertainty=uncertainty, categories=[])
        group.absorb(label, uncertainty)
        groups.append(group)

    logger.debug("Ranked %d candidates into %d labels", len(candidates), len(groups))
    return [
        ClassificationResult(
            name=group.label.name,
            uncertainty=group.uncertainty,
            categories=tuple(group.categories),
        )
        for group in groups
    ]
