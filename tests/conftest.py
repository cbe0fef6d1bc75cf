"""Shared fixtures: a small synthetic label table, a fake session, and image bytes."""

from __future__ import annotations

import io
import threading
import time
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from classifyx.ml.labels import Label, LabelTable

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import NDArray

# Zip container header, as found at the start of .docx files.
DOCX_BYTES = b"PK\x03\x04\x14\x00\x06\x00\x08\x00\x00\x00!\x00" + b"word/document.xml" * 8

LABELS: list[Label] = [
    Label(name="hen", aliases=frozenset({"chicken"})),
    Label(name="goldfish", categories=("fish",)),
    Label(name="puppy", categories=("dog",), aliases=frozenset({"pup"})),
    Label(name="dog", categories=("dog",), priority=1),
    Label(name="chameleon", categories=("reptile",)),
    Label(name="iguana", categories=("reptile",), threshold=0.5),
    Label(name="cat", categories=("cat",)),
    Label(name="car"),
    Label(name="chicken", categories=("bird",)),
    Label(name="ostrich", categories=("bird", "flightless")),
]


def make_vector(size: int = len(LABELS), **scores: float) -> NDArray[np.float32]:
    """Build a probability vector, e.g. ``make_vector(chicken=0.7)``."""
    vector = np.zeros(size, dtype=np.float32)
    names = [label.name for label in LABELS]
    for name, score in scores.items():
        vector[names.index(name)] = score
    return vector


def image_bytes(
    size: tuple[int, int] = (64, 48),
    color: int | tuple[int, ...] = (200, 30, 30),
    fmt: str = "JPEG",
    mode: str = "RGB",
) -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


class FakeSession:
    """Stands in for the ONNX session, returning a canned vector."""

    def __init__(
        self,
        vector: NDArray[np.float32] | None = None,
        load_error: Exception | None = None,
        infer_error: Exception | None = None,
        load_delay: float = 0.0,
    ) -> None:
        self.vector = make_vector() if vector is None else vector
        self.load_error = load_error
        self.infer_error = infer_error
        self.load_delay = load_delay
        self.initialize_calls: list[Path] = []
        self.tensors: list[NDArray[np.float32]] = []
        self._calls_lock = threading.Lock()

    def initialize(self, model_dir: Path) -> None:
        with self._calls_lock:
            self.initialize_calls.append(model_dir)
        if self.load_delay:
            time.sleep(self.load_delay)
        if self.load_error is not None:
            raise self.load_error

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        self.tensors.append(tensor)
        if self.infer_error is not None:
            raise self.infer_error
        return self.vector


@pytest.fixture()
def label_table() -> LabelTable:
    return LabelTable(LABELS)


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return image_bytes()
