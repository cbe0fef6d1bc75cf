"""Image classification facade.

Ties together preprocessing, the model session, and label ranking behind
two calls: ``classify_file`` and ``classify_bytes``. The model is loaded
lazily on first use and the outcome is cached; a failed load is not
retried.
"""

from __future__ import annotations

import logging
import threading
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from classifyx.ml.errors import (
    ClassifyError,
    ClassifyXError,
    DecodeError,
    InferenceError,
    LabelLoadError,
    ModelLoadError,
)
from classifyx.ml.labels import LabelTable, load_label_table
from classifyx.ml.model_manager import OnnxModelSession, ensure_model_files
from classifyx.ml.preprocessing import TensorBuilder
from classifyx.ml.ranking import ClassificationResult, RankOptions, rank

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.model_manager import ModelSession

__all__ = ["AdapterState", "ClassificationResult", "ImageClassifier"]

logger = logging.getLogger(__name__)


class AdapterState(StrEnum):
    DISABLED = "disabled"
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ImageClassifier:
    """Classifies images into ranked labels.

    Args:
        model_dir: Directory holding ``model.onnx`` and ``labels.json``.
        session: Inference engine. Tests pass a double here.
        labels: Label table. When given, ``labels.json`` is not read.
        tensor_builder: Decoder producing the model's input tensor.
        options: Ranking threshold and result limit.
        disabled: Skip all work and return no labels.
        require_labels: Treat a missing or malformed label file as fatal.
    """

    def __init__(
        self,
        model_dir: str | Path,
        session: ModelSession,
        *,
        labels: LabelTable | None = None,
        tensor_builder: TensorBuilder | None = None,
        options: RankOptions | None = None,
        disabled: bool = False,
        require_labels: bool = False,
    ) -> None:
        self._model_dir = Path(model_dir)
        self._session = session
        self._labels = labels
        self._labels_injected = labels is not None
        self._tensor_builder = tensor_builder or TensorBuilder()
        self._options = options or RankOptions()
        self._require_labels = require_labels

        self._lock = threading.Lock()
        self._state = AdapterState.DISABLED if disabled else AdapterState.UNINITIALIZED
        self._error: ClassifyXError | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ImageClassifier:
        """Build a classifier wired to the ONNX session described by ``settings``."""
        return cls(
            settings.models_dir,
            OnnxModelSession(settings),
            tensor_builder=TensorBuilder.from_settings(settings),
            options=RankOptions(
                min_confidence=settings.min_confidence,
                max_results=settings.max_results,
            ),
            disabled=settings.disabled,
            require_labels=settings.require_labels,
        )

    # -- Public API ---------------------------------------------------------

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def labels(self) -> LabelTable | None:
        return self._labels

    @property
    def error(self) -> ClassifyXError | None:
        """The cached load error when the classifier is in the FAILED state."""
        return self._error

    def classify_file(self, path: str | Path) -> list[ClassificationResult]:
        """Read an image file and classify its contents.

        Raises:
            ClassifyError: If the file cannot be read or classification fails.
        """
        if self._state is AdapterState.DISABLED:
            return []

        path = Path(path)
        try:
            buffer = path.read_bytes()
        except OSError as err:
            raise ClassifyError(f"classify: {err}") from err

        return self.classify_bytes(buffer, format_hint=path.suffix.lstrip(".") or "jpeg")

    def classify_bytes(self, buffer: bytes, format_hint: str = "jpeg") -> list[ClassificationResult]:
        """Classify an in-memory image.

        Returns an empty list when the classifier is disabled, the buffer is
        empty, or no label clears the confidence threshold.

        Raises:
            ClassifyError: Wrapping a model load, label load, decode, or
                inference failure.
        """
        if self._state is AdapterState.DISABLED:
            return []
        if not buffer:
            logger.debug("Empty image buffer, nothing to classify")
            return []

        self.initialize()
        if self._error is not None:
            raise ClassifyError(f"classify: {self._error}") from self._error

        try:
            tensor = self._tensor_builder.decode(buffer, format_hint)
            probabilities = self._session.infer(tensor)
        except (DecodeError, InferenceError) as err:
            raise ClassifyError(f"classify: {err}") from err

        if self._labels is not None and len(probabilities) != len(self._labels):
            err = InferenceError(f"model produced {len(probabilities)} scores but {len(self._labels)} labels are loaded")
            raise ClassifyError(f"classify: {err}") from err

        return rank(probabilities, self._labels, self._options)

    def initialize(self) -> AdapterState:
        """Load the model and labels once. Safe to call from several threads."""
        if self._state in (AdapterState.READY, AdapterState.FAILED, AdapterState.DISABLED):
            return self._state

        with self._lock:
            # Another thread may have finished loading while we waited.
            if self._state is not AdapterState.UNINITIALIZED:
                return self._state
            self._state = AdapterState.LOADING
            logger.info("Loading classifier from %s", self._model_dir)

            try:
                self._session.initialize(self._model_dir)
                if not self._labels_injected:
                    self._labels = self._load_labels()
            except (ModelLoadError, LabelLoadError) as err:
                logger.error("Classifier failed to load: %s", err)
                self._error = err
                self._state = AdapterState.FAILED
            except Exception as err:
                logger.exception("Unexpected error while loading classifier")
                wrapped = ModelLoadError(f"Could not load model from {self._model_dir}: {err}")
                wrapped.__cause__ = err
                self._error = wrapped
                self._state = AdapterState.FAILED
            else:
                self._state = AdapterState.READY
                logger.info("Classifier ready (%d labels)", len(self._labels) if self._labels else 0)
            return self._state

    # -- Internal -----------------------------------------------------------

    def _load_labels(self) -> LabelTable | None:
        try:
            return load_label_table(self._model_dir)
        except LabelLoadError as err:
            if self._require_labels:
                raise
            logger.warning("Continuing without labels, results will be empty: %s", err)
            return None


def create_classifier(settings: Settings) -> ImageClassifier:
    """Fetch model files if needed and build a classifier from settings."""
    if not settings.disabled:
        try:
            ensure_model_files(settings)
        except ModelLoadError as err:
            # The session reports the missing files on first use.
            logger.error("Model download failed: %s", err)
    return ImageClassifier.from_settings(settings)
