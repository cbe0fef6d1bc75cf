"""Model session: fetch, load, and run the ONNX classifier.

The classifier lives in a model directory holding ``model.onnx`` and
``labels.json``. When a HuggingFace repo is configured, missing files are
downloaded into the directory first.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from classifyx.ml.errors import InferenceError, ModelLoadError, ModelNotFoundError
from classifyx.ml.labels import LABELS_FILENAME

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.config import Settings

logger = logging.getLogger(__name__)

MODEL_FILENAME = "model.onnx"


# ---------------------------------------------------------------------------
# Protocol (kept for test doubles)
# ---------------------------------------------------------------------------


class ModelSession(Protocol):
    """Protocol for the inference engine behind the classifier."""

    def initialize(self, model_dir: str | Path) -> None:
        """Load the model from ``model_dir``; a no-op if already loaded from there."""
        ...

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the model and return the 1-D probability vector."""
        ...


# ---------------------------------------------------------------------------
# Model acquisition
# ---------------------------------------------------------------------------


def ensure_model_files(settings: Settings) -> Path:
    """Make sure the model directory holds the model and label files.

    Files already present are left alone. Missing files are downloaded from
    ``settings.model_repo`` when one is configured; otherwise the directory
    is returned as-is and loading reports what is missing.
    """
    models_dir = Path(settings.models_dir)
    if settings.model_repo is None:
        return models_dir

    models_dir.mkdir(parents=True, exist_ok=True)
    for filename in (MODEL_FILENAME, LABELS_FILENAME):
        if (models_dir / filename).exists():
            continue
        try:
            downloaded = hf_hub_download(
                repo_id=settings.model_repo,
                filename=filename,
                revision=settings.model_revision,
                local_dir=str(models_dir),
            )
        except (HfHubHTTPError, OSError) as err:
            raise ModelLoadError(f"Could not download {filename} from {settings.model_repo}: {err}") from err
        logger.info("Downloaded %s from %s to %s", filename, settings.model_repo, downloaded)
    return models_dir


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelSession:
    """Loads a single ONNX classifier and runs it on input tensors.

    ``initialize`` is serialized by a lock. ``infer`` is not: ONNX Runtime
    allows concurrent ``run`` calls on one session.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._lock = threading.Lock()
        self._session: InferenceSession | None = None
        self._model_dir: Path | None = None
        self._input_name = ""
        self._input_shape: tuple[int | str | None, ...] = ()
        self._output_name = ""

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    @property
    def model_dir(self) -> Path | None:
        return self._model_dir

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def initialize(self, model_dir: str | Path) -> None:
        """Load ``model.onnx`` from ``model_dir``.

        Raises:
            ModelNotFoundError: If the directory or model file does not exist.
            ModelLoadError: If ONNX Runtime cannot load the file.
        """
        model_dir = Path(model_dir)
        with self._lock:
            if self._session is not None and self._model_dir == model_dir:
                return

            model_path = model_dir / MODEL_FILENAME
            if not model_path.is_file():
                raise ModelNotFoundError(f"Could not find model {MODEL_FILENAME} in {model_dir}")

            try:
                session = InferenceSession(
                    str(model_path),
                    sess_options=self._session_options,
                    providers=self._providers,
                )
            except Exception as err:  # onnxruntime's pybind11 errors share no common base
                raise ModelLoadError(f"Could not load model {model_path}: {err}") from err

            inputs = session.get_inputs()
            outputs = session.get_outputs()
            if not inputs or not outputs:
                raise ModelLoadError(f"Model {model_path} declares no inputs or outputs")

            self._session = session
            self._model_dir = model_dir
            self._input_name = inputs[0].name
            self._input_shape = tuple(inputs[0].shape)
            self._output_name = outputs[0].name
            logger.info(
                "Loaded model %s (input=%s %s, output=%s)",
                model_path,
                self._input_name,
                self._input_shape,
                self._output_name,
            )

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the loaded model on a single (1, H, W, C) tensor.

        Raises:
            InferenceError: If no model is loaded, the tensor shape does not
                match the model input, or the runtime fails.
        """
        session = self._session
        if session is None:
            raise InferenceError("Model session is not initialized")

        if not self._shape_matches(tensor.shape):
            raise InferenceError(f"Tensor shape {tuple(tensor.shape)} does not match model input {self._input_shape}")

        try:
            outputs = session.run([self._output_name], {self._input_name: tensor})
        except Exception as err:  # onnxruntime's pybind11 errors share no common base
            raise InferenceError(f"Inference failed: {err}") from err

        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if self._settings.apply_softmax:
            scores = softmax(scores)
        return scores

    # -- Internal -----------------------------------------------------------

    def _shape_matches(self, shape: tuple[int, ...]) -> bool:
        if len(shape) != len(self._input_shape):
            return False
        # Dynamic dimensions are reported as strings or None.
        return all(not isinstance(want, int) or want == got for want, got in zip(self._input_shape, shape))

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts


def softmax(scores: NDArray[np.float32]) -> NDArray[np.float32]:
    """Numerically stable softmax over a 1-D score vector."""
    shifted = np.exp(scores - scores.max())
    return (shifted / shifted.sum()).astype(np.float32)
