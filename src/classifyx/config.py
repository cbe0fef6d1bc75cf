"""Environment-based configuration for ClassifyX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CLASSIFYX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFYX_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Classifier
    disabled: bool = False
    models_dir: str = "/var/lib/classifyx/models"
    model_repo: str | None = None
    model_revision: str | None = None
    require_labels: bool = False
    apply_softmax: bool = False

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input tensor
    input_size: int = Field(default=224, ge=1)
    normalize_mean: float = 127.5
    normalize_scale: float = Field(default=127.5, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=100_000_000, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Ranking
    min_confidence: float = Field(default=0.05, ge=0.0, le=1.0)
    max_results: int = Field(default=1, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
