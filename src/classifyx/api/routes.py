"""API route definitions."""

from __future__ import annotations

import logging
from pathlib import PurePath
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from classifyx.api.middleware import auth_enabled, verify_api_key
from classifyx.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageLabel,
)
from classifyx.ml.errors import ClassifyError, DecodeError, LabelLoadError, ModelLoadError

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.image_classifier import ImageClassifier
    from classifyx.ml.inference import InferencePool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> ImageClassifier:
    classifier: ImageClassifier = request.app.state.classifier
    return classifier


def _status_for(err: ClassifyError) -> int:
    cause = err.__cause__
    if isinstance(cause, DecodeError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(cause, (ModelLoadError, LabelLoadError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post(
    "/classify-image",
    dependencies=[Depends(verify_api_key)],
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with labels",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Classify an uploaded image and return ranked labels."""
    settings = _get_settings(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    format_hint = PurePath(file.filename or "").suffix.lstrip(".") or "jpeg"
    pool = _get_inference_pool(request)
    try:
        results = await pool.classify(_get_classifier(request), data, format_hint)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, try again later",
        ) from None
    except ClassifyError as err:
        code = _status_for(err)
        if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("Classification failed for %s: %s", file.filename, err)
        raise HTTPException(status_code=code, detail=str(err)) from err

    return ClassifyImageResponse(
        labels=[
            ImageLabel(
                name=result.name,
                uncertainty=result.uncertainty,
                categories=list(result.categories),
                source=result.source,
            )
            for result in results
        ]
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    classifier = _get_classifier(request)
    labels = classifier.labels
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        classifier=classifier.state.value,
        auth_enabled=auth_enabled(settings),
        labels_loaded=len(labels) if labels is not None else 0,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
