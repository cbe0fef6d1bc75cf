"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageLabel(BaseModel):
    """A single label assigned to an image."""

    name: str
    uncertainty: int = Field(ge=0, le=100, description="0 = certain, 100 = no confidence")
    categories: list[str]
    source: str = "image"


class ClassifyImageResponse(BaseModel):
    """Response for the image classification endpoint.

    An empty list means no label was confident enough.
    """

    labels: list[ImageLabel]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    classifier: str = Field(description="Classifier state: 'disabled', 'uninitialized', 'loading', 'ready', 'failed'")
    labels_loaded: int
    auth_enabled: bool = Field(description="Whether /classify-image requires a Bearer API key")
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
