"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classifyx.api.routes import router
from classifyx.config import get_settings
from classifyx.ml.image_classifier import create_classifier
from classifyx.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ClassifyX (device=%s, max_concurrent=%s, models_dir=%s, disabled=%s)",
        settings.device,
        settings.max_concurrent,
        settings.models_dir,
        settings.disabled,
    )

    classifier = create_classifier(settings)
    # Load eagerly so the first request does not pay for it.
    classifier.initialize()
    app.state.classifier = classifier

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("ClassifyX ready (classifier=%s)", classifier.state)
    yield

    logger.info("Shutting down ClassifyX")
    inference_pool.shutdown()
    logger.info("ClassifyX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="Image classification API returning ranked labels with uncertainty scores",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
