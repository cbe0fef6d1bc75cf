"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ImageClassifier

Decoding and ONNX inference block, so they run on worker threads. Requests
beyond the semaphore limit wait up to ``queue_timeout`` seconds, then fail
with ``TimeoutError`` (mapped to 503 by the API).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.image_classifier import ImageClassifier
    from classifyx.ml.ranking import ClassificationResult

logger = logging.getLogger(__name__)


class InferencePool:
    """Bounds the number of classifications running at once."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="classifyx-inference",
        )
        self._timeout = settings.queue_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def classify(
        self, classifier: ImageClassifier, buffer: bytes, format_hint: str = "jpeg"
    ) -> list[ClassificationResult]:
        """Classify ``buffer`` on a worker thread.

        Raises:
            TimeoutError: If no worker slot frees up within the timeout.
            ClassifyError: Propagated from the classifier.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        except TimeoutError:
            logger.warning("Inference queue full, gave up after %.1fs", self._timeout)
            raise
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, classifier.classify_bytes, buffer, format_hint)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of classifications currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a worker slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
