"""
Receipt recognition task

Flow:
1. Read the stored receipt image (already validated by the upload handler)
2. Run the recognition engine (provider fallback chain, parsing, scoring)
3. Return the camelCase result JSON for the caller to persist

When every provider was rate limited the task re-queues itself with a
countdown instead of returning a failure.
"""
import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from celery import Task

from receipt_vault.common.config import get_settings
from receipt_vault.common.schemas.recognition import OCRResult
from receipt_vault.recognition.engine import get_recognition_engine
from services.worker.celery_app import app

logger = structlog.get_logger()
settings = get_settings()


class OCRTask(Task):
    """Base task for recognition; only provider throttling is retried"""
    max_retries = settings.ocr_task_max_retries
    default_retry_delay = settings.ocr_rate_limit_retry_seconds


def run_recognition(file_path: str, provider_order: Optional[List[str]] = None) -> OCRResult:
    """
    Read an image from storage and recognize it.

    Args:
        file_path: Full path to the stored receipt image
        provider_order: Optional provider priority override

    Returns:
        OCRResult

    Raises:
        FileNotFoundError: If the stored image is missing
        ValueError: If the stored file is empty
    """
    image_bytes = Path(file_path).read_bytes()
    return asyncio.run(get_recognition_engine().recognize(image_bytes, provider_order))


@app.task(bind=True, base=OCRTask, name="services.worker.tasks.ocr_receipt.recognize_receipt_task")
def recognize_receipt_task(
    self,
    receipt_id: str,
    file_path: str,
    provider_order: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Recognize an uploaded receipt.

    Args:
        receipt_id: UUID of receipt record
        file_path: Full path to receipt image
        provider_order: Optional provider priority override

    Returns:
        OCRResult as camelCase JSON dict
    """
    with structlog.contextvars.bound_contextvars(receipt_id=receipt_id):
        logger.info("ocr_processing_started",
                   file_path=file_path,
                   attempt=self.request.retries)

        result = run_recognition(file_path, provider_order)

        if result.rate_limited_only and self.request.retries < self.max_retries:
            logger.warning("ocr_rate_limited_requeue",
                          provider_errors=result.provider_errors,
                          countdown=settings.ocr_rate_limit_retry_seconds,
                          attempt=self.request.retries)
            raise self.retry(countdown=settings.ocr_rate_limit_retry_seconds)

        logger.info("ocr_processing_complete",
                   success=result.success,
                   provider=result.provider,
                   confidence=result.confidence,
                   requires_manual_review=result.requires_manual_review,
                   processing_time_ms=result.processing_time_ms)

        return result.model_dump(mode="json", by_alias=True)
