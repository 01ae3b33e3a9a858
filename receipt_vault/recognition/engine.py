"""
Recognition Engine - entry point for receipt text recognition

Runs the provider fallback chain, parses the winning text and scores it.
Always returns a well-formed OCRResult for provider and parse faults; only
caller errors (empty image, bad timeout) raise.

Usage:
    ```python
    from receipt_vault.recognition import recognize

    result = await recognize(image_bytes)
    if result.requires_manual_review:
        ...
    ```
"""
import time
from typing import Mapping, Optional, Sequence

import structlog

from receipt_vault.common.config import RecognitionConfig, Settings, get_settings
from receipt_vault.common.schemas.recognition import OCRRequest, OCRResult
from receipt_vault.recognition.assembler import ResultAssembler
from receipt_vault.recognition.orchestrator import FallbackOrchestrator
from receipt_vault.recognition.providers.base import ProviderAdapter
from receipt_vault.recognition.providers.factory import build_provider_adapters
from receipt_vault.recognition.quality import QualityAssessor
from receipt_vault.recognition.text_parser import ParserLocale

logger = structlog.get_logger()


class RecognitionEngine:
    """
    Receipt recognition pipeline.

    Holds only immutable configuration and stateless collaborators, so one
    instance serves any number of concurrent recognize() calls.
    """

    def __init__(self, config: RecognitionConfig, adapters: Mapping[str, ProviderAdapter]):
        """
        Initialize engine.

        Args:
            config: Immutable engine configuration
            adapters: Provider name to adapter
        """
        self.config = config
        self.orchestrator = FallbackOrchestrator(
            adapters=adapters,
            provider_order=config.provider_order,
            timeout_ms=config.timeout_ms,
        )
        self.assembler = ResultAssembler(
            assessor=QualityAssessor(
                review_threshold=config.review_threshold,
                totals_tolerance=config.totals_tolerance,
            ),
            locale=ParserLocale(
                date_order=config.date_order,
                decimal_separator=config.decimal_separator,
            ),
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RecognitionEngine":
        settings = settings or get_settings()
        config = RecognitionConfig.from_settings(settings)
        return cls(config, build_provider_adapters(settings, config.provider_order))

    async def recognize(
        self,
        image_bytes: bytes,
        provider_order: Optional[Sequence[str]] = None,
    ) -> OCRResult:
        """
        Recognize and parse one receipt image.

        Args:
            image_bytes: Raw image bytes
            provider_order: Per-request override of the provider priority order

        Returns:
            OCRResult (success=False when every provider failed)

        Raises:
            ValueError: If image_bytes is empty
        """
        request = OCRRequest(
            image=image_bytes,
            provider_order=tuple(provider_order) if provider_order else self.config.provider_order,
            timeout_ms=self.config.timeout_ms,
        )
        started = time.monotonic()

        logger.info("receipt_recognition_started",
                   size_bytes=len(request.image),
                   providers=list(request.provider_order))

        outcome = await self.orchestrator.run(
            request.image,
            provider_order=request.provider_order,
            timeout_ms=request.timeout_ms,
        )
        return self.assembler.assemble(outcome, started)


_engine: Optional[RecognitionEngine] = None


def get_recognition_engine() -> RecognitionEngine:
    """
    Get the process-wide engine, built once from settings.

    Returns:
        RecognitionEngine instance
    """
    global _engine
    if _engine is None:
        _engine = RecognitionEngine.from_settings()
    return _engine


def reset_recognition_engine() -> None:
    """Drop the cached engine (tests, settings reload)"""
    global _engine
    _engine = None


async def recognize(image_bytes: bytes, provider_order: Optional[Sequence[str]] = None) -> OCRResult:
    """
    Convenience function using the process-wide engine.

    Args:
        image_bytes: Raw image bytes
        provider_order: Optional provider priority override

    Returns:
        OCRResult
    """
    return await get_recognition_engine().recognize(image_bytes, provider_order)
