"""
Result Assembler - turns a chain outcome into the caller-facing OCRResult

Success path: parse the provider text, assess quality, compose the result.
A parser or assessor fault never escapes: the result degrades to a success
with an empty score, a parse_failed warning and mandatory review.
Failure path: success=False with per-provider errors, no extracted data.
"""
import time
from typing import Any, Dict, List, Optional

import structlog

from receipt_vault.common.schemas.recognition import (
    DataQuality,
    OCRResult,
    ReceiptExtraction,
    RecognitionState,
)
from receipt_vault.recognition.errors import AllProvidersFailed
from receipt_vault.recognition.orchestrator import ChainOutcome
from receipt_vault.recognition.quality import QualityAssessor
from receipt_vault.recognition.text_parser import ParserLocale, ReceiptTextParser

logger = structlog.get_logger()

ERROR_ALL_PROVIDERS_FAILED = "ALL_OCR_PROVIDERS_FAILED"
ERROR_INVALID_IMAGE = "INVALID_IMAGE"


def _elapsed_ms(started: float) -> int:
    return max(int((time.monotonic() - started) * 1000), 0)


class ResultAssembler:
    """Composes ProviderResponse + ReceiptExtraction + QualityAssessment"""

    def __init__(
        self,
        assessor: Optional[QualityAssessor] = None,
        locale: Optional[ParserLocale] = None,
    ):
        self.assessor = assessor or QualityAssessor()
        self.parser = ReceiptTextParser(locale)

    def assemble(self, outcome: ChainOutcome, started: float) -> OCRResult:
        """
        Build the final result for one request.

        Args:
            outcome: Orchestrator outcome (successful response or failures)
            started: time.monotonic() at request start

        Returns:
            OCRResult
        """
        if not outcome.succeeded:
            return self.failure(outcome.failure(), outcome.fallback_used, _elapsed_ms(started))
        return self.success(outcome, started)

    def success(self, outcome: ChainOutcome, started: float) -> OCRResult:
        response = outcome.response
        extraction: Optional[ReceiptExtraction] = None
        logger.info("ocr_result_parsing", provider=outcome.provider, state=RecognitionState.PARSING.value)

        try:
            extraction = self.parser.parse(response.raw_text)
            assessment = self.assessor.assess(extraction, response.provider_confidence)
        except Exception as e:
            logger.error("ocr_result_parse_failed",
                        provider=outcome.provider,
                        error=str(e),
                        exc_info=True)
            return self._degraded(outcome, extraction, e, started)

        result = OCRResult(
            success=True,
            provider=outcome.provider,
            extracted_text=response.raw_text,
            confidence=assessment.confidence,
            extracted_data=extraction,
            processing_time_ms=_elapsed_ms(started),
            data_quality=assessment.data_quality,
            requires_manual_review=assessment.requires_manual_review,
            fallback_used=outcome.fallback_used,
            primary_error=outcome.primary_error,
            provider_errors=dict(outcome.provider_errors) or None,
            provider_error_kinds=dict(outcome.provider_error_kinds) or None,
            validation_warnings=assessment.warnings,
            word_count=len(response.raw_text.split()),
            language=response.language,
            bounding_boxes=list(response.bounding_boxes),
        )

        logger.info("ocr_result_assembled",
                   provider=result.provider,
                   confidence=result.confidence,
                   overall_score=result.data_quality.overall_score,
                   requires_manual_review=result.requires_manual_review,
                   fallback_used=result.fallback_used,
                   processing_time_ms=result.processing_time_ms,
                   state=RecognitionState.DONE.value)
        return result

    def _degraded(
        self,
        outcome: ChainOutcome,
        extraction: Optional[ReceiptExtraction],
        error: Exception,
        started: float,
    ) -> OCRResult:
        response = outcome.response
        warnings: List[Dict[str, Any]] = [{
            "type": "parse_failed",
            "message": f"Recognized text could not be parsed: {error}",
            "data": {"error_type": type(error).__name__},
        }]

        return OCRResult(
            success=True,
            provider=outcome.provider,
            extracted_text=response.raw_text,
            confidence=0.0,
            extracted_data=extraction or ReceiptExtraction(),
            processing_time_ms=_elapsed_ms(started),
            data_quality=DataQuality(
                has_merchant=False,
                has_total=False,
                has_date=False,
                has_items=False,
                overall_score=0.0,
            ),
            requires_manual_review=True,
            fallback_used=outcome.fallback_used,
            primary_error=outcome.primary_error,
            provider_errors=dict(outcome.provider_errors) or None,
            provider_error_kinds=dict(outcome.provider_error_kinds) or None,
            validation_warnings=warnings,
            word_count=len(response.raw_text.split()),
            language=response.language,
            bounding_boxes=list(response.bounding_boxes),
        )

    @staticmethod
    def failure(error: AllProvidersFailed, fallback_used: bool, processing_time_ms: int) -> OCRResult:
        """
        Result for a chain that produced no text.

        Args:
            error: Collected provider failures
            fallback_used: Whether more than one provider was attempted
            processing_time_ms: Wall-clock time across the chain

        Returns:
            OCRResult with success=False and no extracted data
        """
        code = ERROR_INVALID_IMAGE if error.invalid_image else ERROR_ALL_PROVIDERS_FAILED

        logger.error("ocr_result_failed",
                    error=code,
                    provider_errors=error.provider_errors,
                    state=RecognitionState.FAILED.value)

        return OCRResult(
            success=False,
            provider=None,
            extracted_text=None,
            confidence=0.0,
            extracted_data=None,
            processing_time_ms=processing_time_ms,
            data_quality=None,
            requires_manual_review=True,
            fallback_used=fallback_used,
            primary_error=error.primary_error,
            provider_errors=error.provider_errors,
            provider_error_kinds=error.provider_error_kinds,
            error=code,
        )
