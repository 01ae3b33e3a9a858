"""
Quality Assessor - scores a parsed receipt and decides on manual review

Score weights (sum to 1.0): merchant 0.30, total 0.40, date 0.15, items 0.15.
Final confidence blends provider confidence with the score:

    confidence = provider_confidence * (0.5 + 0.5 * overall_score)

A result needs manual review when confidence is below the threshold or no
total was found. Totals cross-checks only add warnings; they never change
the review decision.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog

from receipt_vault.common.config import DEFAULT_REVIEW_THRESHOLD
from receipt_vault.common.schemas.recognition import DataQuality, ReceiptExtraction

logger = structlog.get_logger()

WEIGHTS = {
    "merchant": 0.30,
    "total": 0.40,
    "date": 0.15,
    "items": 0.15,
}

# confidence == threshold does not require review
REVIEW_THRESHOLD_INCLUSIVE = True

DEFAULT_TOTALS_TOLERANCE = Decimal("0.01")


@dataclass
class QualityAssessment:
    """Output of QualityAssessor.assess()"""
    data_quality: DataQuality
    confidence: float
    requires_manual_review: bool
    warnings: List[Dict[str, Any]] = field(default_factory=list)


def _clamp(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


def _money(value: Decimal) -> float:
    return float(value)


class QualityAssessor:
    """
    Computes presence flags, overall score, blended confidence and the
    review flag for one extraction.
    """

    def __init__(
        self,
        review_threshold: float = DEFAULT_REVIEW_THRESHOLD,
        totals_tolerance: Decimal = DEFAULT_TOTALS_TOLERANCE,
    ):
        if not 0.0 <= review_threshold <= 1.0:
            raise ValueError(f"review_threshold must be within [0, 1], got {review_threshold}")
        self.review_threshold = review_threshold
        self.totals_tolerance = Decimal(totals_tolerance)

    @staticmethod
    def data_quality(extraction: ReceiptExtraction) -> DataQuality:
        flags = {
            "merchant": bool(extraction.merchant),
            "total": extraction.total is not None,
            "date": bool(extraction.date),
            "items": len(extraction.items) > 0,
        }
        score = round(sum(WEIGHTS[name] for name, present in flags.items() if present), 4)

        return DataQuality(
            has_merchant=flags["merchant"],
            has_total=flags["total"],
            has_date=flags["date"],
            has_items=flags["items"],
            overall_score=min(score, 1.0),
        )

    def needs_review(self, confidence: float, has_total: bool) -> bool:
        if not has_total:
            return True
        if REVIEW_THRESHOLD_INCLUSIVE:
            return confidence < self.review_threshold
        return confidence <= self.review_threshold

    def check_totals(self, extraction: ReceiptExtraction) -> List[Dict[str, Any]]:
        """
        Cross-check the money fields against each other.

        Returns:
            List of validation warning dicts ({type, message, data})
        """
        warnings: List[Dict[str, Any]] = []
        total, subtotal, tax = extraction.total, extraction.subtotal, extraction.tax

        if total is not None and subtotal is not None and tax is not None:
            tip = extraction.tip or Decimal("0")
            discount = extraction.discount or Decimal("0")
            expected = subtotal + tax + tip - discount
            difference = abs(total - expected)

            if difference > self.totals_tolerance:
                logger.warning("total_mismatch_detected",
                              total=_money(total),
                              expected_total=_money(expected),
                              difference=_money(difference))
                warnings.append({
                    "type": "total_mismatch",
                    "message": f"Total ${_money(total):.2f} does not match subtotal + tax + tip - discount "
                               f"(${_money(expected):.2f})",
                    "data": {
                        "found_total": _money(total),
                        "expected_total": _money(expected),
                        "difference": _money(difference),
                    },
                })

        if extraction.items and subtotal is not None:
            items_total = sum((item.price for item in extraction.items), Decimal("0"))
            difference = abs(subtotal - items_total)

            if difference > self.totals_tolerance:
                logger.warning("items_subtotal_mismatch_detected",
                              items_total=_money(items_total),
                              subtotal=_money(subtotal),
                              difference=_money(difference))
                warnings.append({
                    "type": "items_subtotal_mismatch",
                    "message": f"Line items sum to ${_money(items_total):.2f} but receipt subtotal is "
                               f"${_money(subtotal):.2f}",
                    "data": {
                        "found_total": _money(items_total),
                        "expected_total": _money(subtotal),
                        "difference": _money(difference),
                    },
                })

        return warnings

    def assess(self, extraction: ReceiptExtraction, provider_confidence: Optional[float]) -> QualityAssessment:
        """
        Score an extraction.

        Args:
            extraction: Parsed receipt fields
            provider_confidence: Provider's own confidence (clamped to [0, 1])

        Returns:
            QualityAssessment
        """
        quality = self.data_quality(extraction)
        base = _clamp(provider_confidence or 0.0)
        confidence = round(base * (0.5 + 0.5 * quality.overall_score), 4)
        requires_review = self.needs_review(confidence, quality.has_total)
        warnings = self.check_totals(extraction)

        logger.info("receipt_quality_assessed",
                   overall_score=quality.overall_score,
                   confidence=confidence,
                   requires_manual_review=requires_review,
                   warnings=[w["type"] for w in warnings])

        return QualityAssessment(
            data_quality=quality,
            confidence=confidence,
            requires_manual_review=requires_review,
            warnings=warnings,
        )
