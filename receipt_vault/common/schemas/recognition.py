"""
Receipt recognition schema (Pydantic models)

Shapes handed between the recognition engine and its caller (the receipt
upload workflow). Attributes are snake_case; results serialize with camelCase
aliases (`model_dump(by_alias=True)`) to match the stored receipt JSON.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProviderErrorKind(str, Enum):
    """Uniform failure taxonomy for text-recognition providers"""
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    INVALID_IMAGE = "invalid_image"
    AUTH_ERROR = "auth_error"


class RecognitionState(str, Enum):
    """Per-request lifecycle. DONE and FAILED are terminal."""
    PENDING = "pending"
    CALLING = "calling"
    PARSING = "parsing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class OCRRequest:
    """
    One recognition request, created per upload and consumed once.

    Attributes:
        image: Raw image bytes (already validated by the upload handler)
        provider_order: Provider identifiers in priority order
        timeout_ms: Per-provider call timeout in milliseconds
    """
    image: bytes
    provider_order: Tuple[str, ...]
    timeout_ms: int

    def __post_init__(self) -> None:
        if not self.image:
            raise ValueError("OCRRequest requires non-empty image bytes")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItem(_CamelModel):
    """Single purchased item recovered from receipt text"""
    name: str = Field(..., description="Item description as printed")
    price: Decimal = Field(..., description="Line price")


class ReceiptExtraction(_CamelModel):
    """
    Structured fields parsed from recognized text.

    Every field is absent (None) when it could not be located confidently.
    """
    merchant: Optional[str] = Field(None, description="Merchant name (first receipt line)")
    address: Optional[str] = Field(None, description="Address block, newline separated")
    total: Optional[Decimal] = Field(None, description="Grand total")
    subtotal: Optional[Decimal] = Field(None, description="Subtotal before tax")
    tax: Optional[Decimal] = Field(None, description="Tax amount")
    tip: Optional[Decimal] = Field(None, description="Tip / gratuity")
    discount: Optional[Decimal] = Field(None, description="Discount magnitude (positive)")
    date: Optional[str] = Field(None, description="Purchase date, verbatim")
    time: Optional[str] = Field(None, description="Purchase time, verbatim")
    payment_method: Optional[str] = Field(None, description="Payment line, verbatim")
    member_number: Optional[str] = Field(None, description="Loyalty/member identifier")
    receipt_number: Optional[str] = Field(None, description="Receipt/order/transaction identifier")
    currency: Optional[str] = Field(None, description="ISO 4217 code from a printed code or symbol")
    items: List[LineItem] = Field(default_factory=list, description="Purchased line items")


class DataQuality(_CamelModel):
    """Presence signals for the key fields plus their weighted score"""
    has_merchant: bool
    has_total: bool
    has_date: bool
    has_items: bool
    overall_score: float = Field(..., ge=0, le=1)


class OCRResult(_CamelModel):
    """
    Final result returned to the caller, which persists it on the receipt.

    Invariant: success=False implies extracted_data and data_quality are None.
    """
    success: bool
    provider: Optional[str] = Field(None, description="Provider that produced the text")
    extracted_text: Optional[str] = None
    confidence: float = Field(0.0, ge=0, le=1)
    extracted_data: Optional[ReceiptExtraction] = None
    processing_time_ms: int = Field(0, ge=0, description="Wall-clock time across the whole chain")
    data_quality: Optional[DataQuality] = None
    requires_manual_review: bool = True
    fallback_used: bool = False
    primary_error: Optional[str] = None
    provider_errors: Optional[Dict[str, str]] = None

    error: Optional[str] = Field(None, description="ALL_OCR_PROVIDERS_FAILED or INVALID_IMAGE")
    provider_error_kinds: Optional[Dict[str, ProviderErrorKind]] = None
    validation_warnings: List[Dict[str, Any]] = Field(default_factory=list)
    word_count: Optional[int] = None
    language: Optional[str] = Field(None, description="Language code detected by the provider")
    bounding_boxes: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="LINE boxes (text, confidence, normalized left/top/width/height) kept for review",
    )

    @property
    def rate_limited_only(self) -> bool:
        """True when the chain failed and every provider was rate limited"""
        if self.success or not self.provider_error_kinds:
            return False
        return all(kind == ProviderErrorKind.RATE_LIMITED for kind in self.provider_error_kinds.values())
