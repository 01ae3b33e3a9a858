"""
OCR Provider Base Interface

Defines the contract for all text-recognition providers (Google Vision,
Textract, Tesseract). This allows swapping or reordering OCR backends via
configuration without changing the orchestration or parsing code.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


@dataclass
class ProviderResponse:
    """
    Result from a single successful provider call.

    Attributes:
        raw_text: Recognized text, lines separated by newlines
        provider_confidence: Provider confidence normalized to 0.0-1.0
        latency_ms: Time spent in this provider call
        provider: Name of the provider that produced the text
        bounding_boxes: Optional LINE boxes with text and normalized coordinates
        language: Detected language code, when the provider reports one
    """
    raw_text: str
    provider_confidence: float  # 0.0 to 1.0
    latency_ms: int
    provider: str
    bounding_boxes: List[Dict[str, Any]] = field(default_factory=list)
    language: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate confidence is in valid range"""
        if not 0 <= self.provider_confidence <= 1:
            raise ValueError(f"Confidence must be 0-1, got {self.provider_confidence}")


class ProviderAdapter(Protocol):
    """
    Protocol for text-recognition providers.

    Adapters perform exactly one attempt per call; retry and escalation
    belong to the FallbackOrchestrator.
    """

    name: str

    async def recognize(self, image: bytes, timeout_ms: int) -> ProviderResponse:
        """
        Recognize text in a receipt image.

        Args:
            image: Raw image bytes
            timeout_ms: Upper bound for the vendor call

        Returns:
            ProviderResponse with text and normalized confidence

        Raises:
            ProviderError: One of the five uniform failure kinds
        """
        ...


def mean_confidence(values: List[float], scale: float = 1.0) -> float:
    """
    Average a list of native confidences and normalize to 0-1.

    Args:
        values: Native confidence values
        scale: Native maximum (100 for percentage-based vendors)

    Returns:
        Mean confidence clamped to [0, 1]; 0.0 for an empty list
    """
    if not values:
        return 0.0
    avg = sum(values) / len(values) / scale
    return min(1.0, max(0.0, avg))
