from receipt_vault.common.schemas.recognition import (
    DataQuality,
    LineItem,
    OCRRequest,
    OCRResult,
    ProviderErrorKind,
    ReceiptExtraction,
    RecognitionState,
)

__all__ = [
    "DataQuality",
    "LineItem",
    "OCRRequest",
    "OCRResult",
    "ProviderErrorKind",
    "ReceiptExtraction",
    "RecognitionState",
]
