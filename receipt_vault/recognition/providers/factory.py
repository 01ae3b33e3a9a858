"""
OCR Provider Factory

Builds provider adapters from configuration. Implements the strategy pattern:
adding a provider means adding an adapter and a builder here, without touching
orchestration or parsing.
"""
from typing import Callable, Dict, Iterable, Optional

import structlog

from receipt_vault.common.config import (
    PROVIDER_GOOGLE_VISION,
    PROVIDER_TESSERACT,
    PROVIDER_TEXTRACT,
    Settings,
)
from receipt_vault.recognition.providers.base import ProviderAdapter

logger = structlog.get_logger()


def _build_google_vision(settings: Settings) -> ProviderAdapter:
    from receipt_vault.recognition.providers.provider_google_vision import GoogleVisionProvider
    return GoogleVisionProvider(
        api_key=settings.google_vision_api_key,
        credentials_json=settings.google_credentials_json,
    )


def _build_textract(settings: Settings) -> ProviderAdapter:
    from receipt_vault.recognition.providers.provider_textract import TextractProvider
    return TextractProvider(
        aws_region=settings.aws_textract_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        timeout_ms=settings.ocr_provider_timeout_ms,
    )


def _build_tesseract(settings: Settings) -> ProviderAdapter:
    # Lazy import to avoid loading pytesseract when the provider is not configured
    from receipt_vault.recognition.providers.provider_tesseract import TesseractProvider
    return TesseractProvider(tesseract_path=settings.tesseract_path)


PROVIDER_BUILDERS: Dict[str, Callable[[Settings], ProviderAdapter]] = {
    PROVIDER_GOOGLE_VISION: _build_google_vision,
    PROVIDER_TEXTRACT: _build_textract,
    PROVIDER_TESSERACT: _build_tesseract,
}


def build_provider_adapters(
    settings: Settings,
    names: Optional[Iterable[str]] = None,
) -> Dict[str, ProviderAdapter]:
    """
    Build the adapters named in the provider order.

    Only configured providers are constructed, so an unused vendor SDK is
    never imported.

    Args:
        settings: Application settings (credentials, endpoints, timeouts)
        names: Provider names to build (defaults to OCR_PROVIDER_ORDER)

    Returns:
        Dict of provider name to adapter, in priority order

    Raises:
        ValueError: If a name has no registered builder
    """
    names = list(names) if names is not None else settings.provider_order
    adapters: Dict[str, ProviderAdapter] = {}

    for name in names:
        if name in adapters:
            continue
        builder = PROVIDER_BUILDERS.get(name)
        if builder is None:
            raise ValueError(f"Unknown OCR provider: {name}")
        adapters[name] = builder(settings)

    logger.info("ocr_providers_built", providers=list(adapters))
    return adapters
