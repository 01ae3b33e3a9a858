import asyncio
import os
from typing import Optional

import pytest

# Set env before any receipt_vault imports (settings are cached, the Celery app is built at import time)
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("OCR_PROVIDER_ORDER", "google_vision,textract")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from receipt_vault.recognition.providers.base import ProviderResponse  # noqa: E402


class FakeProvider:
    """Scripted provider adapter: returns text, raises an error, or stalls"""

    def __init__(
        self,
        name: str,
        text: str = "",
        confidence: float = 0.9,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.name = name
        self.text = text
        self.confidence = confidence
        self.error = error
        self.delay = delay
        self.calls = 0
        self.cancelled = False

    async def recognize(self, image: bytes, timeout_ms: int) -> ProviderResponse:
        self.calls += 1
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return ProviderResponse(
            raw_text=self.text,
            provider_confidence=self.confidence,
            latency_ms=1,
            provider=self.name,
        )


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture(autouse=True)
def _reset_cached_state():
    from receipt_vault.common.config import get_settings
    from receipt_vault.recognition.engine import reset_recognition_engine

    get_settings.cache_clear()
    reset_recognition_engine()
    yield
    get_settings.cache_clear()
    reset_recognition_engine()


WALMART_TEXT = (
    "WALMART\n1234 RETAIL ROAD\nANYTOWN, CA\n\n"
    "BANANAS 4.99\nWATER 7.99\n\n"
    "SUBTOTAL 12.98\nTAX 1.04\nTOTAL 14.02"
)

STARBUCKS_TEXT = "STARBUCKS STORE #5678\nCOFFEE $4.95 TAX $0.40\nTOTAL $5.35\n01/01/2024"

GARBAGE_TEXT = "blurry... unclear... $??"


@pytest.fixture
def walmart_text():
    return WALMART_TEXT


@pytest.fixture
def starbucks_text():
    return STARBUCKS_TEXT


@pytest.fixture
def garbage_text():
    return GARBAGE_TEXT
