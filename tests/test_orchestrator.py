import asyncio

import pytest

from receipt_vault.common.schemas.recognition import ProviderErrorKind, RecognitionState
from receipt_vault.recognition.errors import (
    InvalidImageError,
    ProviderAuthError,
    ProviderUnavailableError,
    RateLimitedError,
)
from receipt_vault.recognition.orchestrator import FallbackOrchestrator

IMAGE = b"\xff\xd8\xff fake jpeg"


def _orchestrator(*providers, timeout_ms=1000):
    return FallbackOrchestrator(
        adapters={p.name: p for p in providers},
        provider_order=[p.name for p in providers],
        timeout_ms=timeout_ms,
    )


@pytest.mark.asyncio
async def test_primary_success_skips_fallback(fake_provider):
    primary = fake_provider("google_vision", text="SHOP")
    secondary = fake_provider("textract", text="OTHER")

    outcome = await _orchestrator(primary, secondary).run(IMAGE)

    assert outcome.succeeded
    assert outcome.provider == "google_vision"
    assert outcome.fallback_used is False
    assert outcome.primary_error is None
    assert primary.calls == 1
    assert secondary.calls == 0


@pytest.mark.asyncio
async def test_timeout_falls_back_to_next_provider(fake_provider):
    primary = fake_provider("google_vision", text="SLOW", delay=1.0)
    secondary = fake_provider("textract", text="SHOP")

    outcome = await _orchestrator(primary, secondary, timeout_ms=50).run(IMAGE)

    assert outcome.succeeded
    assert outcome.provider == "textract"
    assert outcome.fallback_used is True
    assert outcome.primary_error == "google_vision request timeout after 50ms"
    assert outcome.provider_error_kinds == {"google_vision": ProviderErrorKind.TIMEOUT}
    assert primary.cancelled is True


@pytest.mark.asyncio
async def test_all_providers_fail(fake_provider):
    primary = fake_provider("google_vision", error=RateLimitedError("quota exceeded"))
    secondary = fake_provider("textract", error=ProviderUnavailableError("service down"))

    outcome = await _orchestrator(primary, secondary).run(IMAGE)

    assert not outcome.succeeded
    assert outcome.state == RecognitionState.FAILED
    assert outcome.response is None
    assert outcome.provider_errors == {"google_vision": "quota exceeded", "textract": "service down"}
    assert outcome.primary_error == "quota exceeded"
    assert outcome.attempts == ["google_vision", "textract"]
    assert outcome.fallback_used is True
    assert outcome.stopped_on is None


@pytest.mark.asyncio
async def test_invalid_image_stops_chain(fake_provider):
    primary = fake_provider("google_vision", error=InvalidImageError("bad image"))
    secondary = fake_provider("textract", text="SHOP")

    outcome = await _orchestrator(primary, secondary).run(IMAGE)

    assert not outcome.succeeded
    assert outcome.stopped_on == ProviderErrorKind.INVALID_IMAGE
    assert secondary.calls == 0
    assert outcome.fallback_used is False
    assert outcome.failure().invalid_image is True


@pytest.mark.asyncio
async def test_auth_error_is_retryable(fake_provider):
    primary = fake_provider("google_vision", error=ProviderAuthError("expired key"))
    secondary = fake_provider("textract", text="SHOP")

    outcome = await _orchestrator(primary, secondary).run(IMAGE)

    assert outcome.provider == "textract"
    assert outcome.provider_error_kinds["google_vision"] == ProviderErrorKind.AUTH_ERROR


@pytest.mark.asyncio
async def test_unconfigured_provider_recorded_as_unavailable(fake_provider):
    textract = fake_provider("textract", text="SHOP")
    orchestrator = FallbackOrchestrator({"textract": textract}, ["tesseract", "textract"])

    outcome = await orchestrator.run(IMAGE)

    assert outcome.provider == "textract"
    assert outcome.provider_error_kinds == {"tesseract": ProviderErrorKind.UNAVAILABLE}
    assert "not configured" in outcome.provider_errors["tesseract"]


@pytest.mark.asyncio
async def test_unexpected_adapter_exception_treated_as_unavailable(fake_provider):
    primary = fake_provider("google_vision", error=RuntimeError("boom"))
    secondary = fake_provider("textract", text="SHOP")

    outcome = await _orchestrator(primary, secondary).run(IMAGE)

    assert outcome.provider == "textract"
    assert outcome.provider_error_kinds["google_vision"] == ProviderErrorKind.UNAVAILABLE


@pytest.mark.asyncio
async def test_per_request_order_override(fake_provider):
    primary = fake_provider("google_vision", text="A")
    secondary = fake_provider("textract", text="B")

    outcome = await _orchestrator(primary, secondary).run(IMAGE, provider_order=["textract", "google_vision"])

    assert outcome.provider == "textract"
    assert primary.calls == 0


@pytest.mark.asyncio
async def test_duplicate_provider_in_order_is_attempted_once(fake_provider):
    textract = fake_provider("textract", error=ProviderUnavailableError("AWS Textract down"))
    orchestrator = _orchestrator(textract)

    outcome = await orchestrator.run(IMAGE, provider_order=["textract", "textract"])

    assert textract.calls == 1
    assert outcome.attempts == ["textract"]
    assert outcome.fallback_used is False
    assert outcome.provider_errors == {"textract": "AWS Textract down"}


def test_configured_order_is_deduplicated(fake_provider):
    textract = fake_provider("textract")
    orchestrator = FallbackOrchestrator({"textract": textract}, ["textract", "textract"])

    assert orchestrator.provider_order == ("textract",)


@pytest.mark.asyncio
async def test_cancellation_propagates_to_provider_call(fake_provider):
    slow = fake_provider("google_vision", text="SHOP", delay=5.0)
    orchestrator = _orchestrator(slow, timeout_ms=10000)

    task = asyncio.ensure_future(orchestrator.run(IMAGE))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert slow.cancelled is True


@pytest.mark.asyncio
async def test_concurrent_runs_do_not_share_state(fake_provider):
    primary = fake_provider("google_vision", error=RateLimitedError("quota"))
    secondary = fake_provider("textract", text="SHOP")
    orchestrator = _orchestrator(primary, secondary)

    outcomes = await asyncio.gather(*(orchestrator.run(IMAGE) for _ in range(5)))

    assert all(o.provider == "textract" for o in outcomes)
    assert len({id(o) for o in outcomes}) == 5
    assert secondary.calls == 5


def test_requires_provider_order():
    with pytest.raises(ValueError):
        FallbackOrchestrator({}, [])


def test_requires_positive_timeout(fake_provider):
    with pytest.raises(ValueError):
        FallbackOrchestrator({"textract": fake_provider("textract")}, ["textract"], timeout_ms=0)
