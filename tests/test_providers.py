import time
from types import SimpleNamespace

import pytest
import pytesseract
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError, ReadTimeoutError
from google.api_core import exceptions as google_exceptions

from receipt_vault.common.config import Settings
from receipt_vault.common.schemas.recognition import ProviderErrorKind
from receipt_vault.recognition.errors import ProviderError
from receipt_vault.recognition.orchestrator import FallbackOrchestrator
from receipt_vault.recognition.providers.factory import build_provider_adapters
from receipt_vault.recognition.providers.provider_google_vision import GoogleVisionProvider, map_google_error
from receipt_vault.recognition.providers.provider_tesseract import TesseractProvider, rebuild_text
from receipt_vault.recognition.providers.provider_textract import TextractProvider, map_textract_error

IMAGE = b"receipt image bytes"


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, "DetectDocumentText")


# Textract

class _TextractStub:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def detect_document_text(self, Document):
        self.calls.append(Document)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.mark.asyncio
async def test_textract_joins_lines_and_normalizes_confidence():
    stub = _TextractStub({
        "Blocks": [
            {"BlockType": "PAGE"},
            {"BlockType": "LINE", "Text": "WALMART", "Confidence": 99.0,
             "Geometry": {"BoundingBox": {"Left": 0.1, "Top": 0.05, "Width": 0.3, "Height": 0.02}}},
            {"BlockType": "WORD", "Text": "WALMART", "Confidence": 99.0},
            {"BlockType": "LINE", "Text": "TOTAL 14.02", "Confidence": 91.0},
        ]
    })
    provider = TextractProvider(client=stub)

    response = await provider.recognize(IMAGE, 1000)

    assert response.raw_text == "WALMART\nTOTAL 14.02"
    assert response.provider_confidence == pytest.approx(0.95)
    assert response.provider == "textract"
    assert response.bounding_boxes[0]["text"] == "WALMART"
    assert stub.calls == [{"Bytes": IMAGE}]


@pytest.mark.asyncio
async def test_textract_empty_response_is_zero_confidence():
    response = await TextractProvider(client=_TextractStub({"Blocks": []})).recognize(IMAGE, 1000)

    assert response.raw_text == ""
    assert response.provider_confidence == 0.0


@pytest.mark.asyncio
async def test_textract_image_conversion_runs_within_timeout(monkeypatch):
    provider = TextractProvider(client=_TextractStub({"Blocks": []}))

    def _slow_conversion(image):
        time.sleep(0.5)
        return image

    monkeypatch.setattr(provider, "_prepare_image", _slow_conversion)
    orchestrator = FallbackOrchestrator({"textract": provider}, ["textract"], timeout_ms=50)

    started = time.monotonic()
    outcome = await orchestrator.run(IMAGE)
    elapsed = time.monotonic() - started

    assert outcome.provider_error_kinds == {"textract": ProviderErrorKind.TIMEOUT}
    assert outcome.provider_errors == {"textract": "textract request timeout after 50ms"}
    assert elapsed < 0.4


@pytest.mark.asyncio
async def test_textract_throttling_maps_to_rate_limited():
    provider = TextractProvider(client=_TextractStub(error=_client_error("ThrottlingException")))

    with pytest.raises(ProviderError) as exc_info:
        await provider.recognize(IMAGE, 1000)

    assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
    assert exc_info.value.provider == "textract"


@pytest.mark.parametrize("error,kind", [
    (_client_error("ProvisionedThroughputExceededException"), ProviderErrorKind.RATE_LIMITED),
    (_client_error("InvalidParameterException"), ProviderErrorKind.INVALID_IMAGE),
    (_client_error("UnsupportedDocumentException"), ProviderErrorKind.INVALID_IMAGE),
    (_client_error("AccessDeniedException"), ProviderErrorKind.AUTH_ERROR),
    (_client_error("InternalServerError"), ProviderErrorKind.UNAVAILABLE),
    (ReadTimeoutError(endpoint_url="https://textract.us-east-1.amazonaws.com"), ProviderErrorKind.TIMEOUT),
    (EndpointConnectionError(endpoint_url="https://textract.us-east-1.amazonaws.com"), ProviderErrorKind.UNAVAILABLE),
    (NoCredentialsError(), ProviderErrorKind.AUTH_ERROR),
])
def test_textract_error_mapping(error, kind):
    assert map_textract_error(error).kind == kind


# Google Vision

class _VisionStub:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.kwargs = None

    def document_text_detection(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.response


def _vision_response(text="", confidences=(), code=0, message="", languages=()):
    blocks = [SimpleNamespace(confidence=c) for c in confidences]
    page = SimpleNamespace(
        blocks=blocks,
        property=SimpleNamespace(detected_languages=[SimpleNamespace(language_code=lang) for lang in languages]),
    )
    return SimpleNamespace(
        error=SimpleNamespace(code=code, message=message),
        full_text_annotation=SimpleNamespace(text=text, pages=[page]),
    )


@pytest.mark.asyncio
async def test_google_vision_text_and_block_confidence():
    stub = _VisionStub(_vision_response("STARBUCKS\nTOTAL $5.35\n", [0.9, 0.8]))

    response = await GoogleVisionProvider(client=stub).recognize(IMAGE, 2000)

    assert response.raw_text == "STARBUCKS\nTOTAL $5.35\n"
    assert response.provider_confidence == pytest.approx(0.85)
    assert stub.kwargs["retry"] is None
    assert stub.kwargs["timeout"] == 2.0
    assert response.language is None


@pytest.mark.asyncio
async def test_google_vision_reports_detected_language():
    stub = _VisionStub(_vision_response("BOULANGERIE\nTOTAL 4,50 €\n", [0.9], languages=["fr", "en"]))

    response = await GoogleVisionProvider(client=stub).recognize(IMAGE, 2000)

    assert response.language == "fr"


@pytest.mark.asyncio
async def test_google_vision_no_text_is_zero_confidence():
    response = await GoogleVisionProvider(client=_VisionStub(_vision_response("", []))).recognize(IMAGE, 2000)
    assert response.provider_confidence == 0.0


@pytest.mark.asyncio
async def test_google_vision_response_error_code():
    stub = _VisionStub(_vision_response(code=8, message="Quota exceeded"))

    with pytest.raises(ProviderError) as exc_info:
        await GoogleVisionProvider(client=stub).recognize(IMAGE, 2000)

    assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
    assert exc_info.value.message == "Quota exceeded"


@pytest.mark.asyncio
async def test_google_vision_api_exception_is_mapped():
    stub = _VisionStub(error=google_exceptions.ServiceUnavailable("backend unavailable"))

    with pytest.raises(ProviderError) as exc_info:
        await GoogleVisionProvider(client=stub).recognize(IMAGE, 2000)

    assert exc_info.value.kind == ProviderErrorKind.UNAVAILABLE


@pytest.mark.asyncio
async def test_google_vision_bad_credentials_surface_as_auth_error():
    provider = GoogleVisionProvider(credentials_json="{not json")

    with pytest.raises(ProviderError) as exc_info:
        await provider.recognize(IMAGE, 2000)

    assert exc_info.value.kind == ProviderErrorKind.AUTH_ERROR


@pytest.mark.parametrize("error,kind", [
    (google_exceptions.ResourceExhausted("quota"), ProviderErrorKind.RATE_LIMITED),
    (google_exceptions.InvalidArgument("bad image"), ProviderErrorKind.INVALID_IMAGE),
    (google_exceptions.PermissionDenied("billing disabled"), ProviderErrorKind.AUTH_ERROR),
    (google_exceptions.Unauthenticated("no key"), ProviderErrorKind.AUTH_ERROR),
    (google_exceptions.DeadlineExceeded("slow"), ProviderErrorKind.TIMEOUT),
    (google_exceptions.FailedPrecondition("not enabled"), ProviderErrorKind.UNAVAILABLE),
    (google_exceptions.InternalServerError("oops"), ProviderErrorKind.UNAVAILABLE),
])
def test_google_error_mapping(error, kind):
    assert map_google_error(error).kind == kind


# Tesseract

def test_rebuild_text_groups_lines_and_blocks():
    data = {
        "text": ["WALMART", "", "BANANAS", "4.99", "TOTAL", "14.02"],
        "conf": ["96", "-1", "90", "88", "95", "93"],
        "block_num": [1, 1, 2, 2, 3, 3],
        "par_num": [1, 1, 1, 1, 1, 1],
        "line_num": [1, 1, 1, 1, 1, 1],
    }

    text, confidences = rebuild_text(data)

    assert text == "WALMART\n\nBANANAS 4.99\n\nTOTAL 14.02"
    assert confidences == [96.0, 90.0, 88.0, 95.0, 93.0]


@pytest.mark.asyncio
async def test_tesseract_recognize(monkeypatch):
    provider = TesseractProvider()
    data = {
        "text": ["SHOP", "TOTAL", "5.00"],
        "conf": [80, 90, 100],
        "block_num": [1, 1, 1],
        "par_num": [1, 1, 1],
        "line_num": [1, 2, 2],
    }
    monkeypatch.setattr(provider, "_run", lambda image, timeout_s: data)

    response = await provider.recognize(IMAGE, 1000)

    assert response.raw_text == "SHOP\nTOTAL 5.00"
    assert response.provider_confidence == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_tesseract_undecodable_image_is_invalid():
    with pytest.raises(ProviderError) as exc_info:
        await TesseractProvider().recognize(b"definitely not an image", 1000)

    assert exc_info.value.kind == ProviderErrorKind.INVALID_IMAGE
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
@pytest.mark.parametrize("error,kind", [
    (pytesseract.TesseractNotFoundError(), ProviderErrorKind.UNAVAILABLE),
    (RuntimeError("Tesseract process timeout"), ProviderErrorKind.TIMEOUT),
    (RuntimeError("something else"), ProviderErrorKind.UNAVAILABLE),
])
async def test_tesseract_error_mapping(monkeypatch, error, kind):
    provider = TesseractProvider()

    def _raise(image, timeout_s):
        raise error

    monkeypatch.setattr(provider, "_run", _raise)

    with pytest.raises(ProviderError) as exc_info:
        await provider.recognize(IMAGE, 1000)

    assert exc_info.value.kind == kind


# Factory

def test_factory_builds_configured_providers():
    adapters = build_provider_adapters(Settings(OCR_PROVIDER_ORDER="tesseract"))

    assert list(adapters) == ["tesseract"]
    assert isinstance(adapters["tesseract"], TesseractProvider)


def test_factory_rejects_unknown_provider():
    with pytest.raises(ValueError):
        build_provider_adapters(Settings(), ["azure"])
