"""
Google Cloud Vision OCR Provider

Uses DOCUMENT_TEXT_DETECTION, which returns dense text plus per-block
confidence (already on a 0-1 scale). Credentials come from an API key,
an inline service-account JSON, or the default Google credential chain.
"""
import asyncio
import json
import time
from typing import Optional

import structlog
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import vision
from google.oauth2 import service_account

from receipt_vault.common.config import PROVIDER_GOOGLE_VISION
from receipt_vault.common.schemas.recognition import ProviderErrorKind
from receipt_vault.recognition.errors import ProviderError, provider_error
from receipt_vault.recognition.providers.base import ProviderResponse, mean_confidence

logger = structlog.get_logger()

# google.rpc.Code values that can come back inside a 200 annotate response
RPC_CODE_KINDS = {
    3: ProviderErrorKind.INVALID_IMAGE,   # INVALID_ARGUMENT
    4: ProviderErrorKind.TIMEOUT,         # DEADLINE_EXCEEDED
    7: ProviderErrorKind.AUTH_ERROR,      # PERMISSION_DENIED
    8: ProviderErrorKind.RATE_LIMITED,    # RESOURCE_EXHAUSTED
    16: ProviderErrorKind.AUTH_ERROR,     # UNAUTHENTICATED
}


def map_google_error(error: Exception) -> ProviderError:
    """
    Map a google-api-core / google-auth exception onto the ProviderError taxonomy.

    Args:
        error: Exception raised by the Vision client

    Returns:
        ProviderError subclass carrying the original message
    """
    message = str(error)

    if isinstance(error, google_exceptions.TooManyRequests):  # incl. ResourceExhausted
        kind = ProviderErrorKind.RATE_LIMITED
    elif isinstance(error, google_exceptions.FailedPrecondition):
        kind = ProviderErrorKind.UNAVAILABLE
    elif isinstance(error, google_exceptions.BadRequest):  # incl. InvalidArgument
        kind = ProviderErrorKind.INVALID_IMAGE
    elif isinstance(error, (google_exceptions.Forbidden, google_exceptions.Unauthorized,
                            auth_exceptions.GoogleAuthError)):
        kind = ProviderErrorKind.AUTH_ERROR
    elif isinstance(error, (google_exceptions.GatewayTimeout, google_exceptions.RetryError)):
        kind = ProviderErrorKind.TIMEOUT
    else:
        kind = ProviderErrorKind.UNAVAILABLE

    return provider_error(kind, message, PROVIDER_GOOGLE_VISION)


def _detected_language(annotation) -> Optional[str]:
    """First detected language of the first page (e.g. "en"), if Vision reported one"""
    if not annotation.pages:
        return None
    languages = annotation.pages[0].property.detected_languages
    if not languages:
        return None
    return languages[0].language_code or None


class GoogleVisionProvider:
    """
    Google Cloud Vision OCR provider.

    One annotate call per recognize(); the gapic retry policy is disabled.
    """

    name = PROVIDER_GOOGLE_VISION

    def __init__(
        self,
        api_key: Optional[str] = None,
        credentials_json: Optional[str] = None,
        client=None,
    ):
        """
        Initialize Google Vision provider.

        Args:
            api_key: Vision API key (takes precedence)
            credentials_json: Service-account JSON document as a string
            client: Pre-built ImageAnnotatorClient (tests)
        """
        self._credentials_error: Optional[str] = None

        if client is None:
            try:
                client = self._build_client(api_key, credentials_json)
            except (auth_exceptions.GoogleAuthError, ValueError) as e:
                # Surface as AuthError on every call so the chain falls through
                logger.error("google_vision_credentials_invalid", error=str(e))
                self._credentials_error = f"Google Vision credentials unavailable: {e}"

        self.client = client
        logger.info("google_vision_provider_initialized",
                   auth="api_key" if api_key else "service_account" if credentials_json else "default",
                   ready=self._credentials_error is None)

    @staticmethod
    def _build_client(api_key: Optional[str], credentials_json: Optional[str]):
        if api_key:
            return vision.ImageAnnotatorClient(client_options={"api_key": api_key})

        if credentials_json:
            creds = service_account.Credentials.from_service_account_info(json.loads(credentials_json))
            return vision.ImageAnnotatorClient(credentials=creds)

        return vision.ImageAnnotatorClient()

    def _annotate(self, image: bytes, timeout_s: float):
        return self.client.document_text_detection(
            image=vision.Image(content=image),
            retry=None,
            timeout=timeout_s,
        )

    async def recognize(self, image: bytes, timeout_ms: int) -> ProviderResponse:
        """
        Recognize text using Google Cloud Vision.

        Args:
            image: Raw image bytes
            timeout_ms: Per-call timeout passed to the gapic call

        Returns:
            ProviderResponse with full text and mean block confidence

        Raises:
            ProviderError: Mapped Vision API failure
        """
        if self._credentials_error:
            raise provider_error(ProviderErrorKind.AUTH_ERROR, self._credentials_error, self.name)

        start = time.monotonic()
        logger.info("calling_google_vision", size_bytes=len(image), timeout_ms=timeout_ms)

        try:
            response = await asyncio.to_thread(self._annotate, image, timeout_ms / 1000)
        except (google_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            mapped = map_google_error(e)
            logger.warning("google_vision_failed", kind=mapped.kind.value, error=str(e))
            raise mapped from e

        if response.error.message:
            kind = RPC_CODE_KINDS.get(response.error.code, ProviderErrorKind.UNAVAILABLE)
            logger.warning("google_vision_response_error",
                          code=response.error.code,
                          kind=kind.value,
                          error=response.error.message)
            raise provider_error(kind, response.error.message, self.name)

        annotation = response.full_text_annotation
        text = annotation.text or ""
        confidences = [
            block.confidence
            for page in annotation.pages
            for block in page.blocks
        ]
        confidence = mean_confidence(confidences) if text.strip() else 0.0
        language = _detected_language(annotation)
        latency_ms = int((time.monotonic() - start) * 1000)

        logger.info("google_vision_complete",
                   chars=len(text),
                   blocks=len(confidences),
                   language=language,
                   confidence=confidence,
                   latency_ms=latency_ms)

        return ProviderResponse(
            raw_text=text,
            provider_confidence=confidence,
            latency_ms=latency_ms,
            provider=self.name,
            language=language,
        )
