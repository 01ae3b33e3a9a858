"""
AWS Textract OCR Provider

High-quality OCR for receipt photos via DetectDocumentText.
Textract does not accept HEIC, so iPhone captures are converted to JPEG first.
"""
import asyncio
import io
import time
from typing import Optional

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)
from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from receipt_vault.common.config import PROVIDER_TEXTRACT
from receipt_vault.common.schemas.recognition import ProviderErrorKind
from receipt_vault.recognition.errors import ProviderError, provider_error
from receipt_vault.recognition.providers.base import ProviderResponse, mean_confidence

# Register HEIF/HEIC support in Pillow
register_heif_opener()

logger = structlog.get_logger()

HEIF_FORMATS = {'HEIF', 'HEIC'}

RATE_LIMIT_CODES = {
    'ThrottlingException',
    'ProvisionedThroughputExceededException',
    'LimitExceededException',
}
INVALID_IMAGE_CODES = {
    'InvalidParameterException',
    'UnsupportedDocumentException',
    'BadDocumentException',
    'DocumentTooLargeException',
}
AUTH_CODES = {
    'AccessDeniedException',
    'UnrecognizedClientException',
    'InvalidSignatureException',
    'ExpiredTokenException',
    'InvalidClientTokenId',
}


def map_textract_error(error: Exception) -> ProviderError:
    """
    Map a boto3/botocore exception onto the uniform ProviderError taxonomy.

    Args:
        error: Exception raised by the Textract client

    Returns:
        ProviderError subclass carrying the original message
    """
    message = str(error)

    if isinstance(error, (ReadTimeoutError, ConnectTimeoutError)):
        return provider_error(ProviderErrorKind.TIMEOUT, message, PROVIDER_TEXTRACT)

    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return provider_error(ProviderErrorKind.AUTH_ERROR, message, PROVIDER_TEXTRACT)

    if isinstance(error, EndpointConnectionError):
        return provider_error(ProviderErrorKind.UNAVAILABLE, message, PROVIDER_TEXTRACT)

    if isinstance(error, ClientError):
        code = (error.response.get('Error') or {}).get('Code', '')
        if code in RATE_LIMIT_CODES:
            kind = ProviderErrorKind.RATE_LIMITED
        elif code in INVALID_IMAGE_CODES:
            kind = ProviderErrorKind.INVALID_IMAGE
        elif code in AUTH_CODES:
            kind = ProviderErrorKind.AUTH_ERROR
        else:
            kind = ProviderErrorKind.UNAVAILABLE
        return provider_error(kind, message, PROVIDER_TEXTRACT)

    return provider_error(ProviderErrorKind.UNAVAILABLE, message, PROVIDER_TEXTRACT)


class TextractProvider:
    """
    AWS Textract OCR provider.

    One DetectDocumentText call per recognize(); botocore retries are disabled
    so the orchestrator alone decides about escalation.
    """

    name = PROVIDER_TEXTRACT

    def __init__(
        self,
        aws_region: str = "us-east-1",
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        timeout_ms: int = 30000,
        client=None,
    ):
        """
        Initialize Textract provider.

        Args:
            aws_region: AWS region for Textract API
            aws_access_key_id: AWS access key (default credential chain if None)
            aws_secret_access_key: AWS secret key (default credential chain if None)
            timeout_ms: Socket connect/read timeout for the client
            client: Pre-built Textract client (tests)
        """
        if client is None:
            timeout_s = max(1, timeout_ms // 1000)
            client = boto3.client(
                'textract',
                region_name=aws_region,
                aws_access_key_id=aws_access_key_id,
                aws_secret_access_key=aws_secret_access_key,
                config=Config(
                    connect_timeout=timeout_s,
                    read_timeout=timeout_s,
                    retries={'total_max_attempts': 1, 'mode': 'standard'},
                ),
            )
        self.textract = client
        self.region = aws_region
        logger.info("textract_provider_initialized", region=aws_region)

    def _prepare_image(self, image: bytes) -> bytes:
        """Convert HEIC/HEIF to JPEG; other formats pass through untouched"""
        try:
            with Image.open(io.BytesIO(image)) as img:
                if (img.format or '').upper() not in HEIF_FORMATS:
                    return image

                logger.info("converting_heic_to_jpg", size_bytes=len(image))
                buffer = io.BytesIO()
                img.convert('RGB').save(buffer, format='JPEG', quality=95)
                return buffer.getvalue()
        except UnidentifiedImageError:
            # Not an image Pillow knows (e.g. PDF) - Textract decides
            return image
        except OSError as e:
            raise provider_error(
                ProviderErrorKind.INVALID_IMAGE,
                f"Could not convert HEIC image: {e}",
                self.name,
            ) from e

    def _detect(self, image_bytes: bytes) -> dict:
        return self.textract.detect_document_text(Document={'Bytes': image_bytes})

    def _prepare_and_detect(self, image: bytes) -> dict:
        """HEIC conversion and the Textract call, both on the worker thread"""
        image_bytes = self._prepare_image(image)
        logger.info("textract_request_prepared", size_bytes=len(image_bytes))
        return self._detect(image_bytes)

    async def recognize(self, image: bytes, timeout_ms: int) -> ProviderResponse:
        """
        Recognize text using AWS Textract.

        Args:
            image: Raw image bytes
            timeout_ms: Per-call timeout (enforced by the orchestrator and the client config)

        Returns:
            ProviderResponse with LINE text, mean LINE confidence and bounding boxes

        Raises:
            ProviderError: Mapped Textract/botocore failure
        """
        start = time.monotonic()
        logger.info("calling_textract", size_bytes=len(image), timeout_ms=timeout_ms)

        try:
            response = await asyncio.to_thread(self._prepare_and_detect, image)
        except (ClientError, BotoCoreError) as e:
            mapped = map_textract_error(e)
            logger.warning("textract_failed", kind=mapped.kind.value, error=str(e))
            raise mapped from e

        # Extract text, confidence, and bounding boxes from Textract response
        text_blocks = []
        confidences = []
        bounding_boxes = []

        for block in response.get('Blocks', []):
            if block.get('BlockType') != 'LINE':
                continue

            text_blocks.append(block.get('Text', ''))
            if 'Confidence' in block:
                confidences.append(block['Confidence'])

            # Capture bounding box (normalized 0-1 coordinates)
            if 'Geometry' in block:
                bbox = block['Geometry']['BoundingBox']
                bounding_boxes.append({
                    'text': block.get('Text', ''),
                    'confidence': block.get('Confidence', 0) / 100,
                    'left': bbox['Left'],
                    'top': bbox['Top'],
                    'width': bbox['Width'],
                    'height': bbox['Height']
                })

        text = '\n'.join(text_blocks)
        confidence = mean_confidence(confidences, scale=100)
        latency_ms = int((time.monotonic() - start) * 1000)

        logger.info("textract_complete",
                   chars=len(text),
                   lines=len(text_blocks),
                   confidence=confidence,
                   latency_ms=latency_ms)

        return ProviderResponse(
            raw_text=text,
            provider_confidence=confidence,
            latency_ms=latency_ms,
            provider=self.name,
            bounding_boxes=bounding_boxes,
        )
