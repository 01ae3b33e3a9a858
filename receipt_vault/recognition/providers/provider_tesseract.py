"""
Tesseract OCR Provider (local)

Free, on-box OCR used as the last link of the fallback chain when the paid
cloud providers are throttled or down. Requires the tesseract-ocr system
package.
"""
import asyncio
import io
import time
from typing import Dict, List, Optional, Tuple

import pytesseract
import structlog
from PIL import Image, UnidentifiedImageError

from receipt_vault.common.config import PROVIDER_TESSERACT
from receipt_vault.common.schemas.recognition import ProviderErrorKind
from receipt_vault.recognition.errors import provider_error
from receipt_vault.recognition.providers.base import ProviderResponse, mean_confidence

logger = structlog.get_logger()


def rebuild_text(data: Dict[str, list]) -> Tuple[str, List[float]]:
    """
    Rebuild line-oriented text from pytesseract image_to_data output.

    Words are grouped by (block, paragraph, line); a blank line separates blocks.

    Args:
        data: Dict output of image_to_data (Output.DICT)

    Returns:
        Tuple of (text, word confidences on the native 0-100 scale)
    """
    lines: List[str] = []
    confidences: List[float] = []
    current_key = None
    current_block = None
    words: List[str] = []

    for i, word in enumerate(data.get('text', [])):
        word = (word or '').strip()
        try:
            conf = float(data['conf'][i])
        except (KeyError, IndexError, TypeError, ValueError):
            conf = -1.0
        if not word or conf < 0:
            continue

        key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
        if key != current_key:
            if words:
                lines.append(' '.join(words))
            if current_block is not None and key[0] != current_block:
                lines.append('')
            current_key = key
            current_block = key[0]
            words = []

        words.append(word)
        confidences.append(conf)

    if words:
        lines.append(' '.join(words))

    return '\n'.join(lines), confidences


class TesseractProvider:
    """
    Tesseract OCR provider for receipt images.

    Runs a single image_to_data pass (page segmentation mode 6, one block of
    text) bounded by pytesseract's own process timeout.
    """

    name = PROVIDER_TESSERACT

    def __init__(self, tesseract_path: Optional[str] = None, config: str = '--psm 6'):
        """
        Initialize Tesseract provider.

        Args:
            tesseract_path: Path to tesseract binary (found on PATH if None)
            config: Extra tesseract CLI flags
        """
        if tesseract_path:
            pytesseract.pytesseract.tesseract_cmd = tesseract_path
        self.config = config
        logger.info("tesseract_provider_initialized", tesseract_path=tesseract_path)

    def _run(self, image: bytes, timeout_s: float) -> Dict[str, list]:
        with Image.open(io.BytesIO(image)) as img:
            img.load()
            return pytesseract.image_to_data(
                img,
                output_type=pytesseract.Output.DICT,
                config=self.config,
                timeout=timeout_s,
            )

    async def recognize(self, image: bytes, timeout_ms: int) -> ProviderResponse:
        """
        Recognize text using Tesseract.

        Args:
            image: Raw image bytes
            timeout_ms: Tesseract process timeout

        Returns:
            ProviderResponse with rebuilt text and mean word confidence

        Raises:
            ProviderError: InvalidImage for undecodable input, Timeout when the
                process is killed, Unavailable when tesseract is missing or fails
        """
        start = time.monotonic()
        logger.info("calling_tesseract", size_bytes=len(image), timeout_ms=timeout_ms)

        try:
            data = await asyncio.to_thread(self._run, image, timeout_ms / 1000)
        except UnidentifiedImageError as e:
            raise provider_error(ProviderErrorKind.INVALID_IMAGE, f"Cannot decode image: {e}", self.name) from e
        except pytesseract.TesseractNotFoundError as e:
            raise provider_error(ProviderErrorKind.UNAVAILABLE, str(e), self.name) from e
        except OSError as e:
            # Truncated or corrupt image data
            raise provider_error(ProviderErrorKind.INVALID_IMAGE, f"Cannot decode image: {e}", self.name) from e
        except pytesseract.TesseractError as e:
            raise provider_error(ProviderErrorKind.UNAVAILABLE, f"Tesseract failed: {e}", self.name) from e
        except RuntimeError as e:
            # pytesseract kills the process and raises RuntimeError on timeout
            if 'timeout' in str(e).lower():
                raise provider_error(ProviderErrorKind.TIMEOUT, str(e), self.name) from e
            raise provider_error(ProviderErrorKind.UNAVAILABLE, str(e), self.name) from e

        text, confidences = rebuild_text(data)
        confidence = mean_confidence(confidences, scale=100)
        latency_ms = int((time.monotonic() - start) * 1000)

        logger.info("tesseract_complete",
                   chars=len(text),
                   words=len(confidences),
                   confidence=confidence,
                   latency_ms=latency_ms)

        return ProviderResponse(
            raw_text=text,
            provider_confidence=confidence,
            latency_ms=latency_ms,
            provider=self.name,
        )
