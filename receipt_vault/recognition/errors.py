"""
Recognition error taxonomy

Every provider adapter maps its vendor-specific faults onto one of five
ProviderError kinds. The orchestrator only ever looks at the kind.
"""
from typing import Dict, Optional

from receipt_vault.common.schemas.recognition import ProviderErrorKind


class ProviderError(Exception):
    """
    A single provider call failed.

    Attributes:
        kind: Uniform failure kind
        provider: Name of the provider that failed
        message: Human-readable description (stored on the result)
    """
    kind: ProviderErrorKind = ProviderErrorKind.UNAVAILABLE

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider

    @property
    def retryable(self) -> bool:
        """An unusable image fails at every provider, so it is never escalated"""
        return self.kind != ProviderErrorKind.INVALID_IMAGE

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, provider={self.provider!r}, message={self.message!r})"


class RateLimitedError(ProviderError):
    """Quota or throttling limit hit"""
    kind = ProviderErrorKind.RATE_LIMITED


class ProviderUnavailableError(ProviderError):
    """Provider unreachable, erroring, or not configured"""
    kind = ProviderErrorKind.UNAVAILABLE


class ProviderTimeoutError(ProviderError):
    """Call exceeded the per-provider timeout"""
    kind = ProviderErrorKind.TIMEOUT


class InvalidImageError(ProviderError):
    """Provider rejected the image itself (corrupt, unsupported, too large)"""
    kind = ProviderErrorKind.INVALID_IMAGE


class ProviderAuthError(ProviderError):
    """Credentials missing, expired, or rejected"""
    kind = ProviderErrorKind.AUTH_ERROR


_ERROR_CLASSES = {
    cls.kind: cls
    for cls in (RateLimitedError, ProviderUnavailableError, ProviderTimeoutError, InvalidImageError, ProviderAuthError)
}


def provider_error(kind: ProviderErrorKind, message: str, provider: Optional[str] = None) -> ProviderError:
    """Build the ProviderError subclass for a kind"""
    return _ERROR_CLASSES[kind](message, provider=provider)


class AllProvidersFailed(Exception):
    """
    Every attempted provider failed (or the chain stopped on an invalid image).

    Surfaced to the caller as an OCRResult with success=False rather than raised
    across the engine boundary.
    """

    def __init__(
        self,
        provider_errors: Dict[str, str],
        provider_error_kinds: Dict[str, ProviderErrorKind],
        primary_error: Optional[str] = None,
    ):
        self.provider_errors = provider_errors
        self.provider_error_kinds = provider_error_kinds
        self.primary_error = primary_error
        super().__init__(f"All OCR providers failed: {provider_errors}")

    @property
    def invalid_image(self) -> bool:
        return ProviderErrorKind.INVALID_IMAGE in self.provider_error_kinds.values()
