"""
Fallback Orchestrator - drives the ordered provider chain

Policy:
- Providers are tried strictly one after another, never raced in parallel
  (one paid API call per receipt in the common case).
- First success wins; later providers are not called.
- RateLimited / Unavailable / Timeout / AuthError: record and move on.
- InvalidImage: stop. The image is the problem, not the provider.
- Every call is bounded by the per-provider timeout; expiry cancels the call.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

import structlog

from receipt_vault.common.config import DEFAULT_PROVIDER_TIMEOUT_MS
from receipt_vault.common.schemas.recognition import ProviderErrorKind, RecognitionState
from receipt_vault.recognition.errors import AllProvidersFailed, ProviderError, provider_error
from receipt_vault.recognition.providers.base import ProviderAdapter, ProviderResponse

logger = structlog.get_logger()


@dataclass
class ChainOutcome:
    """
    What happened across one fallback chain.

    Attributes:
        response: Successful provider response (None if the chain failed)
        provider: Name of the provider that succeeded
        state: CALLING hand-off state on success, FAILED otherwise
        fallback_used: True if any provider before the successful one failed
        primary_error: Message of the first provider's failure
        provider_errors: Provider name to failure message, in attempt order
        provider_error_kinds: Provider name to failure kind
        stopped_on: Kind that ended the chain early (InvalidImage) if any
        attempts: Provider names actually attempted, in order
        elapsed_ms: Wall-clock time spent in the chain
    """
    response: Optional[ProviderResponse] = None
    provider: Optional[str] = None
    state: RecognitionState = RecognitionState.PENDING
    fallback_used: bool = False
    primary_error: Optional[str] = None
    provider_errors: Dict[str, str] = field(default_factory=dict)
    provider_error_kinds: Dict[str, ProviderErrorKind] = field(default_factory=dict)
    stopped_on: Optional[ProviderErrorKind] = None
    attempts: List[str] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.response is not None

    def record_failure(self, name: str, error: ProviderError) -> None:
        if self.primary_error is None:
            self.primary_error = error.message
        self.provider_errors[name] = error.message
        self.provider_error_kinds[name] = error.kind

    def failure(self) -> AllProvidersFailed:
        return AllProvidersFailed(
            provider_errors=dict(self.provider_errors),
            provider_error_kinds=dict(self.provider_error_kinds),
            primary_error=self.primary_error,
        )


class FallbackOrchestrator:
    """
    Runs the ordered list of provider adapters until one succeeds.

    Holds only read-only configuration; each run() builds its own ChainOutcome,
    so concurrent requests share nothing mutable.
    """

    def __init__(
        self,
        adapters: Mapping[str, ProviderAdapter],
        provider_order: Sequence[str],
        timeout_ms: int = DEFAULT_PROVIDER_TIMEOUT_MS,
    ):
        """
        Initialize orchestrator.

        Args:
            adapters: Provider name to adapter
            provider_order: Default priority order
            timeout_ms: Default per-provider timeout
        """
        if not provider_order:
            raise ValueError("At least one OCR provider must be configured")
        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")

        self.adapters = dict(adapters)
        self.provider_order = tuple(dict.fromkeys(provider_order))
        self.timeout_ms = timeout_ms

    async def _call(self, name: str, image: bytes, timeout_ms: int) -> ProviderResponse:
        """Single bounded provider call; every failure comes back as ProviderError"""
        adapter = self.adapters.get(name)
        if adapter is None:
            raise provider_error(ProviderErrorKind.UNAVAILABLE, f"OCR provider '{name}' is not configured", name)

        try:
            return await asyncio.wait_for(adapter.recognize(image, timeout_ms), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise provider_error(
                ProviderErrorKind.TIMEOUT,
                f"{name} request timeout after {timeout_ms}ms",
                name,
            ) from e
        except ProviderError as e:
            if e.provider is None:
                e.provider = name
            raise
        except Exception as e:
            # Adapter bug or unmapped vendor fault; do not let it break the chain
            logger.error("ocr_provider_unexpected_error",
                        provider=name,
                        error=str(e),
                        exc_info=True)
            raise provider_error(ProviderErrorKind.UNAVAILABLE, f"{name} failed: {e}", name) from e

    async def run(
        self,
        image: bytes,
        provider_order: Optional[Sequence[str]] = None,
        timeout_ms: Optional[int] = None,
    ) -> ChainOutcome:
        """
        Attempt providers in order until one succeeds.

        Args:
            image: Raw image bytes
            provider_order: Per-request override of the configured order
            timeout_ms: Per-request override of the per-provider timeout

        Returns:
            ChainOutcome describing the successful response or the failures
        """
        # Each provider is attempted at most once per request
        order = tuple(dict.fromkeys(provider_order)) if provider_order else self.provider_order
        timeout_ms = timeout_ms or self.timeout_ms
        outcome = ChainOutcome()
        start = time.monotonic()

        logger.info("ocr_chain_started", providers=list(order), timeout_ms=timeout_ms,
                   state=RecognitionState.PENDING.value)

        for index, name in enumerate(order):
            outcome.state = RecognitionState.CALLING
            outcome.attempts.append(name)
            logger.info("ocr_provider_calling", provider=name, position=index,
                       state=RecognitionState.CALLING.value)

            try:
                response = await self._call(name, image, timeout_ms)
            except ProviderError as e:
                outcome.record_failure(name, e)
                logger.warning("ocr_provider_failed",
                              provider=name,
                              kind=e.kind.value,
                              error=e.message,
                              retryable=e.retryable)

                if not e.retryable:
                    outcome.stopped_on = e.kind
                    break

                continue

            outcome.response = response
            outcome.provider = name
            outcome.fallback_used = index > 0
            outcome.elapsed_ms = int((time.monotonic() - start) * 1000)

            logger.info("ocr_provider_succeeded",
                       provider=name,
                       fallback_used=outcome.fallback_used,
                       confidence=response.provider_confidence,
                       latency_ms=response.latency_ms)
            return outcome

        outcome.state = RecognitionState.FAILED
        outcome.fallback_used = len(outcome.attempts) > 1
        outcome.elapsed_ms = int((time.monotonic() - start) * 1000)

        logger.error("ocr_chain_exhausted" if outcome.stopped_on is None else "ocr_chain_stopped",
                    attempts=outcome.attempts,
                    provider_errors=outcome.provider_errors,
                    stopped_on=outcome.stopped_on.value if outcome.stopped_on else None,
                    state=RecognitionState.FAILED.value)
        return outcome
