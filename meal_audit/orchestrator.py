# meal_audit/orchestrator.py
"""
Single entry point for meal analysis.

analyze() runs: fingerprint -> cache lookup -> (miss) remote call ->
normalize -> best-effort cache write. Cached entries were normalized before
they were written, so a hit is returned as is.

Calls are independent. Two concurrent misses for the same image both reach
the service and both write the entry; the last write wins. The orchestrator
never retries on its own: a retry is the user submitting the photo again.
"""

import logging
import re
from enum import Enum
from typing import Callable, Optional, Union

import httpx

from meal_audit.cache import ResultCache
from meal_audit.errors import (
    AnalysisError,
    ConfigurationError,
    MalformedResponseError,
    RateLimitedError,
    TransportError,
)
from meal_audit.hashing import fingerprint
from meal_audit.normalizer import normalize_analysis
from meal_audit.openrouter_client import InferenceClient, OpenRouterError, OpenRouterResponseError
from meal_audit.schemas import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES, AnalysisResult

logger = logging.getLogger(__name__)

# Only consulted when the failure carries no HTTP status code
RATE_LIMIT_PATTERN = re.compile(
    r"\b(429|rate[ _-]?limit(?:ed|s)?|quota|resource_exhausted|too many requests)\b",
    re.IGNORECASE,
)
AUTH_STATUS_CODES = {401, 403}


class AnalysisState(str, Enum):
    PENDING = "PENDING"
    CACHE_HIT = "CACHE_HIT"
    CALLING_SERVICE = "CALLING_SERVICE"
    NORMALIZING = "NORMALIZING"
    DONE = "DONE"
    FAILED = "FAILED"


def classify_error(exc: BaseException) -> AnalysisError:
    """Map any failure from the client or normalizer onto the error taxonomy."""
    if isinstance(exc, AnalysisError):
        return exc

    message = str(exc) or type(exc).__name__
    status_code = getattr(exc, "status_code", None)
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code

    if status_code is not None:
        rate_limited = status_code == 429
    else:
        rate_limited = RATE_LIMIT_PATTERN.search(message) is not None

    if rate_limited:
        return RateLimitedError(
            "The analysis service is rate limited. Wait a moment and try again.",
            details={"upstream": message},
        )

    if status_code in AUTH_STATUS_CODES:
        return ConfigurationError(
            "The analysis service rejected the configured credentials. Check OPENROUTER_API_KEY.",
            details={"upstream": message},
        )

    if isinstance(exc, OpenRouterResponseError):
        return MalformedResponseError(message)

    if isinstance(exc, (OpenRouterError, httpx.HTTPError, OSError)):
        return TransportError(
            "The analysis service is unavailable. Please try again.",
            details={"upstream": message},
        )

    logger.error("Unclassified analysis failure: %s", message, exc_info=exc)
    return TransportError("Analysis failed unexpectedly. Please try again.", details={"upstream": message})


def resolve_language(language: Optional[str]) -> str:
    code = (language or "").strip().lower()
    if code in SUPPORTED_LANGUAGES:
        return code
    logger.warning("Unsupported display language %r, using %s", language, DEFAULT_LANGUAGE)
    return DEFAULT_LANGUAGE


class AnalysisOrchestrator:
    """
    Coordinates cache, inference client and normalizer.

    Pass either a ready ``client`` or a ``client_factory``. The factory runs
    on the first cache miss, so missing credentials fail that call with
    CONFIGURATION_ERROR instead of failing at import time; a factory that
    failed is tried again on the next call.
    """

    def __init__(
        self,
        cache: ResultCache,
        client: Optional[InferenceClient] = None,
        client_factory: Optional[Callable[[], InferenceClient]] = None,
    ):
        if client is None and client_factory is None:
            raise ValueError("AnalysisOrchestrator needs a client or a client_factory")
        self.cache = cache
        self._client = client
        self._client_factory = client_factory

    def _get_client(self) -> InferenceClient:
        if self._client is None:
            try:
                self._client = self._client_factory()
            except ConfigurationError:
                raise
            except Exception as e:
                raise ConfigurationError(f"Inference client could not be created: {e}")
        return self._client

    def _transition(self, state: AnalysisState, image_fp: str) -> None:
        logger.debug("Analysis state %s", state.value, extra={"state": state.value, "fingerprint": image_fp})

    async def analyze(
        self,
        image: Union[str, bytes],
        display_language: str = DEFAULT_LANGUAGE,
        mime_type: str = "image/jpeg",
    ) -> AnalysisResult:
        """
        Analyze one meal photo.

        ``display_language`` does not change what is fetched, cached or
        returned: every result carries all supported languages, and picking
        one is left to the caller. It is only validated (unknown codes fall
        back to English) and recorded in the failure log.

        Raises:
            AnalysisError: one of ConfigurationError, RateLimitedError,
                MalformedResponseError, TransportError
        """
        result, _ = await self.analyze_with_status(image, display_language, mime_type)
        return result

    async def analyze_with_status(
        self,
        image: Union[str, bytes],
        display_language: str = DEFAULT_LANGUAGE,
        mime_type: str = "image/jpeg",
    ) -> tuple[AnalysisResult, bool]:
        """Same as analyze(); also returns whether the result came from the cache."""
        language = resolve_language(display_language)
        try:
            image_fp = fingerprint(image)
        except Exception as e:
            raise classify_error(e) from e

        self._transition(AnalysisState.PENDING, image_fp)

        cached = self.cache.get(image_fp)
        if cached is not None:
            self._transition(AnalysisState.CACHE_HIT, image_fp)
            logger.info(
                "Analysis served from cache",
                extra={"fingerprint": image_fp, "cache": "HIT"},
            )
            return cached, True

        self._transition(AnalysisState.CALLING_SERVICE, image_fp)
        try:
            raw = await self._get_client().analyze_image(image, mime_type=mime_type)
            self._transition(AnalysisState.NORMALIZING, image_fp)
            result = normalize_analysis(raw)
        except Exception as e:
            error = classify_error(e)
            self._transition(AnalysisState.FAILED, image_fp)
            logger.warning(
                "Analysis failed: %s",
                error.message,
                extra={"fingerprint": image_fp, "kind": error.kind.value, "language": language},
            )
            if error is e:
                raise
            raise error from e

        self.cache.put(image_fp, result)
        self._transition(AnalysisState.DONE, image_fp)
        logger.info(
            "Analysis completed",
            extra={"fingerprint": image_fp, "cache": "MISS", "items": len(result.items)},
        )
        return result, False
