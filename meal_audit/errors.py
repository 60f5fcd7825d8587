# meal_audit/errors.py
"""
Error taxonomy for meal analysis.

The orchestrator reduces every failure it cannot absorb to one of four kinds,
so callers can branch on a small closed set instead of transport details.
Cache failures never appear here: caching is best-effort.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


class AnalysisError(Exception):
    """Base class for classified analysis failures"""

    kind: ErrorKind = ErrorKind.TRANSPORT_ERROR
    status_code: int = 503
    retryable: bool = True

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }


class ConfigurationError(AnalysisError):
    """Inference client cannot be built (e.g. missing or rejected API key)"""

    kind = ErrorKind.CONFIGURATION_ERROR
    status_code = 503
    retryable = False


class RateLimitedError(AnalysisError):
    kind = ErrorKind.RATE_LIMITED
    status_code = 429
    retryable = True


class MalformedResponseError(AnalysisError):
    kind = ErrorKind.MALFORMED_RESPONSE
    status_code = 502
    retryable = True


class TransportError(AnalysisError):
    kind = ErrorKind.TRANSPORT_ERROR
    status_code = 503
    retryable = True

