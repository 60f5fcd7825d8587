# meal_audit/hashing.py
"""
Content fingerprints for cache keys.

The digest covers the whole payload. Hashing only a prefix lets two different
photos that share leading bytes (same JPEG header, same camera) return each
other's nutrition data.
"""

import hashlib
import logging
from typing import Union

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = "simple_"
_DJB2_SEED = 5381
_DJB2_MASK = 0xFFFFFFFFFFFFFFFF  # 64-bit


def _as_bytes(payload: Union[str, bytes]) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


def djb2_digest(data: bytes) -> str:
    """Non-cryptographic rolling hash (h * 33 + byte), 64-bit, lowercase hex."""
    h = _DJB2_SEED
    for byte in data:
        h = ((h << 5) + h + byte) & _DJB2_MASK
    return f"{h:016x}"


def fingerprint(payload: Union[str, bytes], algorithm: str = "sha256") -> str:
    """
    Fingerprint an image payload (raw bytes or its base64 text).

    Returns the lowercase hex digest of ``algorithm``. When the primitive is
    not available in this interpreter (e.g. restricted OpenSSL builds), falls
    back to a DJB2 hash prefixed with ``simple_`` so the two key spaces never
    overlap.
    """
    data = _as_bytes(payload)
    try:
        digest = hashlib.new(algorithm)
    except (ValueError, TypeError) as e:
        logger.warning("Hash algorithm %s unavailable (%s), using fallback hash", algorithm, e)
        return FALLBACK_PREFIX + djb2_digest(data)

    digest.update(data)
    return digest.hexdigest()
