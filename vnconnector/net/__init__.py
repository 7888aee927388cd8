"""
Network layer: rate limiting, backoff and the FastConnect HTTP transport.
"""

from .throttler import (
    RateLimit,
    Throttler,
    ExponentialBackoff,
)

from .transport import (
    Endpoint,
    ENDPOINTS,
    HttpTransport,
    Transport,
    TokenProvider,
    sanitize_payload,
)

from .envelope import (
    SUCCESS_STATUSES,
    decode,
    ensure_success,
    extract_payload,
    unwrap,
    as_records,
)

__all__ = [
    "SUCCESS_STATUSES",
    "decode",
    "ensure_success",
    "extract_payload",
    "unwrap",
    "as_records",
    "RateLimit",
    "Throttler",
    "ExponentialBackoff",
    "Endpoint",
    "ENDPOINTS",
    "HttpTransport",
    "Transport",
    "TokenProvider",
    "sanitize_payload",
]
