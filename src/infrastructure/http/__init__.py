"""HTTP client infrastructure."""
from infrastructure.http.client import (
    HttpStatusError,
    fetch_bytes,
    fetch_range,
    make_http_session,
    redact_url,
)

__all__ = [
    'HttpStatusError',
    'fetch_bytes',
    'fetch_range',
    'make_http_session',
    'redact_url',
]
