# middleware/rate_limit.py
"""
Per-client rate limiting for the analysis API (slowapi).

Every analysis costs a grounded model call, so the analysis route carries
its own tighter limit on top of the default:

    @router.post("")
    @limiter.limit(ANALYSIS_RATE_LIMIT)
    async def run_analysis(request: Request, ...):
        ...
"""
import logging
import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
ANALYSIS_RATE_LIMIT = os.getenv("ANALYSIS_RATE_LIMIT", "10/minute")


def _get_rate_limit_key(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    return get_remote_address(request)


limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
    enabled=os.getenv("RATE_LIMIT_ENABLED", "1").lower() in ("1", "true", "yes"),
)
