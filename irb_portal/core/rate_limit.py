"""
Rate Limiting
=============
slowapi limiter keyed by client identity, with fixed 15 minute windows.

Presets:
    AUTH_LIMIT       login/register/refresh
    API_LIMIT        general API calls
    READ_ONLY_LIMIT  list/detail/export reads
    WRITE_LIMIT      create/update/delete
"""

import logging
import math
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from irb_portal.config import settings
from irb_portal.core.errors import RateLimitError

logger = logging.getLogger(__name__)

AUTH_LIMIT = settings.RATE_LIMIT_AUTH
API_LIMIT = settings.RATE_LIMIT_API
READ_ONLY_LIMIT = settings.RATE_LIMIT_READ_ONLY
WRITE_LIMIT = settings.RATE_LIMIT_WRITE


def client_identifier(request: Request) -> str:
    """
    Key for rate-limit buckets.

    Order: first X-Forwarded-For hop, X-Real-IP, a slice of the session token,
    then the socket peer address.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("authorization", "")
        token = auth_header.split(" ", 1)[1] if auth_header.lower().startswith("bearer ") else auth_header
    if token:
        # JWT headers are identical across users; the signature tail is not
        return f"auth:{token[-20:]}"

    return get_remote_address(request) or "unknown"


limiter = Limiter(
    key_func=client_identifier,
    enabled=settings.RATE_LIMIT_ENABLED,
    storage_uri="memory://",
    headers_enabled=False,
)


def _window(request: Request):
    """(limit, remaining, reset_epoch) for the limit that was hit, if slowapi recorded one."""
    current = getattr(request.state, "view_rate_limit", None)
    if not current:
        return None
    item, args = current
    reset_time, remaining = limiter.limiter.get_window_stats(item, *args)
    return item.amount, remaining, reset_time


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 body and headers for an exhausted window."""
    now = time.time()
    window = _window(request)
    if window is not None:
        amount, _, reset_time = window
    else:
        amount, reset_time = exc.limit.limit.amount, now + exc.limit.limit.get_expiry()

    retry_after = max(1, math.ceil(reset_time - now))
    logger.warning(f"Rate limit {exc.detail} exceeded by {client_identifier(request)} on {request.url.path}")

    error = RateLimitError(headers={
        "Retry-After": str(retry_after),
        "X-RateLimit-Limit": str(amount),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(int(reset_time)),
    })
    body = error.to_dict()
    body["message"] = f"Rate limit exceeded. Try again in {retry_after} seconds."
    body["retry_after"] = retry_after
    return JSONResponse(status_code=error.status_code, content=body, headers=error.headers)
