"""
CSRF Protection
===============
Double-submit cookie: the csrf cookie must match the X-CSRF-Token header on
state-changing requests that authenticate with the session cookie.
"""

import hmac
import logging
import secrets

from fastapi import Request, Response

from irb_portal.config import settings
from .errors import CSRFError

logger = logging.getLogger(__name__)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def set_csrf_cookie(response: Response, token: str) -> None:
    # Readable by the browser so the client can echo it back in the header
    response.set_cookie(
        key=settings.CSRF_COOKIE_NAME,
        value=token,
        max_age=settings.CSRF_COOKIE_MAX_AGE,
        httponly=False,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


def clear_csrf_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.CSRF_COOKIE_NAME, path="/")


def tokens_match(cookie_token: str, header_token: str) -> bool:
    if not cookie_token or not header_token:
        return False
    return hmac.compare_digest(cookie_token.encode(), header_token.encode())


def validate_csrf(request: Request) -> None:
    """Raise CSRFError when an unsafe request lacks a matching token pair."""
    if not settings.CSRF_ENABLED or request.method.upper() in SAFE_METHODS:
        return

    cookie_token = request.cookies.get(settings.CSRF_COOKIE_NAME, "")
    header_token = request.headers.get(settings.CSRF_HEADER_NAME, "")
    if not tokens_match(cookie_token, header_token):
        logger.warning(f"CSRF validation failed for {request.method} {request.url.path}")
        raise CSRFError()
