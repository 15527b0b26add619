"""
Security Module - Request Authentication & Permission Dependencies
"""
import logging
from typing import Optional, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.auth.jwt_handler import get_jwt_handler
from irb_portal.config import settings
from irb_portal.database.models import User
from irb_portal.database.session import get_db
from .csrf import validate_csrf
from .errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

# Bearer token security - auto_error=False so the cookie can be tried next
security = HTTPBearer(auto_error=False)


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Tuple[Optional[str], bool]:
    """Return (token, came_from_cookie). The Authorization header wins over the cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials, False
    cookie_token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if cookie_token:
        return cookie_token, True
    return None, False


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the authenticated, active and approved user for this request."""
    token, from_cookie = extract_token(request, credentials)
    if token is None:
        raise AuthenticationError("Not authenticated", headers={"WWW-Authenticate": "Bearer"})

    claims = get_jwt_handler().decode_token(token, token_type="access")

    user = db.get(User, claims["sub"])
    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    if not user.is_approved:
        raise AuthorizationError("Account is pending approval.", code="ACCOUNT_PENDING")

    # Cookie sessions ride along automatically with cross-site requests
    if from_cookie:
        validate_csrf(request)

    request.state.user = user
    return user


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Like get_current_user, but anonymous or invalid sessions resolve to None."""
    token, _ = extract_token(request, credentials)
    if token is None:
        return None
    try:
        claims = get_jwt_handler().decode_token(token, token_type="access")
    except AuthenticationError:
        return None
    return db.get(User, claims["sub"])


def require_permission(*permissions):
    """Dependency requiring every listed permission."""
    def permission_checker(current_user: User = Depends(get_current_user)) -> User:
        rbac = get_rbac_authorizer()
        for permission in permissions:
            rbac.require_permission(current_user, permission)
        return current_user
    return permission_checker

