"""
Authentication Routes
=====================
Register, login, refresh, logout, current user and password changes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from irb_portal.auth.authentication import AuthService
from irb_portal.config import settings
from irb_portal.core.csrf import clear_csrf_cookie, generate_csrf_token, set_csrf_cookie
from irb_portal.core.rate_limit import API_LIMIT, AUTH_LIMIT, READ_ONLY_LIMIT, WRITE_LIMIT, limiter
from irb_portal.core.security import extract_token, get_current_user, get_optional_user, security
from irb_portal.database.models import User
from irb_portal.database.session import get_db
from irb_portal.models.schemas import (
    ChangePasswordRequest, CSRFTokenResponse, LoginRequest, MessageResponse, RefreshRequest,
    RegisterRequest, RegisterResponse, TokenResponse, UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()
csrf_router = APIRouter()


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def _token_response(result: dict, csrf_token: Optional[str] = None) -> TokenResponse:
    return TokenResponse(
        user=UserResponse.model_validate(result["user"]),
        token=result["access_token"],
        refresh_token=result["refresh_token"],
        token_type=result["token_type"],
        expires_in=result["expires_in"],
        csrf_token=csrf_token,
        message=result.get("message", "Token refreshed"),
        password_expired=result.get("password_expired", False),
    )


@router.post("/register", response_model=RegisterResponse, status_code=201)
@limiter.limit(AUTH_LIMIT)
async def register(request: Request, body: RegisterRequest, db: Session = Depends(get_db)):
    """Self-registration. New accounts are researchers pending approval."""
    user = AuthService(db).register(
        body.email, body.password, body.first_name, body.last_name, request=request
    )
    message = (
        "Registration successful"
        if user.is_approved
        else "Registration successful. Your account is pending administrator approval."
    )
    return RegisterResponse(user=UserResponse.model_validate(user), message=message)


@router.post("/login", response_model=TokenResponse)
@limiter.limit(AUTH_LIMIT)
async def login(request: Request, response: Response, body: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate and start a session (bearer token plus httpOnly cookie)."""
    result = AuthService(db).authenticate(body.email, body.password, request=request)

    csrf_token = generate_csrf_token()
    set_auth_cookie(response, result["access_token"])
    set_csrf_cookie(response, csrf_token)
    return _token_response(result, csrf_token)


@router.post("/refresh", response_model=TokenResponse)
@limiter.limit(AUTH_LIMIT)
async def refresh_token(request: Request, response: Response, body: RefreshRequest,
                        db: Session = Depends(get_db)):
    """Exchange a refresh token for a new token pair."""
    result = AuthService(db).refresh(body.refresh_token)
    set_auth_cookie(response, result["access_token"])
    return _token_response(result)


@router.post("/logout", response_model=MessageResponse)
@limiter.limit(API_LIMIT)
async def logout(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = Body(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Revoke the session tokens and clear cookies. Always succeeds."""
    token, _ = extract_token(request, credentials)
    tokens = [token, body.refresh_token if body else None]
    AuthService(db).logout(current_user, tokens, request=request)

    response.delete_cookie(key=settings.AUTH_COOKIE_NAME, path="/")
    clear_csrf_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_me(request: Request, current_user: User = Depends(get_current_user)):
    """Get current user info."""
    return UserResponse.model_validate(current_user)


@router.post("/change-password", response_model=MessageResponse)
@limiter.limit(WRITE_LIMIT)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    AuthService(db).change_password(
        current_user, body.current_password, body.new_password, request=request
    )
    return MessageResponse(message="Password changed successfully")


@csrf_router.get("/csrf", response_model=CSRFTokenResponse)
@limiter.limit(API_LIMIT)
async def get_csrf_token(request: Request, response: Response):
    """Issue a fresh CSRF token and set it as a cookie."""
    token = generate_csrf_token()
    set_csrf_cookie(response, token)
    return CSRFTokenResponse(csrf_token=token)
