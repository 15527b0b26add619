"""
IRB PORTAL - Authentication Service
===================================
Login with account lockout, registration, token refresh and password changes.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from irb_portal.config import settings
from irb_portal.core.errors import (
    AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError,
)
from irb_portal.database.enums import AuditAction, EntityType
from irb_portal.database.models import Role, User
from .audit import get_audit_logger
from .jwt_handler import get_jwt_handler
from .models import RoleName, is_locked
from .password import PasswordPolicy, get_password_handler

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """
    Authentication service.

    Features:
    - Login with account lockout
    - JWT token pairs
    - Account creation shared by self-registration and user management
    - Password changes with policy enforcement
    """

    MAX_FAILED_ATTEMPTS = settings.MAX_FAILED_LOGIN_ATTEMPTS
    LOCKOUT_DURATION = timedelta(minutes=settings.LOCKOUT_MINUTES)

    def __init__(self, session: Session):
        self.session = session
        self.jwt_handler = get_jwt_handler()
        self.password_handler = get_password_handler()
        self.audit = get_audit_logger()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.session.execute(
            select(User).where(User.email == normalize_email(email))
        ).unique().scalar_one_or_none()

    def get_role(self, name: str) -> Role:
        role = self.session.execute(select(Role).where(Role.name == name)).scalar_one_or_none()
        if role is None:
            raise NotFoundError(f"Role '{name}'")
        return role

    def issue_tokens(self, user: User) -> Dict[str, Any]:
        return self.jwt_handler.create_token_pair(user.id, user.email, user.role_name)

    # -------------------------------------------------------------------------
    # Login
    # -------------------------------------------------------------------------

    def authenticate(self, email: str, password: str, request=None) -> Dict[str, Any]:
        """
        Authenticate a user with email and password.

        Failed attempts are committed before the error is raised so lockout
        counting survives the request.

        Returns:
            Dict with user, token pair and a message
        """
        user = self.get_user_by_email(email)

        if user is None:
            logger.warning(f"Login attempt for non-existent user: {email}")
            self.audit.log(self.session, None, AuditAction.LOGIN_FAILED, EntityType.USER,
                           details={"email": normalize_email(email), "reason": "unknown_user"},
                           request=request)
            self.session.commit()
            raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

        now = datetime.utcnow()
        if is_locked(user, now):
            remaining = (user.locked_until - now).total_seconds() / 60
            logger.warning(f"Login attempt for locked account: {user.email}")
            raise AuthenticationError(
                f"Account is locked. Try again in {remaining:.0f} minutes.",
                code="ACCOUNT_LOCKED",
            )

        if not self.password_handler.verify_password(password, user.password_hash):
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
            details = {"reason": "bad_password", "attempts": user.failed_login_attempts}

            if user.failed_login_attempts >= self.MAX_FAILED_ATTEMPTS:
                user.locked_until = now + self.LOCKOUT_DURATION
                details["locked_until"] = user.locked_until.isoformat()
                logger.warning(f"Account locked after {self.MAX_FAILED_ATTEMPTS} failed attempts: {user.email}")

            self.audit.log(self.session, user, AuditAction.LOGIN_FAILED, EntityType.USER, user.id,
                           details=details, request=request)
            self.session.commit()

            if user.locked_until and user.locked_until > now:
                raise AuthenticationError(
                    "Account locked due to too many failed attempts.", code="ACCOUNT_LOCKED"
                )
            raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

        if not user.is_active:
            logger.warning(f"Login attempt for inactive account: {user.email}")
            raise AuthorizationError("Account is deactivated. Contact administrator.", code="ACCOUNT_INACTIVE")

        if not user.is_approved:
            raise AuthorizationError("Account is pending approval.", code="ACCOUNT_PENDING")

        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login = now
        self.audit.log(self.session, user, AuditAction.LOGIN, EntityType.USER, user.id, request=request)
        self.session.commit()

        result: Dict[str, Any] = {"user": user, "message": "Login successful"}
        result.update(self.issue_tokens(user))

        is_expired, days_remaining = PasswordPolicy.check_expiry(user.password_changed_at or user.created_at)
        if is_expired:
            result["password_expired"] = True
            result["message"] = "Password has expired. Please change your password."
        elif days_remaining <= 14:
            result["message"] = f"Password expires in {days_remaining} days."

        logger.info(f"Successful login: {user.email}")
        return result

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new token pair."""
        claims = self.jwt_handler.decode_token(refresh_token, token_type="refresh")
        user = self.session.get(User, claims["sub"])
        if user is None or not user.is_active or not user.is_approved:
            raise AuthenticationError("User not found or inactive")

        self.jwt_handler.revoke_token(refresh_token)
        result: Dict[str, Any] = {"user": user}
        result.update(self.issue_tokens(user))
        return result

    def logout(self, user: Optional[User], tokens, request=None) -> None:
        for token in tokens:
            if token:
                self.jwt_handler.revoke_token(token)
        if user is not None:
            self.audit.log(self.session, user, AuditAction.LOGOUT, EntityType.USER, user.id, request=request)
            self.session.commit()

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    def create_account(self, email: str, password: str, first_name: str, last_name: str,
                       role_name: str = RoleName.RESEARCHER.value, is_approved: bool = False,
                       actor: Optional[User] = None, request=None,
                       action: AuditAction = AuditAction.CREATE_USER) -> User:
        """Validate, hash and insert a new user. Caller commits."""
        email = normalize_email(email)
        if self.get_user_by_email(email) is not None:
            raise ConflictError("A user with this email already exists", code="DUPLICATE_ENTRY")

        is_valid, password_hash, violations = self.password_handler.validate_and_hash(password)
        if not is_valid:
            raise ValidationError("Password does not meet policy", details={"password": violations})

        role = self.get_role(role_name)
        user = User(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=True,
            is_approved=is_approved,
            password_changed_at=datetime.utcnow(),
        )
        self.session.add(user)
        self.session.flush()

        self.audit.log(self.session, actor or user, action, EntityType.USER, user.id,
                       details={"email": email, "role": role.name, "is_approved": is_approved},
                       request=request)
        logger.info(f"Created user {email} with role {role.name}")
        return user

    def register(self, email: str, password: str, first_name: str, last_name: str,
                 request=None) -> User:
        """Self-registration. Always a researcher; approval depends on settings."""
        user = self.create_account(
            email, password, first_name, last_name,
            role_name=RoleName.RESEARCHER.value,
            is_approved=settings.AUTO_APPROVE_REGISTRATIONS,
            request=request,
            action=AuditAction.REGISTER,
        )
        self.session.commit()
        return user

    def change_password(self, user: User, current_password: str, new_password: str,
                        request=None) -> None:
        if not self.password_handler.verify_password(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect", code="INVALID_CREDENTIALS")
        if current_password == new_password:
            raise ValidationError("New password must differ from the current password")

        is_valid, password_hash, violations = self.password_handler.validate_and_hash(new_password)
        if not is_valid:
            raise ValidationError("Password does not meet policy", details={"password": violations})

        user.password_hash = password_hash
        user.password_changed_at = datetime.utcnow()
        self.audit.log(self.session, user, AuditAction.CHANGE_PASSWORD, EntityType.USER, user.id,
                       request=request)
        self.session.commit()
        logger.info(f"Password changed for {user.email}")
