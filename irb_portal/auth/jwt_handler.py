"""
IRB PORTAL - JWT Token Handler
==============================
Access/refresh token creation and validation with python-jose.
"""

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from irb_portal.config import DEV_SECRET_KEY, settings
from irb_portal.core.errors import AuthenticationError, TokenExpiredError

logger = logging.getLogger(__name__)


class JWTHandler:
    """
    JWT token handler.

    Features:
    - Access tokens (short-lived)
    - Refresh tokens (longer-lived)
    - Token revocation by jti until the token would have expired anyway
    """

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret_key = secret_key or settings.SECRET_KEY
        self.algorithm = algorithm or settings.ALGORITHM
        self.access_token_expiry = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_token_expiry = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

        # jti -> expiry timestamp (in process; single worker)
        self._revoked: Dict[str, float] = {}
        self._lock = threading.Lock()

        if self.secret_key == DEV_SECRET_KEY:
            if settings.is_production:
                raise RuntimeError("SECRET_KEY must be set when ENVIRONMENT is production")
            logger.warning("Using development JWT secret. Set SECRET_KEY for production!")

    def _encode(self, payload: Dict[str, Any]) -> str:
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def create_access_token(self, user_id: str, email: str, role: str,
                            additional_claims: Dict = None) -> str:
        """
        Create a short-lived access token.

        Args:
            user_id: User's unique ID
            email: User's email
            role: User's role name
            additional_claims: Extra data to include in token

        Returns:
            Encoded JWT token string
        """
        now = datetime.utcnow()
        payload = {
            "sub": str(user_id),
            "email": email,
            "role": role,
            "type": "access",
            "iat": now,
            "exp": now + self.access_token_expiry,
            "jti": uuid.uuid4().hex,
        }
        if additional_claims:
            payload.update(additional_claims)
        return self._encode(payload)

    def create_refresh_token(self, user_id: str) -> str:
        """Create a longer-lived refresh token."""
        now = datetime.utcnow()
        payload = {
            "sub": str(user_id),
            "type": "refresh",
            "iat": now,
            "exp": now + self.refresh_token_expiry,
            "jti": uuid.uuid4().hex,
        }
        return self._encode(payload)

    def create_token_pair(self, user_id: str, email: str, role: str) -> Dict[str, Any]:
        """Create both access and refresh tokens."""
        return {
            "access_token": self.create_access_token(user_id, email, role),
            "refresh_token": self.create_refresh_token(user_id),
            "token_type": "bearer",
            "expires_in": int(self.access_token_expiry.total_seconds()),
        }

    def decode_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """
        Decode and validate a token of the given type.

        Raises:
            TokenExpiredError: signature valid but token expired
            AuthenticationError: anything else wrong with the token
        """
        if not token:
            raise AuthenticationError("Not authenticated")

        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError as e:
            logger.warning(f"Invalid token: {e}")
            raise AuthenticationError("Invalid token", code="INVALID_TOKEN")

        if claims.get("type") != token_type:
            raise AuthenticationError("Invalid token type", code="INVALID_TOKEN")
        if not claims.get("sub"):
            raise AuthenticationError("Invalid token payload", code="INVALID_TOKEN")
        if self.is_revoked(claims.get("jti")):
            raise AuthenticationError("Token has been revoked", code="INVALID_TOKEN")

        return claims

    def revoke_token(self, token: str) -> bool:
        """Revoke a token by its jti. Returns False for undecodable tokens."""
        try:
            claims = jwt.decode(
                token, self.secret_key, algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return False

        jti = claims.get("jti")
        if not jti:
            return False

        with self._lock:
            self._revoked[jti] = float(claims.get("exp", 0))
            self._purge_expired()
        logger.info("Token revoked")
        return True

    def is_revoked(self, jti: Optional[str]) -> bool:
        if not jti:
            return False
        with self._lock:
            return jti in self._revoked

    def _purge_expired(self) -> None:
        now = time.time()
        for jti in [j for j, exp in self._revoked.items() if exp and exp < now]:
            del self._revoked[jti]


# Singleton instance
_jwt_handler: Optional[JWTHandler] = None


def get_jwt_handler() -> JWTHandler:
    """Get singleton JWT handler."""
    global _jwt_handler
    if _jwt_handler is None:
        _jwt_handler = JWTHandler()
    return _jwt_handler
