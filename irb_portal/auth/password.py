"""
IRB PORTAL - Password Handler
=============================
bcrypt hashing and password policy validation.
"""

import re
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import bcrypt

from irb_portal.config import settings

logger = logging.getLogger(__name__)


class PasswordPolicy:
    """
    Password policy for portal accounts.

    Requirements:
    - 8 to 72 characters (bcrypt only reads 72 bytes)
    - At least 1 uppercase letter
    - At least 1 lowercase letter
    - At least 1 digit
    - Must be changed every 365 days
    """

    MIN_LENGTH = 8
    MAX_LENGTH = 72
    REQUIRE_UPPERCASE = True
    REQUIRE_LOWERCASE = True
    REQUIRE_DIGIT = True
    MAX_AGE_DAYS = 365

    COMMON_PASSWORDS = {"password", "password1", "password123", "irbportal1", "welcome123"}

    @classmethod
    def validate(cls, password: str) -> Tuple[bool, List[str]]:
        """
        Validate password against policy.

        Returns:
            Tuple of (is_valid, list_of_violations)
        """
        violations = []

        if len(password) < cls.MIN_LENGTH:
            violations.append(f"Password must be at least {cls.MIN_LENGTH} characters")

        if len(password.encode("utf-8")) > cls.MAX_LENGTH:
            violations.append(f"Password cannot exceed {cls.MAX_LENGTH} characters")

        if cls.REQUIRE_UPPERCASE and not re.search(r'[A-Z]', password):
            violations.append("Password must contain at least one uppercase letter")

        if cls.REQUIRE_LOWERCASE and not re.search(r'[a-z]', password):
            violations.append("Password must contain at least one lowercase letter")

        if cls.REQUIRE_DIGIT and not re.search(r'\d', password):
            violations.append("Password must contain at least one digit")

        if password.lower() in cls.COMMON_PASSWORDS:
            violations.append("Password is too common")

        return len(violations) == 0, violations

    @classmethod
    def check_expiry(cls, password_changed_at: Optional[datetime]) -> Tuple[bool, int]:
        """
        Check if password has expired.

        Returns:
            Tuple of (is_expired, days_until_expiry)
        """
        if password_changed_at is None:
            return True, 0

        expiry_date = password_changed_at + timedelta(days=cls.MAX_AGE_DAYS)
        days_remaining = (expiry_date - datetime.utcnow()).days

        return days_remaining <= 0, days_remaining


class PasswordHandler:
    """bcrypt password hashing and verification."""

    def __init__(self, rounds: Optional[int] = None):
        self.rounds = rounds or settings.BCRYPT_ROUNDS

    def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    def verify_password(self, password: str, hashed: str) -> bool:
        """
        Verify a password against its hash.

        Malformed hashes verify as False.
        """
        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
        except ValueError as e:
            logger.error(f"Password verification error: {e}")
            return False

    def validate_and_hash(self, password: str) -> Tuple[bool, str, List[str]]:
        """
        Validate password policy and hash if valid.

        Returns:
            Tuple of (is_valid, hash_or_empty, violations)
        """
        is_valid, violations = PasswordPolicy.validate(password)
        if not is_valid:
            return False, "", violations
        return True, self.hash_password(password), []


# Singleton instance
_password_handler: Optional[PasswordHandler] = None


def get_password_handler() -> PasswordHandler:
    """Get singleton password handler."""
    global _password_handler
    if _password_handler is None:
        _password_handler = PasswordHandler()
    return _password_handler
