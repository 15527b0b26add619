"""
Application Configuration
"""
import os
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DEV_SECRET_KEY = "fallback-secret-key-for-dev-only"


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"),
        case_sensitive=True,
        extra="ignore"
    )

    # App
    APP_NAME: str = "IRB Portal API"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Security
    SECRET_KEY: str = DEV_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    BCRYPT_ROUNDS: int = 12
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 30
    AUTO_APPROVE_REGISTRATIONS: bool = False

    # Cookies / CSRF
    AUTH_COOKIE_NAME: str = "irb_auth_token"
    CSRF_COOKIE_NAME: str = "csrf_token"
    CSRF_HEADER_NAME: str = "X-CSRF-Token"
    CSRF_ENABLED: bool = True
    CSRF_COOKIE_MAX_AGE: int = 7 * 24 * 3600
    COOKIE_SECURE: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "irb_portal"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    SEED_ON_STARTUP: bool = False
    DEFAULT_ADMIN_EMAIL: str = "admin@irb.local"
    DEFAULT_ADMIN_PASSWORD: str = "ChangeMe123"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:5173"]
    CORS_MAX_AGE: int = 86400

    # Rate limiting (fixed 15 minute windows)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_AUTH: str = "5 per 15 minutes"
    RATE_LIMIT_API: str = "100 per 15 minutes"
    RATE_LIMIT_READ_ONLY: str = "300 per 15 minutes"
    RATE_LIMIT_WRITE: str = "30 per 15 minutes"

    # Cache
    CACHE_TTL_SECONDS: int = 300
    CACHE_MAX_ENTRIES: int = 1000

    # Uploads
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    ALLOWED_UPLOAD_TYPES: List[str] = [
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/plain",
        "image/jpeg",
        "image/png",
    ]

    # Review workflow
    IRB_APPROVAL_VALIDITY_DAYS: int = 365

    # Automation webhook
    WEBHOOK_SECRET: Optional[str] = None

    # Pagination
    PAGE_SIZE_DEFAULT: int = 50
    PAGE_SIZE_MAX: int = 100

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
