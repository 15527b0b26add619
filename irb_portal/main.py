"""
IRB Portal API - FastAPI Application
====================================
Study management API for an Institutional Review Board: studies and their
review workflow, participants, documents, users and the audit trail.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from irb_portal.config import settings
from irb_portal.api.routes import (
    audit_logs, auth, automation, collaboration, dashboard, documents, participants, studies, users,
)
from irb_portal.core.errors import register_exception_handlers
from irb_portal.core.rate_limit import limiter, rate_limit_exceeded_handler
from irb_portal.database.seed import seed_all
from irb_portal.database.session import health_check, init_db, session_scope

logger = logging.getLogger(__name__)

_logging_configured = False


def configure_logging(level: str = None) -> None:
    """Configure root logging once."""
    global _logging_configured
    if _logging_configured:
        return
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    _logging_configured = True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT})")

    init_db()
    if settings.SEED_ON_STARTUP:
        with session_scope() as session:
            seed_all(session)
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="IRB study management API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Error handlers
register_exception_handlers(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", settings.CSRF_HEADER_NAME],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    max_age=settings.CORS_MAX_AGE,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)")
    return response


# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(auth.csrf_router, prefix="/api", tags=["Authentication"])
app.include_router(studies.router, prefix="/api/studies", tags=["Studies"])
app.include_router(participants.router, prefix="/api/studies", tags=["Participants"])
app.include_router(participants.global_router, prefix="/api/participants", tags=["Participants"])
app.include_router(documents.router, prefix="/api/studies", tags=["Documents"])
app.include_router(documents.global_router, prefix="/api/documents", tags=["Documents"])
app.include_router(collaboration.router, prefix="/api/studies", tags=["Collaboration"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])
app.include_router(users.roles_router, prefix="/api/roles", tags=["Users"])
app.include_router(audit_logs.router, prefix="/api/audit-logs", tags=["Audit Logs"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(automation.router, prefix="/api/automation-logs", tags=["Automation"])
app.include_router(automation.webhook_router, prefix="/api/webhooks", tags=["Automation"])


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", tags=["Health"])
async def health():
    """Health check endpoint."""
    db_ok = health_check()
    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "database": "connected" if db_ok else "unavailable",
    }
