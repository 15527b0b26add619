#!/usr/bin/env python3
"""
IRB Portal - Launcher
=====================
Starts the API server, optionally creating and seeding the database first.

Usage:
    python run.py                    # Serve on 127.0.0.1:8000
    python run.py --reload           # Auto-reload on code changes
    python run.py --init-db --seed   # Create tables and seed roles/admin first
"""

import argparse
import logging
import sys

import uvicorn

from irb_portal.config import settings
from irb_portal.database.seed import seed_all
from irb_portal.database.session import init_db, session_scope
from irb_portal.main import configure_logging

logger = logging.getLogger("irb_portal.run")


def prepare_database(seed: bool) -> None:
    init_db()
    logger.info("Database tables ready")
    if seed:
        with session_scope() as session:
            seed_all(session)


def main():
    parser = argparse.ArgumentParser(
        description=f"{settings.APP_NAME} launcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py --port 9000
  python run.py --init-db --seed
        """,
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    parser.add_argument("--init-db", action="store_true", help="Create tables before serving")
    parser.add_argument("--seed", action="store_true", help="Seed roles and the bootstrap admin")
    args = parser.parse_args()

    configure_logging()

    if args.init_db or args.seed:
        try:
            prepare_database(args.seed)
        except Exception as e:
            logger.error(f"Database setup failed: {e}")
            sys.exit(1)

    logger.info(f"Starting {settings.APP_NAME} on http://{args.host}:{args.port}")
    uvicorn.run(
        "irb_portal.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
