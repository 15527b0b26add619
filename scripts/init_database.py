"""
IRB PORTAL - Database Initialization Script
===========================================
Creates all database tables and seeds the built-in roles and bootstrap admin.

Usage:
    python scripts/init_database.py [--drop] [--seed]

Options:
    --drop  Drop existing tables before creating (DESTRUCTIVE!)
    --seed  Seed roles and the bootstrap admin after creating tables
"""

import sys
import argparse
import logging
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect

from irb_portal.database.seed import seed_all
from irb_portal.database.session import engine, init_db, session_scope
from irb_portal.main import configure_logging

logger = logging.getLogger("irb_portal.init_database")


def create_tables(drop_existing: bool = False):
    """Create all database tables and return their names."""
    init_db(drop_existing=drop_existing)
    tables = sorted(inspect(engine).get_table_names())
    logger.info(f"{len(tables)} tables present: {', '.join(tables)}")
    return tables


def main():
    parser = argparse.ArgumentParser(description="Initialize the IRB Portal database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first")
    parser.add_argument("--seed", action="store_true", help="Seed roles and the bootstrap admin")
    args = parser.parse_args()

    configure_logging()

    try:
        create_tables(drop_existing=args.drop)
        if args.seed:
            with session_scope() as session:
                seed_all(session)
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        return 1

    logger.info("Database initialization complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
