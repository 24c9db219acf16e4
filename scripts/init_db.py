#!/usr/bin/env python3
"""
Create the Contact table and report the schema.

Usage:
    python scripts/init_db.py
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect

from config.logging import logger
from processing.database import engine, init_db


def main():
    init_db()

    inspector = inspect(engine)
    print(f"Database: {engine.url}")
    for table in inspector.get_table_names():
        print(f"  ✓ {table}")
        for col in inspector.get_columns(table):
            print(f"      - {col['name']}: {col['type']}")

    logger.info("Database initialized")


if __name__ == "__main__":
    main()
