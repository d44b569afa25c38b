#!/usr/bin/env python3
"""Create the spamgate database and seed default moderation settings.

Idempotent: tables use CREATE TABLE IF NOT EXISTS and the seed uses
INSERT OR IGNORE, so existing settings and deny-list entries are kept.

Usage:
    python scripts/init_db.py [--db data/spamgate.db] [--no-seed]
"""

import argparse
import os
import sys

# Add project root to path so spamgate.* imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from spamgate.backend.db.connection import get_connection, init_db, resolve_db_path  # noqa: E402
from spamgate.backend.utils.logging_config import get_logger, setup_logging  # noqa: E402

TABLES = (
    "comment_settings",
    "comment_blacklist",
    "comment_rate_limits",
    "spam_decision_log",
    "comments",
)


def main():
    parser = argparse.ArgumentParser(description="Create and seed the spamgate database")
    parser.add_argument("--db", default=None, help="Database path (default: $DB_PATH or ./data/spamgate.db)")
    parser.add_argument("--no-seed", action="store_true", help="Create tables only, skip default settings and keywords")
    args = parser.parse_args()

    setup_logging(log_dir="logs", log_filename="scripts.log")
    logger = get_logger(__name__)

    db_path = resolve_db_path(args.db)
    with get_connection(db_path) as conn:
        init_db(conn, seed=not args.no_seed)

        print(f"Database ready: {db_path}")
        for table in TABLES:
            count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            print(f"  {table}: {count} rows")

    logger.info("database_initialized", db_path=db_path, seeded=not args.no_seed)


if __name__ == "__main__":
    main()
