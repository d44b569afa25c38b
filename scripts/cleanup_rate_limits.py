#!/usr/bin/env python3
"""Delete rate-limit windows that are no longer relevant.

Meant to run from cron; windows only matter for a minute, so anything older
than the retention period can go.

Usage:
    python scripts/cleanup_rate_limits.py [--db data/spamgate.db] [--retention-minutes 60]
"""

import argparse
import os
import sys
from datetime import timedelta

# Add project root to path so spamgate.* imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from spamgate.backend.db.connection import get_connection, resolve_db_path  # noqa: E402
from spamgate.backend.utils.logging_config import setup_logging  # noqa: E402
from spamgate.rate_limit import RETENTION, RateLimiter  # noqa: E402


def main():
    parser = argparse.ArgumentParser(description="Prune stale comment rate-limit windows")
    parser.add_argument("--db", default=None, help="Database path (default: $DB_PATH or ./data/spamgate.db)")
    parser.add_argument(
        "--retention-minutes",
        type=int,
        default=int(RETENTION.total_seconds() // 60),
        help="Keep windows started within this many minutes (default: 60)"
    )
    args = parser.parse_args()

    if args.retention_minutes < 1:
        print("Error: --retention-minutes must be at least 1")
        sys.exit(1)

    setup_logging(log_dir="logs", log_filename="scripts.log")

    with get_connection(resolve_db_path(args.db)) as conn:
        deleted = RateLimiter(conn).cleanup_expired_windows(retention=timedelta(minutes=args.retention_minutes))

    print(f"Deleted {deleted} rate-limit windows")


if __name__ == "__main__":
    main()
