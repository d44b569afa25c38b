"""Sliding-window rate limiting for comment submissions.

One row per (ip_hash, target_type, target_id) in comment_rate_limits holds the
current window start and the number of submissions reserved in it. A window
older than RATE_LIMIT_WINDOW is restarted, never reused.

The check and the increment are two statements with no lock between them, so
two simultaneous requests for the same key can both be admitted at the
ceiling. The limit is soft; the increment itself is a single
`count = count + 1` statement so no reservation is lost.
"""

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from spamgate.backend.utils.errors import WARNING_TYPE_RATE_LIMIT_STORE_ERROR, WarningsCollector

logger = structlog.get_logger()

RATE_LIMIT_WINDOW = timedelta(minutes=1)
DEFAULT_CEILING = 3
# Rows are kept this long for inspection before cleanup_expired_windows() drops them
RETENTION = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


def _parse_ts(value: str) -> datetime:
    return _as_utc(datetime.fromisoformat(value))


class RateLimiter:
    """Per-IP, per-target submission counter backed by SQLite.

    Example:
        >>> limiter = RateLimiter(conn)
        >>> limiter.check_and_reserve("ab12...", "post", "post-1", ceiling=3)
        False
    """

    def __init__(self, conn: sqlite3.Connection, window: timedelta = RATE_LIMIT_WINDOW):
        self.conn = conn
        self.window = window

    def check_and_reserve(
        self,
        ip_hash: str,
        target_type: str,
        target_id: str,
        ceiling: int = DEFAULT_CEILING,
        now: Optional[datetime] = None,
        warnings: Optional[WarningsCollector] = None,
    ) -> bool:
        """Check the window for a key and reserve one slot if under the ceiling.

        Args:
            ip_hash: Hashed client IP
            target_type: Kind of commented-on item
            target_id: Identifier of the commented-on item
            ceiling: Maximum submissions per window
            now: Evaluation time (defaults to the current UTC time)
            warnings: Collector that receives a warning on store failure

        Returns:
            True if the submission is rate limited (nothing reserved), False if a
            slot was reserved. Store errors return False (fail-open).
        """
        now = _as_utc(now) if now else _utcnow()

        try:
            row = self.conn.execute(
                """
                SELECT id, window_start, count
                FROM comment_rate_limits
                WHERE ip_hash = ? AND target_type = ? AND target_id = ?
                """,
                (ip_hash, target_type, target_id)
            ).fetchone()

            expired = row is None or now - _parse_ts(row['window_start']) >= self.window
            current_count = 0 if expired else row['count']

            if current_count >= ceiling:
                logger.info(
                    "rate_limit_exceeded",
                    target_type=target_type,
                    target_id=target_id,
                    count=current_count,
                    ceiling=ceiling
                )
                return True

            if row is None:
                self.conn.execute(
                    """
                    INSERT INTO comment_rate_limits (ip_hash, target_type, target_id, window_start, count)
                    VALUES (?, ?, ?, ?, 1)
                    ON CONFLICT(ip_hash, target_type, target_id)
                    DO UPDATE SET count = count + 1
                    """,
                    (ip_hash, target_type, target_id, now.isoformat())
                )
            elif expired:
                self.conn.execute(
                    "UPDATE comment_rate_limits SET window_start = ?, count = 1 WHERE id = ?",
                    (now.isoformat(), row['id'])
                )
            else:
                self.conn.execute(
                    "UPDATE comment_rate_limits SET count = count + 1 WHERE id = ?",
                    (row['id'],)
                )
            self.conn.commit()

            logger.debug(
                "rate_limit_reserved",
                target_type=target_type,
                target_id=target_id,
                count=current_count + 1,
                ceiling=ceiling,
                window_restarted=expired
            )
            return False

        except (sqlite3.Error, ValueError, TypeError) as e:
            logger.error(
                "rate_limit_check_failed",
                error_type=type(e).__name__,
                error_message=str(e),
                target_type=target_type,
                target_id=target_id
            )
            if warnings is not None:
                warnings.append(
                    WARNING_TYPE_RATE_LIMIT_STORE_ERROR,
                    "Rate limit store unavailable, submission not limited",
                    {"error": str(e)}
                )
            return False

    def remaining(
        self,
        ip_hash: str,
        target_type: str,
        target_id: str,
        ceiling: int = DEFAULT_CEILING,
        now: Optional[datetime] = None,
    ) -> int:
        """Slots left in the current window, without reserving one."""
        now = _as_utc(now) if now else _utcnow()
        row = self.conn.execute(
            """
            SELECT window_start, count FROM comment_rate_limits
            WHERE ip_hash = ? AND target_type = ? AND target_id = ?
            """,
            (ip_hash, target_type, target_id)
        ).fetchone()

        if row is None or now - _parse_ts(row['window_start']) >= self.window:
            return ceiling
        return max(0, ceiling - row['count'])

    def cleanup_expired_windows(self, retention: timedelta = RETENTION, now: Optional[datetime] = None) -> int:
        """Delete windows that started more than `retention` ago.

        Returns:
            Number of rows deleted (0 on failure, which is logged)
        """
        cutoff = (_as_utc(now) if now else _utcnow()) - retention
        try:
            cursor = self.conn.execute(
                "DELETE FROM comment_rate_limits WHERE window_start < ?",
                (cutoff.isoformat(),)
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error("rate_limit_cleanup_failed", error_type=type(e).__name__, error_message=str(e))
            return 0

        logger.info("rate_limit_cleanup_completed", deleted=cursor.rowcount, cutoff=cutoff.isoformat())
        return cursor.rowcount
