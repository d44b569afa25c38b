"""Append-only decision log.

Every pipeline run writes exactly one spam_decision_log row. A failed write is
logged and swallowed: the audit trail must never change or block a verdict.

Key Functions:
    AuditLogger.record: persist one AuditRecord
    list_decisions / count_decisions: paginated read access for moderators
"""

import json
import sqlite3
from typing import Any, Dict, List, Optional

import structlog

from spamgate.models.moderation_models import AuditRecord

logger = structlog.get_logger()


class AuditLogger:
    """Writes AuditRecords to spam_decision_log.

    Example:
        >>> audit = AuditLogger(conn)
        >>> audit.record(record)
        True
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def record(self, record: AuditRecord) -> bool:
        """Insert one decision row.

        Returns:
            True if the row was written, False if the write failed (logged)
        """
        try:
            self.conn.execute(
                """
                INSERT INTO spam_decision_log (
                    target_type, target_id, decision, reason, link_count,
                    service_tip, score, ip_hash, signals, warnings, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.target_type,
                    record.target_id,
                    record.decision.value,
                    record.reason,
                    record.link_count,
                    record.service_tip,
                    record.score,
                    record.ip_hash,
                    json.dumps(record.signals, sort_keys=True, default=str),
                    record.warnings,
                    record.created_at.isoformat(),
                )
            )
            self.conn.commit()
            return True

        except Exception as e:
            logger.error(
                "audit_write_failed",
                error_type=type(e).__name__,
                error_message=str(e),
                decision=record.decision.value,
                target_type=record.target_type,
                target_id=record.target_id
            )
            try:
                self.conn.rollback()
            except sqlite3.Error:
                pass
            return False


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    entry = dict(row)
    for key in ('signals', 'warnings'):
        if entry.get(key):
            try:
                entry[key] = json.loads(entry[key])
            except (TypeError, ValueError):
                pass
    return entry


def list_decisions(
    conn: sqlite3.Connection,
    limit: int = 50,
    offset: int = 0,
    decision: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Return logged decisions, newest first, with JSON columns decoded."""
    query = """
        SELECT id, target_type, target_id, decision, reason, link_count,
               service_tip, score, ip_hash, signals, warnings, created_at
        FROM spam_decision_log
    """
    params: List[Any] = []
    if decision is not None:
        query += " WHERE decision = ?"
        params.append(decision)
    query += " ORDER BY id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    return [_row_to_dict(row) for row in conn.execute(query, params).fetchall()]


def count_decisions(conn: sqlite3.Connection, decision: Optional[str] = None) -> int:
    if decision is None:
        row = conn.execute("SELECT COUNT(*) FROM spam_decision_log").fetchone()
    else:
        row = conn.execute(
            "SELECT COUNT(*) FROM spam_decision_log WHERE decision = ?", (decision,)
        ).fetchone()
    return row[0]
