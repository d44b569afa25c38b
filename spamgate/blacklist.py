"""Deny-list matching and administration.

match_blacklist() is a pure function used by the pipeline. The remaining
functions load and maintain the comment_blacklist table.

Key Functions:
    match_blacklist: check content / email / IP / email domain against a Blacklist
    load_blacklist: read all entries into a lower-cased Blacklist snapshot
    list_entries / add_entry / remove_entry: admin maintenance
"""

import sqlite3
from typing import Any, Dict, List, Optional

import structlog

from spamgate.models.moderation_models import Blacklist, BlacklistMatch

logger = structlog.get_logger()

ENTRY_TYPES = ('keyword', 'ip', 'email', 'domain')


def email_domain(email: str) -> Optional[str]:
    """Return the lower-cased part after the last '@', or None.

    Examples:
        >>> email_domain("User@Spam.Example.com")
        'spam.example.com'
        >>> email_domain("no-at-sign") is None
        True
    """
    if not email or '@' not in email:
        return None
    domain = email.rsplit('@', 1)[1].strip().lower()
    return domain or None


def match_blacklist(
    content: str,
    email: str,
    ip: str,
    blacklist: Blacklist,
    ip_hash: Optional[str] = None,
) -> BlacklistMatch:
    """Match a submission against the deny-lists.

    Keywords match as case-insensitive substrings; when several keywords
    match, the alphabetically first one is reported so the result is stable.
    Emails, IPs and domains match by exact (lower-cased) membership. The IP
    list may hold raw addresses or hashes, so both are checked.

    Args:
        content: Sanitized comment text
        email: Submitter email
        ip: Client IP address
        blacklist: Lower-cased Blacklist snapshot
        ip_hash: Hashed client IP, if available

    Returns:
        BlacklistMatch describing every hit
    """
    content_lower = (content or '').lower()
    keyword_hit = None
    for keyword in sorted(blacklist.keywords):
        if keyword in content_lower:
            keyword_hit = keyword
            break

    email_lower = (email or '').strip().lower()
    ip_lower = (ip or '').strip().lower()

    ip_hit = bool(ip_lower) and ip_lower in blacklist.ips
    if not ip_hit and ip_hash:
        ip_hit = ip_hash.lower() in blacklist.ips

    domain = email_domain(email_lower)

    return BlacklistMatch(
        keyword_hit=keyword_hit,
        email_hit=bool(email_lower) and email_lower in blacklist.emails,
        ip_hit=ip_hit,
        domain_hit=domain if domain and domain in blacklist.domains else None,
    )


def load_blacklist(conn: sqlite3.Connection) -> Blacklist:
    """Load every comment_blacklist entry into a Blacklist snapshot.

    Raises:
        sqlite3.Error: Propagated to the caller, which decides how to degrade
    """
    rows = conn.execute("SELECT type, value FROM comment_blacklist").fetchall()

    grouped: Dict[str, List[str]] = {t: [] for t in ENTRY_TYPES}
    for row in rows:
        if row['type'] in grouped:
            grouped[row['type']].append(row['value'])

    return Blacklist.from_values(
        keywords=grouped['keyword'],
        ips=grouped['ip'],
        emails=grouped['email'],
        domains=grouped['domain'],
    )


def list_entries(conn: sqlite3.Connection, entry_type: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return deny-list entries, optionally filtered by type, newest first."""
    query = "SELECT id, type, value, reason, created_at FROM comment_blacklist"
    params: List[Any] = []
    if entry_type is not None:
        query += " WHERE type = ?"
        params.append(entry_type)
    query += " ORDER BY id DESC"

    return [dict(row) for row in conn.execute(query, params).fetchall()]


def add_entry(conn: sqlite3.Connection, entry_type: str, value: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """Add a deny-list entry, lower-casing its value.

    Adding an entry that already exists returns the existing row.

    Raises:
        ValueError: If entry_type is unknown or value is blank
    """
    if entry_type not in ENTRY_TYPES:
        raise ValueError(f"Invalid blacklist type '{entry_type}'. Must be one of: {', '.join(ENTRY_TYPES)}")

    normalized = (value or '').strip().lower()
    if not normalized:
        raise ValueError("Blacklist value must not be empty")

    conn.execute(
        "INSERT OR IGNORE INTO comment_blacklist (type, value, reason) VALUES (?, ?, ?)",
        (entry_type, normalized, reason)
    )
    conn.commit()

    row = conn.execute(
        "SELECT id, type, value, reason, created_at FROM comment_blacklist WHERE type = ? AND value = ?",
        (entry_type, normalized)
    ).fetchone()

    logger.info("blacklist_entry_added", entry_type=entry_type, entry_id=row['id'])
    return dict(row)


def remove_entry(conn: sqlite3.Connection, entry_id: int) -> bool:
    """Delete a deny-list entry. Returns False if it did not exist."""
    cursor = conn.execute("DELETE FROM comment_blacklist WHERE id = ?", (entry_id,))
    conn.commit()

    removed = cursor.rowcount > 0
    if removed:
        logger.info("blacklist_entry_removed", entry_id=entry_id)
    return removed
