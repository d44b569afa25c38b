"""Minimal comment persistence: storing screened comments and the
prior-approval lookup used by first-time-hold moderation.

Key Functions:
    has_approved_submission: does this submitter already have an approved comment
    sqlite_prior_approval_lookup: bind the lookup to a connection for the pipeline
    store_screened_comment: persist a comment with its moderation flags
"""

import sqlite3
from typing import Callable, Optional

import structlog

from spamgate.models.moderation_models import Decision, SubmissionContext, Verdict

logger = structlog.get_logger()

PriorApprovalLookup = Callable[[Optional[str]], bool]

# Verdicts the caller never stores
UNSTORED_DECISIONS = frozenset({Decision.REJECT, Decision.RATE_LIMITED})


def has_approved_submission(conn: sqlite3.Connection, submitter_id: Optional[str]) -> bool:
    """True if the submitter already has an approved, non-spam comment.

    Anonymous submitters (submitter_id None or blank) never have one.

    Raises:
        sqlite3.Error: Propagated to the caller, which decides how to degrade
    """
    if not submitter_id:
        return False

    row = conn.execute(
        """
        SELECT 1 FROM comments
        WHERE user_id = ? AND is_approved = 1 AND is_spam = 0
        LIMIT 1
        """,
        (submitter_id,)
    ).fetchone()
    return row is not None


def sqlite_prior_approval_lookup(conn: sqlite3.Connection) -> PriorApprovalLookup:
    def _lookup(submitter_id: Optional[str]) -> bool:
        return has_approved_submission(conn, submitter_id)
    return _lookup


def store_screened_comment(conn: sqlite3.Connection, ctx: SubmissionContext, verdict: Verdict) -> Optional[int]:
    """Insert the sanitized comment with the verdict's approval / spam flags.

    Returns:
        The new comment id, or None when the decision means nothing is stored

    Raises:
        sqlite3.Error: If the insert fails
    """
    if verdict.decision in UNSTORED_DECISIONS:
        return None

    cursor = conn.execute(
        """
        INSERT INTO comments (user_id, target_type, target_id, content, is_approved, is_spam)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            ctx.submitter_id or None,
            ctx.target_type,
            ctx.target_id,
            verdict.content,
            int(verdict.is_approved),
            int(verdict.is_spam),
        )
    )
    conn.commit()

    logger.info(
        "comment_stored",
        comment_id=cursor.lastrowid,
        decision=verdict.decision.value,
        target_type=ctx.target_type,
        target_id=ctx.target_id
    )
    return cursor.lastrowid
