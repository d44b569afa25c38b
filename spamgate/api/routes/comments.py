"""Comment submission endpoint.

- POST /comments/screen: run the moderation pipeline for one submission and
  store the comment unless it was rejected or rate limited.

The response never tells a submitter their comment was classified as spam:
spam and hold both come back as "pending".
"""

import sqlite3
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from spamgate.api.dependencies import get_db, get_pipeline
from spamgate.api.models import CommentScreenRequest
from spamgate.api.responses import (
    CONTENT_REJECTED,
    DATABASE_ERROR,
    RATE_LIMITED,
    raise_api_error,
    wrap_response,
)
from spamgate.backend.utils.logging_config import get_logger
from spamgate.client_ip import get_client_ip
from spamgate.comment_store import store_screened_comment
from spamgate.models.moderation_models import Decision, SubmissionContext, Verdict
from spamgate.pipeline import ModerationPipeline

router = APIRouter(prefix="/comments", tags=["comments"])
logger = get_logger(__name__)

PUBLIC_MESSAGES = {
    "approved": "Comment published",
    "pending": "Comment submitted and awaiting moderation",
}


def _public_payload(verdict: Verdict, comment_id) -> Dict[str, Any]:
    status = "approved" if verdict.is_approved else "pending"
    return {
        "comment_id": comment_id,
        "status": status,
        "message": PUBLIC_MESSAGES[status],
    }


@router.post("/screen")
def screen_comment(
    request: Request,
    body: CommentScreenRequest,
    db: sqlite3.Connection = Depends(get_db),
    pipeline: ModerationPipeline = Depends(get_pipeline),
):
    """Moderate and store one comment.

    Runs in FastAPI's threadpool: the pipeline blocks on SQLite and on the
    external signal calls. The pipeline and the comment insert share this
    request's connection.

    Returns:
        Response envelope with comment_id, status ("approved" | "pending") and
        a display message. 429 RATE_LIMITED or 400 CONTENT_REJECTED otherwise.
    """
    peer = request.client.host if request.client else None
    ctx = SubmissionContext(
        content=body.content,
        display_name=body.display_name.strip(),
        email=body.email.strip(),
        target_type=body.target_type,
        target_id=body.target_id,
        submitter_id=body.submitter_id,
        client_ip=get_client_ip(request.headers, fallback=peer),
        user_agent=request.headers.get("user-agent", ""),
        permalink=body.permalink,
        honeypot_value=body.website,
        behavioral_token=body.recaptcha_token,
    )

    verdict = pipeline.evaluate(ctx)

    if verdict.decision == Decision.RATE_LIMITED:
        raise_api_error(RATE_LIMITED, "Too many comments. Please wait a minute and try again.")
    if verdict.decision == Decision.REJECT:
        raise_api_error(CONTENT_REJECTED, verdict.reason)

    comment_id = None
    try:
        comment_id = store_screened_comment(db, ctx, verdict)
    except sqlite3.Error as e:
        logger.error(
            "comment_store_failed",
            error_type=type(e).__name__,
            error_message=str(e),
            target_type=ctx.target_type,
            target_id=ctx.target_id
        )
        raise_api_error(DATABASE_ERROR, "Comment could not be saved")

    return wrap_response(_public_payload(verdict, comment_id))
