"""Envelope helpers and error codes shared by every route.

Successful handlers return wrap_response(...); failures go through
raise_api_error(...), which app.py's exception handlers turn into
{"error": {"code", "message"}}.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException

from spamgate.api.models import MetaModel

API_VERSION = "1.0"

VALIDATION_ERROR = "VALIDATION_ERROR"
CONTENT_REJECTED = "CONTENT_REJECTED"  # normalizer refused the comment
NOT_FOUND = "NOT_FOUND"
RATE_LIMITED = "RATE_LIMITED"  # per-IP, per-target ceiling reached
DATABASE_ERROR = "DATABASE_ERROR"

ERROR_STATUS_CODES: Dict[str, int] = {
    VALIDATION_ERROR: 422,
    CONTENT_REJECTED: 400,
    NOT_FOUND: 404,
    RATE_LIMITED: 429,
    DATABASE_ERROR: 500,
}


def wrap_response(data: Any, total: Optional[int] = None) -> Dict[str, Any]:
    """Build {"data": ..., "meta": {"timestamp", "version"[, "total"]}}.

    total is only present for list endpoints.
    """
    meta = MetaModel(
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=API_VERSION,
        total=total
    )
    return {"data": data, "meta": meta.model_dump(exclude_none=True)}


def raise_api_error(code: str, message: str, status_code: Optional[int] = None) -> None:
    """Abort the request with an error envelope.

    The HTTP status defaults to the one mapped to `code` (500 for unknown codes).

    Example:
        if not removed:
            raise_api_error(NOT_FOUND, "Blacklist entry 12 not found")
    """
    raise HTTPException(
        status_code=status_code or ERROR_STATUS_CODES.get(code, 500),
        detail={"code": code, "message": message}
    )
