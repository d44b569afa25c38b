"""Moderator API endpoints.

- GET /moderation/decisions: Paginated decision log, optionally filtered
- GET /moderation/settings: Current settings with their accepted values
- PATCH /moderation/settings: Validate and store a batch of settings
- GET /moderation/blacklist: Deny-list entries, optionally filtered by type
- POST /moderation/blacklist: Add a deny-list entry
- DELETE /moderation/blacklist/{entry_id}: Remove a deny-list entry
"""

import sqlite3
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from spamgate.api.dependencies import get_db
from spamgate.api.models import BlacklistEntryCreate, PaginationParams, SettingsPatch
from spamgate.api.responses import NOT_FOUND, VALIDATION_ERROR, raise_api_error, wrap_response
from spamgate.audit import count_decisions, list_decisions
from spamgate.backend.utils.logging_config import get_logger
from spamgate.blacklist import ENTRY_TYPES, add_entry, list_entries, remove_entry
from spamgate.models.moderation_models import Decision
from spamgate.settings import (
    ALLOWED_SETTING_KEYS,
    get_settings,
    setting_constraints,
    update_settings,
    validate_settings_patch,
)

router = APIRouter(prefix="/moderation", tags=["moderation"])
logger = get_logger(__name__)

DECISION_PATTERN = "^(" + "|".join(d.value for d in Decision) + ")$"
ENTRY_TYPE_PATTERN = "^(" + "|".join(ENTRY_TYPES) + ")$"


def _settings_payload(stored: Dict[str, str]) -> Dict[str, Any]:
    return {
        "settings": {key: stored.get(key) for key in ALLOWED_SETTING_KEYS},
        "constraints": {key: setting_constraints(key) for key in ALLOWED_SETTING_KEYS},
    }


# ---------------------------------------------------------------------------
# Decision log
# ---------------------------------------------------------------------------

@router.get("/decisions")
async def get_decisions(
    pagination: PaginationParams = Depends(),
    decision: Optional[str] = Query(None, pattern=DECISION_PATTERN, description="Filter by decision"),
    db: sqlite3.Connection = Depends(get_db),
):
    """List logged moderation decisions, newest first.

    Returns:
        Response envelope with decision rows (signals and warnings decoded
        from JSON) and the total matching count
    """
    logger.info(
        "list_decisions_request",
        limit=pagination.limit,
        offset=pagination.offset,
        decision=decision
    )

    rows = list_decisions(db, limit=pagination.limit, offset=pagination.offset, decision=decision)
    total = count_decisions(db, decision=decision)
    return wrap_response(rows, total=total)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@router.get("/settings")
async def get_moderation_settings(db: sqlite3.Connection = Depends(get_db)):
    """Current settings and the constraints an admin form should enforce."""
    return wrap_response(_settings_payload(get_settings(db)))


@router.patch("/settings")
async def patch_moderation_settings(body: SettingsPatch, db: sqlite3.Connection = Depends(get_db)):
    """Validate every submitted setting, then store them all or none."""
    validated, errors = validate_settings_patch(body.settings)
    if errors:
        logger.warning("settings_patch_rejected", errors=errors)
        message = "; ".join(f"{key}: {msg}" for key, msg in sorted(errors.items()))
        raise_api_error(VALIDATION_ERROR, message)

    stored = update_settings(db, validated)
    return wrap_response(_settings_payload(stored))


# ---------------------------------------------------------------------------
# Blacklist
# ---------------------------------------------------------------------------

@router.get("/blacklist")
async def get_blacklist(
    entry_type: Optional[str] = Query(None, alias="type", pattern=ENTRY_TYPE_PATTERN, description="Filter by entry type"),
    db: sqlite3.Connection = Depends(get_db),
):
    entries = list_entries(db, entry_type=entry_type)
    return wrap_response(entries, total=len(entries))


@router.post("/blacklist")
async def create_blacklist_entry(body: BlacklistEntryCreate, db: sqlite3.Connection = Depends(get_db)):
    """Add a deny-list entry (idempotent on type + value)."""
    try:
        entry = add_entry(db, body.type, body.value, body.reason)
    except ValueError as e:
        raise_api_error(VALIDATION_ERROR, str(e))
    return wrap_response(entry)


@router.delete("/blacklist/{entry_id}")
async def delete_blacklist_entry(entry_id: int, db: sqlite3.Connection = Depends(get_db)):
    if not remove_entry(db, entry_id):
        raise_api_error(NOT_FOUND, f"Blacklist entry {entry_id} not found")
    return wrap_response({"id": entry_id, "deleted": True})
