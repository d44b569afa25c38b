"""Pydantic models for API request/response structures.

Envelopes:
    ResponseEnvelope {data, meta} for every successful response
    ErrorEnvelope {error: {code, message}} for every error response

Requests:
    CommentScreenRequest: one comment submission to moderate
    SettingsPatch: partial update of moderation settings
    BlacklistEntryCreate: new deny-list entry
    PaginationParams: list query parameters
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class MetaModel(BaseModel):
    """Metadata included in all successful responses.

    Attributes:
        timestamp: ISO 8601 formatted UTC timestamp of the response
        version: API version string (currently hardcoded as "1.0")
        total: Optional total count of items (used with pagination)
    """
    timestamp: str
    version: str
    total: Optional[int] = None


class ResponseEnvelope(BaseModel):
    data: Any
    meta: MetaModel


class ErrorDetail(BaseModel):
    """Error details included in error responses.

    Attributes:
        code: Machine-readable error code (see responses.py for constants)
        message: Human-readable error message
    """
    code: str
    message: str


class ErrorEnvelope(BaseModel):
    error: ErrorDetail


class CommentScreenRequest(BaseModel):
    """A comment submission as posted by the comment form.

    `website` is the hidden honeypot field: humans never see it, so any value
    means the form was filled in by a bot.
    """
    content: str = Field(..., max_length=20000)
    display_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    target_type: str = Field(..., min_length=1, max_length=50)
    target_id: str = Field(..., min_length=1, max_length=100)
    submitter_id: Optional[str] = None
    permalink: str = ""
    website: Optional[str] = Field(default=None, description="Honeypot field")
    recaptcha_token: Optional[str] = None


class SettingsPatch(BaseModel):
    """Partial settings update; values are validated by spamgate.settings."""
    settings: Dict[str, Any]


class BlacklistEntryCreate(BaseModel):
    type: Literal["keyword", "ip", "email", "domain"]
    value: str = Field(..., min_length=1, max_length=255)
    reason: Optional[str] = Field(default=None, max_length=500)


class PaginationParams(BaseModel):
    """Query parameters for paginated list endpoints.

    Attributes:
        limit: Maximum number of items to return (default 50, max 100)
        offset: Number of items to skip (default 0, min 0)
    """
    limit: int = Field(default=50, ge=1, le=100, description="Maximum number of items to return")
    offset: int = Field(default=0, ge=0, description="Number of items to skip")
