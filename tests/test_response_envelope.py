"""
Tests for the standard response envelope.

These tests verify:
- Success responses: {data, meta: {timestamp, version}}
- Error responses: {error: {code, message}}
- Error codes map to their HTTP status
- Pagination: limit (default 50, max 100), offset (default 0)
"""

from datetime import datetime

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from spamgate.api.models import ErrorDetail, ErrorEnvelope, PaginationParams
from spamgate.api.responses import (
    CONTENT_REJECTED,
    ERROR_STATUS_CODES,
    RATE_LIMITED,
    VALIDATION_ERROR,
    raise_api_error,
    wrap_response,
)


class TestWrapResponse:
    """Verify success envelope structure."""

    def test_has_data_and_meta(self):
        response = wrap_response({"comment_id": 1})

        assert response["data"] == {"comment_id": 1}
        assert response["meta"]["version"] == "1.0"
        assert datetime.fromisoformat(response["meta"]["timestamp"]).tzinfo is not None

    def test_total_only_when_given(self):
        assert "total" not in wrap_response([])["meta"]
        assert wrap_response([], total=0)["meta"]["total"] == 0


class TestRaiseApiError:
    """Verify error codes and status mapping."""

    @pytest.mark.parametrize("code,status", [
        (VALIDATION_ERROR, 422),
        (CONTENT_REJECTED, 400),
        (RATE_LIMITED, 429),
    ])
    def test_status_follows_code(self, code, status):
        with pytest.raises(HTTPException) as exc_info:
            raise_api_error(code, "nope")

        assert exc_info.value.status_code == status
        assert exc_info.value.detail == {"code": code, "message": "nope"}

    def test_every_code_has_a_status(self):
        assert set(ERROR_STATUS_CODES.values()) == {400, 404, 422, 429, 500}

    def test_error_envelope_shape(self):
        envelope = ErrorEnvelope(error=ErrorDetail(code=RATE_LIMITED, message="slow down"))

        assert envelope.model_dump() == {"error": {"code": "RATE_LIMITED", "message": "slow down"}}


class TestPaginationParams:

    def test_defaults(self):
        params = PaginationParams()

        assert params.limit == 50
        assert params.offset == 0

    @pytest.mark.parametrize("kwargs", [{"limit": 0}, {"limit": 101}, {"offset": -1}])
    def test_out_of_range(self, kwargs):
        with pytest.raises(ValidationError):
            PaginationParams(**kwargs)
