"""spamgate HTTP application.

The lifespan hook applies the schema and keeps the database path and a
pipeline factory on app.state. Each request opens its own SQLite connection
and builds its pipeline around it (see spamgate.api.dependencies). Logs are
JSON, written to logs/backend.log and stdout. Every error leaves as an ErrorEnvelope.

Usage:
    uvicorn spamgate.api.app:app --reload
"""

import os
import traceback
from contextlib import asynccontextmanager
from functools import partial
from typing import Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from spamgate.api.models import ErrorDetail, ErrorEnvelope
from spamgate.api.responses import DATABASE_ERROR, ERROR_STATUS_CODES, NOT_FOUND, VALIDATION_ERROR
from spamgate.api.routes import comments, moderation
from spamgate.backend.db.connection import get_connection, init_db, resolve_db_path
from spamgate.backend.integrations.akismet import AkismetClient
from spamgate.backend.integrations.recaptcha import RecaptchaClient
from spamgate.backend.utils.logging_config import get_logger, setup_logging
from spamgate.pipeline import ModerationPipeline
from spamgate.settings import PipelineConfig

_STATUS_TO_CODE = {status: code for code, status in ERROR_STATUS_CODES.items()}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Apply the schema and set up per-request pipeline construction."""
    logger = get_logger(__name__)
    db_path = resolve_db_path()

    with get_connection(db_path) as conn:
        init_db(conn)
    logger.info("database_initialized", db_path=db_path)

    # Signal clients and config are shared; the connection is per request
    app.state.db_path = db_path
    app.state.pipeline_factory = partial(
        ModerationPipeline,
        reputation_client=AkismetClient(),
        behavioral_client=RecaptchaClient(),
        config=PipelineConfig.from_env(),
    )

    yield

    logger.info("app_shutdown")


setup_logging(log_dir="logs", log_filename="backend.log")

app = FastAPI(
    title="spamgate",
    description="Comment spam and abuse moderation API",
    version="1.0.0",
    lifespan=lifespan,
)

# The site that embeds the comment form
cors_origins = os.environ.get('CORS_ORIGINS', 'http://localhost:5173').split(',')

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = get_logger(__name__)
logger.info("fastapi_app_initialized", cors_origins=cors_origins)

app.include_router(comments.router)
app.include_router(moderation.router)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    envelope = ErrorEnvelope(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    get_logger(__name__).warning("validation_error", path=request.url.path, errors=errors)
    return _error_response(422, VALIDATION_ERROR, f"Request validation failed: {errors[0]['msg']}")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Errors from raise_api_error() carry their own code; others are mapped by status."""
    get_logger(__name__).warning("http_exception", path=request.url.path, status=exc.status_code)

    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return _error_response(exc.status_code, exc.detail["code"], exc.detail["message"])

    code = _STATUS_TO_CODE.get(exc.status_code, DATABASE_ERROR)
    return _error_response(exc.status_code, code, str(exc.detail) if exc.detail else "An error occurred")


@app.exception_handler(404)
async def not_found_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    get_logger(__name__).warning("not_found", path=request.url.path)

    if isinstance(exc, HTTPException) and isinstance(exc.detail, dict) and "code" in exc.detail:
        return _error_response(404, exc.detail["code"], exc.detail["message"])
    return _error_response(404, NOT_FOUND, f"Resource not found: {request.url.path}")


@app.exception_handler(500)
async def internal_server_error_handler(request: Request, exc: Exception) -> JSONResponse:
    get_logger(__name__).error(
        "internal_server_error",
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(),
    )
    return _error_response(500, DATABASE_ERROR, "An internal server error occurred")


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "healthy"}
