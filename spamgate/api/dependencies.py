"""FastAPI dependencies giving each request its own database connection.

Sync routes run in the threadpool, so requests never share a connection (and
therefore never share a transaction). The moderation pipeline is rebuilt per
request around that connection; its signal clients and config are shared.
"""

import sqlite3
from typing import Generator

from fastapi import Depends, Request

from spamgate.backend.db.connection import get_connection
from spamgate.pipeline import ModerationPipeline


def get_db(request: Request) -> Generator[sqlite3.Connection, None, None]:
    """Yield a connection to the app's database, closed when the request ends."""
    with get_connection(request.app.state.db_path) as conn:
        yield conn


def get_pipeline(request: Request, db: sqlite3.Connection = Depends(get_db)) -> ModerationPipeline:
    return request.app.state.pipeline_factory(db)
