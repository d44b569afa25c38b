"""
Shared pytest fixtures for spamgate tests.

These fixtures provide temporary databases, submission factories, canned
adapter results, and a FastAPI TestClient whose pipeline never touches the
network.
"""

import os
import sqlite3
import tempfile
from functools import partial
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from spamgate.backend.db.connection import init_db, open_connection
from spamgate.backend.integrations.akismet import AkismetClient
from spamgate.backend.integrations.recaptcha import RecaptchaClient
from spamgate.models.moderation_models import (
    AdapterResult,
    BehavioralScore,
    ReputationVerdict,
    SubmissionContext,
)
from spamgate.settings import PipelineConfig

FIXED_NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_db_path():
    """Provide a temporary database file path that is cleaned up after test."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    yield db_path

    if os.path.exists(db_path):
        os.unlink(db_path)
    # Also cleanup WAL files if they exist
    for suffix in ['-wal', '-shm']:
        wal_file = db_path + suffix
        if os.path.exists(wal_file):
            os.unlink(wal_file)


@pytest.fixture
def db_connection(temp_db_path):
    """Provide a raw SQLite connection to an empty temporary database."""
    conn = sqlite3.connect(temp_db_path)
    conn.row_factory = sqlite3.Row
    yield conn
    conn.close()


@pytest.fixture
def schema_initialized_db(temp_db_path):
    """Provide a connection with all tables created and nothing seeded."""
    conn = open_connection(temp_db_path)
    init_db(conn, seed=False)
    yield conn
    conn.close()


@pytest.fixture
def seeded_db(temp_db_path):
    """Provide a connection with tables created and default settings/keywords seeded."""
    conn = open_connection(temp_db_path)
    init_db(conn, seed=True)
    yield conn
    conn.close()


@pytest.fixture
def expected_tables():
    return [
        'comment_settings',
        'comment_blacklist',
        'comment_rate_limits',
        'spam_decision_log',
        'comments',
    ]


@pytest.fixture
def make_context():
    """Factory for SubmissionContext with sensible defaults."""
    def _make(**overrides):
        fields = dict(
            content="Lovely photos, thanks for sharing!",
            display_name="Ada",
            email="ada@example.com",
            target_type="post",
            target_id="post-1",
            submitter_id="user-1",
            client_ip="203.0.113.7",
            user_agent="Mozilla/5.0",
            permalink="https://blog.example.com/posts/1",
        )
        fields.update(overrides)
        return SubmissionContext(**fields)
    return _make


@pytest.fixture
def fixed_now():
    return FIXED_NOW


def reputation_result(is_spam=False, tip=None):
    return AdapterResult(configured=True, result=ReputationVerdict(is_spam=is_spam, tip=tip))


def behavioral_result(score=0.9, success=True, action="submit_comment", error_codes=()):
    return AdapterResult(
        configured=True,
        result=BehavioralScore(success=success, score=score, action=action, error_codes=error_codes),
    )


@pytest.fixture
def mock_reputation():
    """Reputation client mock returning a clean verdict."""
    client = MagicMock(spec=AkismetClient)
    client.check.return_value = reputation_result(is_spam=False)
    return client


@pytest.fixture
def mock_behavioral():
    """Behavioral client mock returning a confident human score."""
    client = MagicMock(spec=RecaptchaClient)
    client.check.return_value = behavioral_result(score=0.9)
    return client


@pytest.fixture
def test_client(temp_db_path, mock_reputation, mock_behavioral):
    """Provide a FastAPI TestClient backed by a temporary database.

    Sets DB_PATH env var so the app lifespan initializes the temp database,
    then swaps the pipeline factory for one using the mock signal clients.
    """
    from fastapi.testclient import TestClient

    from spamgate.api.app import app
    from spamgate.pipeline import ModerationPipeline

    old_db_path = os.environ.get('DB_PATH')
    os.environ['DB_PATH'] = temp_db_path

    with TestClient(app) as client:
        app.state.pipeline_factory = partial(
            ModerationPipeline,
            reputation_client=mock_reputation,
            behavioral_client=mock_behavioral,
            config=PipelineConfig(adapter_timeout_ms=1000, pipeline_deadline_ms=2000),
        )
        yield client

    if old_db_path is not None:
        os.environ['DB_PATH'] = old_db_path
    elif 'DB_PATH' in os.environ:
        del os.environ['DB_PATH']
