"""
Test suite for spamgate.

Test Organization:
- test_engine.py: Decision ladder (pure, no I/O)
- test_content.py: Content normalizer and client IP helpers
- test_blacklist.py: Deny-list matching and administration
- test_rate_limit.py: Sliding-window rate limiter
- test_settings.py: Settings validation and policy loading
- test_akismet.py / test_recaptcha.py: External signal adapters (HTTP mocked)
- test_pipeline.py: Two-phase orchestrator
- test_audit.py: Decision log and comment storage
- test_connection_manager.py: DB connection management and schema
- test_api.py / test_response_envelope.py: FastAPI surface
- test_scripts.py: Maintenance scripts
- backend/utils/: Error handling and logging utilities

Run all tests:
    python -m pytest tests/ -v

Run specific test file:
    python -m pytest tests/test_pipeline.py -v
"""
