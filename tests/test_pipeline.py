"""
Tests for the two-phase moderation pipeline.

Signal clients are MagicMocks so every test can assert exactly how many
network calls a submission would have made.
"""

import json
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from spamgate.audit import AuditLogger, list_decisions
from spamgate.backend.integrations.akismet import AkismetClient
from spamgate.backend.integrations.recaptcha import RecaptchaClient
from spamgate.blacklist import add_entry
from spamgate.models.moderation_models import AdapterResult, Decision
from spamgate.pipeline import (
    PIPELINE_FAILURE_REASON,
    ModerationPipeline,
    summarize_signals,
)
from spamgate.settings import PipelineConfig, update_settings
from tests.conftest import behavioral_result, reputation_result

FAST_CONFIG = PipelineConfig(adapter_timeout_ms=1000, pipeline_deadline_ms=2000)


@pytest.fixture
def pipeline_factory(seeded_db, mock_reputation, mock_behavioral):
    """Build a pipeline over the seeded database with mock signal clients."""
    def _make(**overrides):
        kwargs = dict(
            reputation_client=mock_reputation,
            behavioral_client=mock_behavioral,
            config=FAST_CONFIG,
        )
        kwargs.update(overrides)
        return ModerationPipeline(seeded_db, **kwargs)
    return _make


def _enable_recaptcha(conn):
    update_settings(conn, {'enable_recaptcha': 'true'})


def _warning_types(record):
    if record.warnings is None:
        return []
    return [w["type"] for w in json.loads(record.warnings)]


class TestLocalShortCircuit:
    """Reject and rate_limited end the run before any network call."""

    def test_empty_content_is_rejected_without_adapter_calls(
        self, pipeline_factory, make_context, mock_reputation, mock_behavioral
    ):
        verdict = pipeline_factory().evaluate(make_context(content="   "))

        assert verdict.decision == Decision.REJECT
        assert verdict.reason == "Empty content"
        assert verdict.is_approved is False
        mock_reputation.check.assert_not_called()
        mock_behavioral.check.assert_not_called()

    def test_fourth_submission_in_a_minute_is_rate_limited(
        self, pipeline_factory, make_context, mock_reputation, fixed_now
    ):
        pipeline = pipeline_factory()
        ctx = make_context()

        decisions = [pipeline.evaluate(ctx, now=fixed_now + timedelta(seconds=i)).decision for i in range(3)]
        assert decisions == [Decision.APPROVE] * 3
        assert mock_reputation.check.call_count == 3

        limited = pipeline.evaluate(ctx, now=fixed_now + timedelta(seconds=10))
        assert limited.decision == Decision.RATE_LIMITED
        assert limited.reason == "Rate limit exceeded"
        assert mock_reputation.check.call_count == 3

        later = pipeline.evaluate(ctx, now=fixed_now + timedelta(seconds=61))
        assert later.decision == Decision.APPROVE
        assert mock_reputation.check.call_count == 4

    def test_rate_limit_is_per_target(self, pipeline_factory, make_context, fixed_now):
        pipeline = pipeline_factory()
        for _ in range(3):
            pipeline.evaluate(make_context(target_id="post-1"), now=fixed_now)

        verdict = pipeline.evaluate(make_context(target_id="post-2"), now=fixed_now)

        assert verdict.decision == Decision.APPROVE

    def test_rejected_content_still_reserves_a_slot(self, pipeline_factory, make_context, fixed_now):
        pipeline = pipeline_factory()
        for _ in range(3):
            pipeline.evaluate(make_context(content=""), now=fixed_now)

        verdict = pipeline.evaluate(make_context(), now=fixed_now)

        assert verdict.decision == Decision.RATE_LIMITED


class TestLadder:
    """End-to-end decisions over a real settings/blacklist store."""

    def test_clean_comment_is_approved(self, pipeline_factory, make_context, mock_reputation):
        verdict = pipeline_factory().evaluate(make_context(content="  Great write-up  "))

        assert verdict.decision == Decision.APPROVE
        assert verdict.reason == "Passed all checks"
        assert verdict.is_approved is True
        assert verdict.content == "Great write-up"
        assert verdict.ip_hash and verdict.ip_hash != "203.0.113.7"

        params = mock_reputation.check.call_args[0][0]
        assert params.comment_content == "Great write-up"
        assert params.user_ip == "203.0.113.7"

    def test_honeypot_is_spam(self, pipeline_factory, make_context):
        verdict = pipeline_factory().evaluate(make_context(honeypot_value="http://bot.example"))

        assert verdict.decision == Decision.SPAM
        assert verdict.reason == "Bot detected (honeypot)"
        assert verdict.is_spam is True

    def test_honeypot_ignored_when_disabled(self, seeded_db, pipeline_factory, make_context):
        update_settings(seeded_db, {'enable_honeypot': 'false'})

        verdict = pipeline_factory().evaluate(make_context(honeypot_value="filled"))

        assert verdict.decision == Decision.APPROVE

    def test_three_links_are_held(self, pipeline_factory, make_context):
        content = "see http://a.example http://b.example http://c.example"

        verdict = pipeline_factory().evaluate(make_context(content=content))

        assert verdict.decision == Decision.HOLD
        assert verdict.reason == "Too many links: 3"
        assert verdict.link_count == 3

    def test_seeded_keyword_is_spam(self, pipeline_factory, make_context):
        verdict = pipeline_factory().evaluate(make_context(content="Best CASINO bonuses here"))

        assert verdict.decision == Decision.SPAM
        assert verdict.reason == "Blacklisted keyword: casino"

    def test_blacklisted_domain_beats_perfect_behavioral_score(
        self, seeded_db, pipeline_factory, make_context, mock_behavioral
    ):
        _enable_recaptcha(seeded_db)
        add_entry(seeded_db, 'domain', 'spam.example')
        mock_behavioral.check.return_value = behavioral_result(score=1.0)

        verdict = pipeline_factory().evaluate(
            make_context(email="someone@Spam.Example", behavioral_token="tok")
        )

        assert verdict.decision == Decision.SPAM
        assert verdict.reason == "Email domain blacklisted: spam.example"

    def test_reputation_spam_with_discard_tip(self, pipeline_factory, make_context, mock_reputation):
        mock_reputation.check.return_value = reputation_result(is_spam=True, tip="discard")

        verdict = pipeline_factory().evaluate(make_context())

        assert verdict.decision == Decision.SPAM
        assert verdict.reason == "Flagged by Akismet (high confidence)"
        assert verdict.service_tip == "discard"

    def test_low_behavioral_score_is_held(self, seeded_db, pipeline_factory, make_context, mock_behavioral):
        _enable_recaptcha(seeded_db)
        mock_behavioral.check.return_value = behavioral_result(score=0.1)

        verdict = pipeline_factory().evaluate(make_context(behavioral_token="tok"))

        assert verdict.decision == Decision.HOLD
        assert verdict.reason == "Low reCAPTCHA score: 0.1"
        assert verdict.score == 0.1
        args, kwargs = mock_behavioral.check.call_args
        assert args[:3] == ("tok", "submit_comment", 1000)
        assert kwargs["remote_ip"] == "203.0.113.7"

    def test_behavioral_not_called_without_token(self, seeded_db, pipeline_factory, make_context, mock_behavioral):
        _enable_recaptcha(seeded_db)

        verdict = pipeline_factory().evaluate(make_context())

        assert verdict.decision == Decision.APPROVE
        mock_behavioral.check.assert_not_called()

    def test_behavioral_not_called_when_disabled(self, pipeline_factory, make_context, mock_behavioral):
        verdict = pipeline_factory().evaluate(make_context(behavioral_token="tok"))

        assert verdict.decision == Decision.APPROVE
        mock_behavioral.check.assert_not_called()

    def test_all_hold_mode(self, seeded_db, pipeline_factory, make_context):
        update_settings(seeded_db, {'moderation_mode': 'all-hold'})

        verdict = pipeline_factory().evaluate(make_context())

        assert verdict.decision == Decision.HOLD
        assert verdict.reason == "All comments require moderation"


class TestFirstTimeHold:
    """Prior approval only matters in first-time-hold mode."""

    def test_first_time_submitter_is_held(self, seeded_db, pipeline_factory, make_context):
        update_settings(seeded_db, {'moderation_mode': 'first-time-hold'})
        lookup = MagicMock(return_value=False)

        verdict = pipeline_factory(prior_approval_lookup=lookup).evaluate(make_context(submitter_id="user-7"))

        assert verdict.decision == Decision.HOLD
        assert verdict.reason == "First-time commenter"
        lookup.assert_called_once_with("user-7")

    def test_returning_submitter_is_approved(self, seeded_db, pipeline_factory, make_context):
        update_settings(seeded_db, {'moderation_mode': 'first-time-hold'})
        lookup = MagicMock(return_value=True)

        verdict = pipeline_factory(prior_approval_lookup=lookup).evaluate(make_context())

        assert verdict.decision == Decision.APPROVE

    def test_lookup_skipped_in_auto_mode(self, pipeline_factory, make_context):
        lookup = MagicMock(return_value=False)

        verdict = pipeline_factory(prior_approval_lookup=lookup).evaluate(make_context())

        assert verdict.decision == Decision.APPROVE
        lookup.assert_not_called()

    def test_lookup_failure_treated_as_first_time(self, seeded_db, pipeline_factory, make_context):
        update_settings(seeded_db, {'moderation_mode': 'first-time-hold'})
        lookup = MagicMock(side_effect=RuntimeError("directory down"))
        audit = MagicMock(spec=AuditLogger)

        verdict = pipeline_factory(prior_approval_lookup=lookup, audit_logger=audit).evaluate(make_context())

        assert verdict.decision == Decision.HOLD
        record = audit.record.call_args[0][0]
        assert "prior_approval_lookup_failed" in _warning_types(record)


class TestDegradedSignals:
    """Missing or failed external signals never count for or against a comment."""

    def test_unconfigured_reputation_matches_omitted(self, seeded_db, make_context, mock_behavioral):
        unconfigured = MagicMock(spec=AkismetClient)
        unconfigured.check.return_value = AdapterResult(configured=False)
        with_unconfigured = ModerationPipeline(
            seeded_db, reputation_client=unconfigured, behavioral_client=mock_behavioral, config=FAST_CONFIG
        ).evaluate(make_context(target_id="a"))

        update_settings(seeded_db, {'enable_akismet': 'false'})
        omitted = ModerationPipeline(
            seeded_db, reputation_client=unconfigured, behavioral_client=mock_behavioral, config=FAST_CONFIG
        ).evaluate(make_context(target_id="b"))

        assert with_unconfigured.decision == omitted.decision == Decision.APPROVE
        assert with_unconfigured.reason == omitted.reason

    def test_behavioral_timeout_matches_disabled(self, seeded_db, pipeline_factory, make_context, mock_behavioral):
        _enable_recaptcha(seeded_db)
        mock_behavioral.check.return_value = AdapterResult(configured=True, error="timeout")
        audit = MagicMock(spec=AuditLogger)

        timed_out = pipeline_factory(audit_logger=audit).evaluate(make_context(target_id="a", behavioral_token="tok"))

        update_settings(seeded_db, {'enable_recaptcha': 'false'})
        disabled = pipeline_factory().evaluate(make_context(target_id="b", behavioral_token="tok"))

        assert timed_out.decision == disabled.decision == Decision.APPROVE
        assert timed_out.reason == disabled.reason
        assert timed_out.score == disabled.score
        assert mock_behavioral.check.call_count == 1
        assert "behavioral_unavailable" in _warning_types(audit.record.call_args[0][0])

    def test_adapter_raising_is_treated_as_failed_call(self, pipeline_factory, make_context, mock_reputation):
        mock_reputation.check.side_effect = RuntimeError("boom")

        verdict = pipeline_factory().evaluate(make_context())

        assert verdict.decision == Decision.APPROVE

    def test_deadline_exceeded_drops_the_signal(self, pipeline_factory, make_context, mock_reputation):
        release = threading.Event()

        def slow_check(*args, **kwargs):
            release.wait(5)
            return reputation_result(is_spam=True)

        mock_reputation.check.side_effect = slow_check
        audit = MagicMock(spec=AuditLogger)
        config = PipelineConfig(adapter_timeout_ms=50, pipeline_deadline_ms=100)

        try:
            verdict = pipeline_factory(config=config, audit_logger=audit).evaluate(make_context())
        finally:
            release.set()

        assert verdict.decision == Decision.APPROVE
        record = audit.record.call_args[0][0]
        assert "adapter_deadline_exceeded" in _warning_types(record)
        assert record.signals["reputation"]["error"] == "deadline_exceeded"

    def test_slow_reputation_does_not_mask_behavioral_hold(
        self, seeded_db, pipeline_factory, make_context, mock_reputation, mock_behavioral
    ):
        _enable_recaptcha(seeded_db)
        release = threading.Event()

        def blocked_check(*args, **kwargs):
            release.wait(5)
            return reputation_result(is_spam=False)

        mock_reputation.check.side_effect = blocked_check
        mock_behavioral.check.return_value = behavioral_result(score=0.1)
        audit = MagicMock(spec=AuditLogger)
        config = PipelineConfig(adapter_timeout_ms=50, pipeline_deadline_ms=300)

        started = time.monotonic()
        try:
            verdict = pipeline_factory(config=config, audit_logger=audit).evaluate(
                make_context(behavioral_token="tok")
            )
        finally:
            elapsed = time.monotonic() - started
            release.set()

        assert verdict.decision == Decision.HOLD
        assert verdict.reason == "Low reCAPTCHA score: 0.1"
        record = audit.record.call_args[0][0]
        assert record.signals["reputation"]["error"] == "deadline_exceeded"
        # Bounded by the deadline, not by the blocked call
        assert 0.25 <= elapsed < 1.5

    def test_preset_cancel_event_skips_adapters(
        self, seeded_db, pipeline_factory, make_context, mock_reputation, mock_behavioral
    ):
        _enable_recaptcha(seeded_db)
        cancel = threading.Event()
        cancel.set()
        audit = MagicMock(spec=AuditLogger)

        verdict = pipeline_factory(audit_logger=audit).evaluate(
            make_context(behavioral_token="tok"), cancel_event=cancel
        )

        assert verdict.decision == Decision.APPROVE
        mock_reputation.check.assert_not_called()
        mock_behavioral.check.assert_not_called()
        assert _warning_types(audit.record.call_args[0][0]) == ["pipeline_cancelled", "pipeline_cancelled"]

    def test_cancel_during_wait_drops_pending_signal(self, pipeline_factory, make_context, mock_reputation):
        release = threading.Event()
        cancel = threading.Event()

        def slow_check(*args, **kwargs):
            cancel.set()
            release.wait(5)
            return reputation_result(is_spam=True)

        mock_reputation.check.side_effect = slow_check
        audit = MagicMock(spec=AuditLogger)

        try:
            verdict = pipeline_factory(audit_logger=audit).evaluate(make_context(), cancel_event=cancel)
        finally:
            release.set()

        assert verdict.decision == Decision.APPROVE
        assert audit.record.call_args[0][0].signals["reputation"]["error"] == "cancelled"


class TestFailureHandling:
    """evaluate() never raises and always audits once."""

    def test_normalizer_failure_holds_and_audits(self, pipeline_factory, make_context, seeded_db):
        normalizer = MagicMock(side_effect=RuntimeError("tokenizer crashed"))

        verdict = pipeline_factory(normalizer=normalizer).evaluate(make_context())

        assert verdict.decision == Decision.HOLD
        assert verdict.reason == PIPELINE_FAILURE_REASON
        rows = list_decisions(seeded_db)
        assert len(rows) == 1
        assert rows[0]["signals"] == {"phase": "error"}

    def test_settings_failure_falls_back_to_defaults(self, db_connection, make_context, mock_reputation):
        audit = MagicMock(spec=AuditLogger)
        pipeline = ModerationPipeline(
            db_connection,
            reputation_client=mock_reputation,
            behavioral_client=MagicMock(spec=RecaptchaClient),
            audit_logger=audit,
            config=FAST_CONFIG,
        )

        verdict = pipeline.evaluate(make_context())

        assert verdict.decision == Decision.APPROVE
        mock_reputation.check.assert_called_once()
        types = _warning_types(audit.record.call_args[0][0])
        assert "settings_load_failed" in types
        assert "blacklist_load_failed" in types
        assert "rate_limit_store_error" in types

    def test_audit_failure_does_not_change_verdict(self, pipeline_factory, make_context):
        audit = MagicMock(spec=AuditLogger)
        audit.record.side_effect = RuntimeError("log full")

        verdict = pipeline_factory(audit_logger=audit).evaluate(make_context())

        assert verdict.decision == Decision.APPROVE


class TestAuditTrail:
    """Exactly one decision log row per run."""

    def test_one_row_per_run_with_phase(self, pipeline_factory, make_context, seeded_db, fixed_now):
        pipeline = pipeline_factory()
        pipeline.evaluate(make_context(), now=fixed_now)
        pipeline.evaluate(make_context(content=""), now=fixed_now)

        rows = list_decisions(seeded_db)
        assert len(rows) == 2
        rejected, approved = rows
        assert rejected["decision"] == "reject"
        assert rejected["signals"]["phase"] == "phase1"
        assert approved["decision"] == "approve"
        assert approved["signals"]["phase"] == "phase2"
        assert approved["signals"]["reputation"] == {"configured": True, "error": None, "is_spam": False, "tip": None}
        assert approved["created_at"] == fixed_now.isoformat()
        assert "203.0.113.7" not in json.dumps(approved)


class TestSummarizeSignals:

    def test_phase_only_without_bundle(self):
        assert summarize_signals(None, "error") == {"phase": "error"}
