"""
Two-phase moderation pipeline.

Drives one comment submission from raw input to a Verdict:

    Phase 1 (sequential, local): policy + blacklist load, normalization,
        IP hashing, blacklist match, rate-limit reservation, prior-approval
        lookup, honeypot flag, then a preliminary decide().
    Short-circuit: reject and rate_limited can never be overturned by an
        external signal, so the run ends there without any network call.
    Phase 2 (concurrent): Akismet and reCAPTCHA run side by side in a
        ThreadPoolExecutor, each bounded by its own timeout and together by
        the pipeline deadline. Their results are merged into a new bundle
        snapshot and decide() runs again.

Exactly one rate-limit reservation and one audit row per run. evaluate() never
raises: an unexpected failure becomes a hold verdict for manual review.
"""

import concurrent.futures
import dataclasses
import sqlite3
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from spamgate.audit import AuditLogger
from spamgate.backend.integrations.akismet import AkismetClient, CommentCheckParams
from spamgate.backend.integrations.recaptcha import RecaptchaClient
from spamgate.backend.utils.errors import (
    WARNING_TYPE_ADAPTER_DEADLINE_EXCEEDED,
    WARNING_TYPE_BEHAVIORAL_UNAVAILABLE,
    WARNING_TYPE_BLACKLIST_LOAD_FAILED,
    WARNING_TYPE_PIPELINE_CANCELLED,
    WARNING_TYPE_PRIOR_APPROVAL_LOOKUP_FAILED,
    WARNING_TYPE_REPUTATION_UNAVAILABLE,
    WARNING_TYPE_SETTINGS_LOAD_FAILED,
    WarningsCollector,
)
from spamgate.blacklist import load_blacklist, match_blacklist
from spamgate.client_ip import hash_ip
from spamgate.comment_store import PriorApprovalLookup, sqlite_prior_approval_lookup
from spamgate.content import normalize_content
from spamgate.engine import decide, is_honeypot_triggered, make_verdict
from spamgate.models.moderation_models import (
    AdapterResult,
    AuditRecord,
    Blacklist,
    Decision,
    ModerationMode,
    NormalizedContent,
    Policy,
    SHORT_CIRCUIT_DECISIONS,
    SignalBundle,
    SubmissionContext,
    Verdict,
)
from spamgate.rate_limit import RateLimiter
from spamgate.settings import PipelineConfig, load_policy

logger = structlog.get_logger()

PHASE_LOCAL = "phase1"
PHASE_EXTERNAL = "phase2"
PHASE_ERROR = "error"

REPUTATION = "reputation"
BEHAVIORAL = "behavioral"

ERROR_DEADLINE_EXCEEDED = "deadline_exceeded"
ERROR_CANCELLED = "cancelled"
ERROR_ADAPTER_RAISED = "request_failed"

PIPELINE_FAILURE_REASON = "Moderation check failed, queued for manual review"

# How often the Phase 2 wait re-checks the cancel event
CANCEL_POLL_INTERVAL = 0.05

Normalizer = Callable[[str, int], NormalizedContent]

_UNAVAILABLE_WARNINGS = {
    REPUTATION: WARNING_TYPE_REPUTATION_UNAVAILABLE,
    BEHAVIORAL: WARNING_TYPE_BEHAVIORAL_UNAVAILABLE,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModerationPipeline:
    """Turns SubmissionContexts into Verdicts.

    Every collaborator can be injected; the defaults talk to the given SQLite
    connection and to the real services configured through the environment.

    Example:
        >>> pipeline = ModerationPipeline(conn)
        >>> verdict = pipeline.evaluate(ctx)
        >>> verdict.decision
        <Decision.APPROVE: 'approve'>
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        reputation_client: Optional[AkismetClient] = None,
        behavioral_client: Optional[RecaptchaClient] = None,
        normalizer: Normalizer = normalize_content,
        prior_approval_lookup: Optional[PriorApprovalLookup] = None,
        audit_logger: Optional[AuditLogger] = None,
        rate_limiter: Optional[RateLimiter] = None,
        config: Optional[PipelineConfig] = None,
    ):
        self.conn = conn
        self.reputation_client = reputation_client if reputation_client is not None else AkismetClient()
        self.behavioral_client = behavioral_client if behavioral_client is not None else RecaptchaClient()
        self.normalizer = normalizer
        self.prior_approval_lookup = prior_approval_lookup or sqlite_prior_approval_lookup(conn)
        self.audit_logger = audit_logger or AuditLogger(conn)
        self.rate_limiter = rate_limiter or RateLimiter(conn)
        self.config = config or PipelineConfig.from_env()

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def evaluate(
        self,
        ctx: SubmissionContext,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> Verdict:
        """Run the full pipeline for one submission.

        Args:
            ctx: The submission
            cancel_event: Set by the caller when the request is abandoned;
                pending Phase 2 calls are dropped and treated as absent
            now: Evaluation time, used for the rate-limit window and the audit
                timestamp (defaults to the current UTC time)

        Returns:
            Exactly one Verdict. Never raises.
        """
        now = now or _utcnow()
        warnings = WarningsCollector()
        bundle: Optional[SignalBundle] = None
        ip_hash: Optional[str] = None

        try:
            ip_hash = hash_ip(ctx.client_ip)
            verdict, bundle, phase = self._run(ctx, ip_hash, warnings, cancel_event, now)

        except Exception as e:
            logger.error(
                "moderation_pipeline_failed",
                error_type=type(e).__name__,
                error_message=str(e),
                target_type=ctx.target_type,
                target_id=ctx.target_id
            )
            verdict = make_verdict(Decision.HOLD, PIPELINE_FAILURE_REASON)
            verdict = dataclasses.replace(verdict, content=ctx.content.strip(), ip_hash=ip_hash)
            phase = PHASE_ERROR

        self._audit(ctx, verdict, bundle, phase, warnings, now)

        logger.info(
            "moderation_decision",
            decision=verdict.decision.value,
            reason=verdict.reason,
            phase=phase,
            target_type=ctx.target_type,
            target_id=ctx.target_id,
            score=verdict.score,
            service_tip=verdict.service_tip,
            warnings=warnings.types()
        )
        return verdict

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run(
        self,
        ctx: SubmissionContext,
        ip_hash: str,
        warnings: WarningsCollector,
        cancel_event: Optional[threading.Event],
        now: datetime,
    ) -> Tuple[Verdict, SignalBundle, str]:
        policy = self._load_policy(warnings)
        bundle = self._gather_local_signals(ctx, ip_hash, policy, warnings, now)

        preliminary = decide(bundle, policy, self.config.behavioral_action)
        if preliminary.decision in SHORT_CIRCUIT_DECISIONS:
            return self._finish(preliminary, bundle, ip_hash), bundle, PHASE_LOCAL

        external = self._gather_external_signals(ctx, bundle, policy, warnings, cancel_event)
        bundle = dataclasses.replace(bundle, **external)

        final = decide(bundle, policy, self.config.behavioral_action)
        return self._finish(final, bundle, ip_hash), bundle, PHASE_EXTERNAL

    def _gather_local_signals(
        self,
        ctx: SubmissionContext,
        ip_hash: str,
        policy: Policy,
        warnings: WarningsCollector,
        now: datetime,
    ) -> SignalBundle:
        blacklist = self._load_blacklist(warnings)
        normalized = self.normalizer(ctx.content, policy.max_content_length)

        hits = match_blacklist(normalized.text, ctx.email, ctx.client_ip, blacklist, ip_hash=ip_hash)

        rate_limited = self.rate_limiter.check_and_reserve(
            ip_hash,
            ctx.target_type,
            ctx.target_id,
            ceiling=policy.rate_limit_per_minute,
            now=now,
            warnings=warnings,
        )

        has_prior_approval = True
        if policy.moderation_mode == ModerationMode.FIRST_TIME_HOLD:
            has_prior_approval = self._lookup_prior_approval(ctx.submitter_id, warnings)

        return SignalBundle(
            content=normalized.text,
            link_count=normalized.link_count,
            is_repetitive=normalized.is_repetitive,
            content_rejected=normalized.rejected,
            reject_reason=normalized.reject_reason,
            rate_limited=rate_limited,
            honeypot_triggered=is_honeypot_triggered(ctx.honeypot_value),
            has_prior_approval=has_prior_approval,
            blacklist_hits=hits,
            behavioral_token_supplied=bool(ctx.behavioral_token),
        )

    def _gather_external_signals(
        self,
        ctx: SubmissionContext,
        bundle: SignalBundle,
        policy: Policy,
        warnings: WarningsCollector,
        cancel_event: Optional[threading.Event],
    ) -> Dict[str, AdapterResult]:
        """Run the enabled adapters concurrently and collect their results.

        Returns:
            SignalBundle field name -> AdapterResult for every adapter started
        """
        timeout_ms = self.config.adapter_timeout_ms
        jobs: Dict[str, Callable[[], AdapterResult]] = {}

        if policy.reputation_enabled:
            params = CommentCheckParams(
                user_ip=ctx.client_ip,
                user_agent=ctx.user_agent,
                comment_content=bundle.content,
                comment_author=ctx.display_name,
                comment_author_email=ctx.email,
                permalink=ctx.permalink,
            )
            jobs[REPUTATION] = lambda: self.reputation_client.check(params, timeout_ms)

        if policy.behavioral_enabled and ctx.behavioral_token:
            token = ctx.behavioral_token
            jobs[BEHAVIORAL] = lambda: self.behavioral_client.check(
                token, self.config.behavioral_action, timeout_ms, remote_ip=ctx.client_ip
            )

        if not jobs:
            return {}

        if cancel_event is not None and cancel_event.is_set():
            return {name: self._cancelled(name, warnings) for name in jobs}

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=len(jobs), thread_name_prefix="spamgate-signal"
        )
        try:
            future_to_name = {executor.submit(fn): name for name, fn in jobs.items()}
            done, cancelled = self._wait(future_to_name, cancel_event)
        finally:
            # Stragglers keep running until their own timeout but are ignored
            executor.shutdown(wait=False, cancel_futures=True)

        results: Dict[str, AdapterResult] = {}
        for future, name in future_to_name.items():
            if future in done:
                results[name] = self._collect(name, future, warnings)
            elif cancelled:
                results[name] = self._cancelled(name, warnings)
            else:
                logger.warning(
                    "adapter_deadline_exceeded",
                    adapter=name,
                    deadline_ms=self.config.pipeline_deadline_ms
                )
                warnings.append(
                    WARNING_TYPE_ADAPTER_DEADLINE_EXCEEDED,
                    f"{name} signal did not finish before the pipeline deadline",
                    {"adapter": name, "deadline_ms": self.config.pipeline_deadline_ms}
                )
                results[name] = AdapterResult(configured=True, error=ERROR_DEADLINE_EXCEEDED)

        return results

    def _wait(self, future_to_name: Dict[concurrent.futures.Future, str], cancel_event: Optional[threading.Event]):
        """Wait for every future, the deadline, or cancellation.

        Returns:
            (done futures, True if the wait ended because of cancellation)
        """
        deadline = time.monotonic() + self.config.pipeline_deadline_ms / 1000.0

        if cancel_event is None:
            done, _ = concurrent.futures.wait(future_to_name, timeout=self.config.pipeline_deadline_ms / 1000.0)
            return done, False

        while True:
            remaining = deadline - time.monotonic()
            done, pending = concurrent.futures.wait(
                future_to_name, timeout=max(0.0, min(CANCEL_POLL_INTERVAL, remaining))
            )
            if not pending:
                return done, False
            if cancel_event.is_set():
                return done, True
            if remaining <= 0:
                return done, False

    def _collect(self, name: str, future: concurrent.futures.Future, warnings: WarningsCollector) -> AdapterResult:
        try:
            result = future.result()
        except Exception as e:
            # Adapters are not supposed to raise; treat it like a failed call
            logger.error("adapter_raised", adapter=name, error_type=type(e).__name__, error_message=str(e))
            result = AdapterResult(configured=True, error=ERROR_ADAPTER_RAISED)

        if result.configured and result.error is not None:
            warnings.append(
                _UNAVAILABLE_WARNINGS[name],
                f"{name} signal unavailable",
                {"adapter": name, "error": result.error}
            )
        return result

    def _cancelled(self, name: str, warnings: WarningsCollector) -> AdapterResult:
        logger.info("adapter_cancelled", adapter=name)
        warnings.append(
            WARNING_TYPE_PIPELINE_CANCELLED,
            f"{name} signal dropped because the request was cancelled",
            {"adapter": name}
        )
        return AdapterResult(configured=True, error=ERROR_CANCELLED)

    # ------------------------------------------------------------------
    # Degrading loaders
    # ------------------------------------------------------------------

    def _load_policy(self, warnings: WarningsCollector) -> Policy:
        try:
            return load_policy(self.conn)
        except sqlite3.Error as e:
            logger.error("settings_load_failed", error_type=type(e).__name__, error_message=str(e))
            warnings.append(WARNING_TYPE_SETTINGS_LOAD_FAILED, "Using default moderation settings", {"error": str(e)})
            return Policy()

    def _load_blacklist(self, warnings: WarningsCollector) -> Blacklist:
        try:
            return load_blacklist(self.conn)
        except sqlite3.Error as e:
            logger.error("blacklist_load_failed", error_type=type(e).__name__, error_message=str(e))
            warnings.append(WARNING_TYPE_BLACKLIST_LOAD_FAILED, "Blacklist unavailable", {"error": str(e)})
            return Blacklist()

    def _lookup_prior_approval(self, submitter_id: Optional[str], warnings: WarningsCollector) -> bool:
        try:
            return bool(self.prior_approval_lookup(submitter_id))
        except Exception as e:
            logger.error("prior_approval_lookup_failed", error_type=type(e).__name__, error_message=str(e))
            warnings.append(
                WARNING_TYPE_PRIOR_APPROVAL_LOOKUP_FAILED,
                "Prior approval unknown, treating submitter as first-time",
                {"error": str(e)}
            )
            return False

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    @staticmethod
    def _finish(verdict: Verdict, bundle: SignalBundle, ip_hash: str) -> Verdict:
        return dataclasses.replace(
            verdict,
            content=bundle.content,
            link_count=bundle.link_count,
            ip_hash=ip_hash,
        )

    def _audit(
        self,
        ctx: SubmissionContext,
        verdict: Verdict,
        bundle: Optional[SignalBundle],
        phase: str,
        warnings: WarningsCollector,
        now: datetime,
    ) -> None:
        try:
            record = AuditRecord(
                decision=verdict.decision,
                target_type=ctx.target_type,
                target_id=ctx.target_id,
                reason=verdict.reason,
                signals=summarize_signals(bundle, phase),
                created_at=now,
                link_count=verdict.link_count,
                service_tip=verdict.service_tip,
                score=verdict.score,
                ip_hash=verdict.ip_hash,
                warnings=warnings.to_json(),
            )
            self.audit_logger.record(record)
        except Exception as e:
            logger.error("audit_write_failed", error_type=type(e).__name__, error_message=str(e))


def _adapter_summary(outcome: Optional[AdapterResult]) -> Optional[Dict[str, Any]]:
    if outcome is None:
        return None
    summary: Dict[str, Any] = {"configured": outcome.configured, "error": outcome.error}
    if outcome.result is not None:
        summary.update(dataclasses.asdict(outcome.result))
    return summary


def summarize_signals(bundle: Optional[SignalBundle], phase: str) -> Dict[str, Any]:
    """JSON-safe summary of a bundle for the decision log. Content is omitted."""
    if bundle is None:
        return {"phase": phase}

    return {
        "phase": phase,
        "link_count": bundle.link_count,
        "is_repetitive": bundle.is_repetitive,
        "content_rejected": bundle.content_rejected,
        "rate_limited": bundle.rate_limited,
        "honeypot_triggered": bundle.honeypot_triggered,
        "has_prior_approval": bundle.has_prior_approval,
        "blacklist": dataclasses.asdict(bundle.blacklist_hits),
        "behavioral_token_supplied": bundle.behavioral_token_supplied,
        "reputation": _adapter_summary(bundle.reputation),
        "behavioral": _adapter_summary(bundle.behavioral),
    }
