"""Moderation data models for spamgate.

This module defines the data structures that flow through the comment
moderation pipeline, from the incoming submission to the final verdict.

Data Models:
    SubmissionContext: immutable input to one pipeline run
    Policy: moderation settings snapshot, read-only per run
    Blacklist: lower-cased deny-lists (keywords, IPs, emails, domains)
    NormalizedContent: output of the content normalizer
    BlacklistMatch: which deny-list entries the submission hit
    AdapterResult: outcome of one external signal call
    ReputationVerdict / BehavioralScore: raw external service verdicts
    SignalBundle: every signal gathered so far (frozen snapshot per phase)
    Verdict: terminal decision returned to the caller
    AuditRecord: one append-only row in spam_decision_log

Snapshots are frozen dataclasses. Phase 2 builds a new SignalBundle with
dataclasses.replace() rather than mutating the Phase 1 bundle.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Generic, Iterable, Optional, TypeVar


T = TypeVar('T')


class Decision(str, Enum):
    """Terminal moderation decisions, in priority order."""
    REJECT = "reject"
    RATE_LIMITED = "rate_limited"
    SPAM = "spam"
    HOLD = "hold"
    APPROVE = "approve"


class ModerationMode(str, Enum):
    AUTO = "auto"
    ALL_HOLD = "all-hold"
    FIRST_TIME_HOLD = "first-time-hold"

    @classmethod
    def parse(cls, value: str) -> "ModerationMode":
        """Parse a stored mode, accepting the legacy "all" / "first_time" values.

        Raises:
            ValueError: If value is not a known mode
        """
        normalized = str(value).strip().lower()
        aliases = {"all": cls.ALL_HOLD, "first_time": cls.FIRST_TIME_HOLD}
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


# Decisions that external signals can never overturn
SHORT_CIRCUIT_DECISIONS = frozenset({Decision.REJECT, Decision.RATE_LIMITED})


@dataclass(frozen=True)
class SubmissionContext:
    """A single comment submission as received from the request handler.

    Attributes:
        content: Raw comment text
        display_name: Name shown next to the comment
        email: Submitter email address
        target_type: Kind of thing being commented on (e.g. "post", "gallery_item")
        target_id: Identifier of the commented-on item
        submitter_id: Authenticated user id, None for anonymous submitters
        client_ip: Client IP as seen by the request handler
        user_agent: Client user agent string
        permalink: Public URL of the commented-on item
        honeypot_value: Value of the hidden honeypot form field, if posted
        behavioral_token: reCAPTCHA token supplied by the client, if any
    """
    content: str
    display_name: str
    email: str
    target_type: str
    target_id: str
    submitter_id: Optional[str]
    client_ip: str
    user_agent: str = ""
    permalink: str = ""
    honeypot_value: Optional[str] = None
    behavioral_token: Optional[str] = None


@dataclass(frozen=True)
class Policy:
    """Moderation settings snapshot. Defaults mirror seed.sql."""
    moderation_mode: ModerationMode = ModerationMode.AUTO
    max_links_before_moderation: int = 2
    honeypot_enabled: bool = True
    reputation_enabled: bool = True
    behavioral_enabled: bool = False
    behavioral_threshold: float = 0.5
    rate_limit_per_minute: int = 3
    max_content_length: int = 4000


@dataclass(frozen=True)
class Blacklist:
    keywords: FrozenSet[str] = frozenset()
    ips: FrozenSet[str] = frozenset()
    emails: FrozenSet[str] = frozenset()
    domains: FrozenSet[str] = frozenset()

    @classmethod
    def from_values(
        cls,
        keywords: Iterable[str] = (),
        ips: Iterable[str] = (),
        emails: Iterable[str] = (),
        domains: Iterable[str] = (),
    ) -> "Blacklist":
        """Build a Blacklist, lower-casing and stripping every value."""
        def _clean(values: Iterable[str]) -> FrozenSet[str]:
            return frozenset(v.strip().lower() for v in values if v and v.strip())

        return cls(
            keywords=_clean(keywords),
            ips=_clean(ips),
            emails=_clean(emails),
            domains=_clean(domains),
        )


@dataclass(frozen=True)
class NormalizedContent:
    """Content normalizer output.

    Attributes:
        text: Sanitized text (empty when rejected)
        link_count: Number of http(s) links found
        is_repetitive: True when a word is repeated excessively
        rejected: True when the content must not be accepted at all
        reject_reason: Why the content was rejected
    """
    text: str
    link_count: int = 0
    is_repetitive: bool = False
    rejected: bool = False
    reject_reason: Optional[str] = None


@dataclass(frozen=True)
class BlacklistMatch:
    keyword_hit: Optional[str] = None
    email_hit: bool = False
    ip_hit: bool = False
    domain_hit: Optional[str] = None

    @property
    def any_hit(self) -> bool:
        return bool(self.keyword_hit or self.email_hit or self.ip_hit or self.domain_hit)


@dataclass(frozen=True)
class ReputationVerdict:
    """Akismet comment-check verdict; tip is the X-akismet-pro-tip header."""
    is_spam: bool
    tip: Optional[str] = None


@dataclass(frozen=True)
class BehavioralScore:
    """reCAPTCHA siteverify verdict.

    success is False when the service rejected the token itself; score is
    0.0 in that case.
    """
    success: bool
    score: float
    action: Optional[str] = None
    error_codes: tuple = ()


@dataclass(frozen=True)
class AdapterResult(Generic[T]):
    """Outcome of one external signal call.

    configured=False means the credential is missing and no call was made.
    error set means the call was attempted and failed (timeout, network,
    malformed response). Neither state is evidence for or against spam.
    """
    configured: bool
    result: Optional[T] = None
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.configured and self.error is None and self.result is not None


@dataclass(frozen=True)
class SignalBundle:
    """Every signal gathered for one submission.

    reputation and behavioral stay None until Phase 2 runs; the decision
    engine skips the corresponding checks when they are absent.
    """
    content: str
    link_count: int = 0
    is_repetitive: bool = False
    content_rejected: bool = False
    reject_reason: Optional[str] = None
    rate_limited: bool = False
    honeypot_triggered: bool = False
    has_prior_approval: bool = True
    blacklist_hits: BlacklistMatch = field(default_factory=BlacklistMatch)
    behavioral_token_supplied: bool = False
    reputation: Optional[AdapterResult] = None
    behavioral: Optional[AdapterResult] = None


@dataclass(frozen=True)
class Verdict:
    """Final output of the pipeline for one submission.

    Attributes:
        decision: One of reject / rate_limited / spam / hold / approve
        reason: Human-readable rationale (internal, not shown to submitters)
        is_approved: Display immediately
        is_spam: Flag as spam, never display
        score: Behavioral score when one was obtained
        service_tip: Reputation service tip (e.g. "discard") when provided
        content: Sanitized content the caller should store
        link_count: Links counted by the normalizer
        ip_hash: Hashed client IP the caller should store
    """
    decision: Decision
    reason: str
    is_approved: bool
    is_spam: bool
    score: Optional[float] = None
    service_tip: Optional[str] = None
    content: str = ""
    link_count: int = 0
    ip_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.value,
            "reason": self.reason,
            "is_approved": self.is_approved,
            "is_spam": self.is_spam,
            "score": self.score,
            "service_tip": self.service_tip,
            "content": self.content,
            "link_count": self.link_count,
            "ip_hash": self.ip_hash,
        }


@dataclass(frozen=True)
class AuditRecord:
    decision: Decision
    target_type: str
    target_id: str
    reason: str
    signals: Dict[str, Any]
    created_at: datetime
    link_count: int = 0
    service_tip: Optional[str] = None
    score: Optional[float] = None
    ip_hash: Optional[str] = None
    warnings: Optional[str] = None
