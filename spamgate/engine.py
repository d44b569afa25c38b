"""
Spam decision engine.

Pure mapping from a SignalBundle and a Policy to a Verdict. No database,
network or clock access: the orchestrator gathers every signal first and calls
decide() once per phase.

Checks form a strict priority ladder and the first match wins:

    1. content rejected by the normalizer      -> reject
    2. rate limited                            -> rate_limited
    3. honeypot field filled (when enabled)    -> spam
    4. any deny-list hit                       -> spam
    5. repetitive content                      -> spam
    6. reputation service says spam            -> spam
    7. behavioral score below threshold        -> hold
    8. too many links                          -> hold
    9. moderation mode requires review         -> hold
   10. otherwise                               -> approve

Checks 6 and 7 are skipped when their signal is absent, unconfigured or
errored, so a Phase 1 bundle and a bundle with a failed service produce the
same result as one where the service was never enabled.
"""

from functools import partial
from typing import Callable, List, Optional

from spamgate.models.moderation_models import (
    BehavioralScore,
    Decision,
    ModerationMode,
    Policy,
    ReputationVerdict,
    SignalBundle,
    Verdict,
)


EXPECTED_BEHAVIORAL_ACTION = "submit_comment"
HIGH_CONFIDENCE_TIP = "discard"

SPAM_DECISIONS = frozenset({Decision.SPAM, Decision.REJECT})


def make_verdict(
    decision: Decision,
    reason: str,
    score: Optional[float] = None,
    service_tip: Optional[str] = None,
) -> Verdict:
    """Build a Verdict, deriving the approval and spam flags from the decision."""
    return Verdict(
        decision=decision,
        reason=reason,
        is_approved=decision == Decision.APPROVE,
        is_spam=decision in SPAM_DECISIONS,
        score=score,
        service_tip=service_tip,
    )


# ---------------------------------------------------------------------------
# Individual checks. Each returns (decision, reason) or None.
# ---------------------------------------------------------------------------

def check_content_rejected(bundle: SignalBundle, policy: Policy):
    if bundle.content_rejected:
        return Decision.REJECT, bundle.reject_reason or "Content validation failed"
    return None


def check_rate_limited(bundle: SignalBundle, policy: Policy):
    if bundle.rate_limited:
        return Decision.RATE_LIMITED, "Rate limit exceeded"
    return None


def check_honeypot(bundle: SignalBundle, policy: Policy):
    if policy.honeypot_enabled and bundle.honeypot_triggered:
        return Decision.SPAM, "Bot detected (honeypot)"
    return None


def check_blacklist(bundle: SignalBundle, policy: Policy):
    hits = bundle.blacklist_hits
    if hits.keyword_hit:
        return Decision.SPAM, f"Blacklisted keyword: {hits.keyword_hit}"
    if hits.ip_hit:
        return Decision.SPAM, "IP blacklisted"
    if hits.email_hit:
        return Decision.SPAM, "Email blacklisted"
    if hits.domain_hit:
        return Decision.SPAM, f"Email domain blacklisted: {hits.domain_hit}"
    return None


def check_repetitive(bundle: SignalBundle, policy: Policy):
    if bundle.is_repetitive:
        return Decision.SPAM, "Repetitive content detected"
    return None


def check_reputation(bundle: SignalBundle, policy: Policy):
    outcome = bundle.reputation
    if not policy.reputation_enabled or outcome is None or not outcome.usable:
        return None

    verdict: ReputationVerdict = outcome.result
    if not verdict.is_spam:
        return None
    if verdict.tip == HIGH_CONFIDENCE_TIP:
        return Decision.SPAM, "Flagged by Akismet (high confidence)"
    return Decision.SPAM, "Flagged by Akismet"


def check_behavioral(
    bundle: SignalBundle,
    policy: Policy,
    expected_action: str = EXPECTED_BEHAVIORAL_ACTION,
):
    outcome = bundle.behavioral
    if not policy.behavioral_enabled or not bundle.behavioral_token_supplied:
        return None
    if outcome is None or not outcome.usable:
        return None

    score: BehavioralScore = outcome.result
    if not score.success:
        codes = ", ".join(score.error_codes) or "unknown"
        return Decision.HOLD, f"reCAPTCHA verification failed: {codes}"
    if score.action and score.action != expected_action:
        return Decision.HOLD, f"reCAPTCHA action mismatch: {score.action}"
    if score.score < policy.behavioral_threshold:
        return Decision.HOLD, f"Low reCAPTCHA score: {score.score}"
    return None


def check_link_count(bundle: SignalBundle, policy: Policy):
    if bundle.link_count > policy.max_links_before_moderation:
        return Decision.HOLD, f"Too many links: {bundle.link_count}"
    return None


def check_moderation_mode(bundle: SignalBundle, policy: Policy):
    if policy.moderation_mode == ModerationMode.ALL_HOLD:
        return Decision.HOLD, "All comments require moderation"
    if policy.moderation_mode == ModerationMode.FIRST_TIME_HOLD and not bundle.has_prior_approval:
        return Decision.HOLD, "First-time commenter"
    return None


DECISION_LADDER: List[Callable] = [
    check_content_rejected,
    check_rate_limited,
    check_honeypot,
    check_blacklist,
    check_repetitive,
    check_reputation,
    check_behavioral,
    check_link_count,
    check_moderation_mode,
]


def _service_details(bundle: SignalBundle):
    """Score and tip to surface on the verdict, when the services provided them."""
    score = None
    if bundle.behavioral is not None and bundle.behavioral.usable:
        score = bundle.behavioral.result.score

    tip = None
    if bundle.reputation is not None and bundle.reputation.usable:
        tip = bundle.reputation.result.tip

    return score, tip


def decide(
    bundle: SignalBundle,
    policy: Policy,
    expected_action: str = EXPECTED_BEHAVIORAL_ACTION,
) -> Verdict:
    """Turn every gathered signal into a single Verdict.

    Args:
        bundle: Signals gathered so far (Phase 1 or Phase 2 snapshot)
        policy: Moderation settings for this run
        expected_action: reCAPTCHA action the token must have been issued for

    Returns:
        Verdict from the first matching check, or approve

    Example:
        >>> decide(SignalBundle(content="hello"), Policy()).decision
        <Decision.APPROVE: 'approve'>
    """
    score, tip = _service_details(bundle)

    ladder = [
        partial(check_behavioral, expected_action=expected_action)
        if check is check_behavioral else check
        for check in DECISION_LADDER
    ]
    for check in ladder:
        outcome = check(bundle, policy)
        if outcome is not None:
            decision, reason = outcome
            return make_verdict(decision, reason, score=score, service_tip=tip)

    return make_verdict(Decision.APPROVE, "Passed all checks", score=score, service_tip=tip)


def is_honeypot_triggered(value: Optional[str]) -> bool:
    """True when the hidden honeypot field came back non-empty.

    Examples:
        >>> is_honeypot_triggered(None)
        False
        >>> is_honeypot_triggered("   ")
        False
        >>> is_honeypot_triggered("http://spam.example")
        True
    """
    return bool(value and value.strip())
