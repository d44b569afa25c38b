"""
Akismet Integration Module

Content-reputation signal for the moderation pipeline:
- comment-check (spam / ham verdict plus optional pro-tip)
- verify-key
- submit-spam / submit-ham feedback when a moderator overrides a decision

comment-check never raises: a missing key yields an unconfigured result and
every transport failure becomes an error result, so the pipeline can treat the
signal as absent. The feedback helpers retry with backoff and raise
AkismetError once retries are exhausted.

Environment variables: AKISMET_API_KEY, AKISMET_BLOG_URL
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional

import requests
import structlog

from spamgate.backend.utils.errors import retry_with_backoff
from spamgate.models.moderation_models import AdapterResult, ReputationVerdict

logger = structlog.get_logger()

AKISMET_REST_HOST = "rest.akismet.com"
AKISMET_API_VERSION = "1.1"
AKISMET_USER_AGENT = "spamgate/1.0 | Akismet/1.0"
PRO_TIP_HEADER = "X-akismet-pro-tip"

ERROR_TIMEOUT = "timeout"
ERROR_REQUEST_FAILED = "request_failed"


class AkismetError(Exception):
    """Raised by the feedback helpers when Akismet cannot be reached."""
    pass


@dataclass(frozen=True)
class CommentCheckParams:
    """Submission fields sent to comment-check / submit-spam / submit-ham."""
    user_ip: str
    user_agent: str
    comment_content: str
    comment_author: str
    comment_author_email: str
    permalink: str
    referrer: str = ""

    def to_form(self, blog_url: str) -> Dict[str, str]:
        return {
            "blog": blog_url,
            "user_ip": self.user_ip,
            "user_agent": self.user_agent,
            "referrer": self.referrer,
            "permalink": self.permalink,
            "comment_type": "comment",
            "comment_author": self.comment_author,
            "comment_author_email": self.comment_author_email,
            "comment_content": self.comment_content,
        }


class AkismetClient:
    """Akismet REST client.

    Reads AKISMET_API_KEY and AKISMET_BLOG_URL at construction. An empty key
    makes the client unconfigured; it never raises on that account.

    Example:
        >>> client = AkismetClient()
        >>> outcome = client.check(params, timeout_ms=10000)
        >>> outcome.configured, outcome.error
        (True, None)
        >>> outcome.result.is_spam
        False
    """

    def __init__(self, api_key: Optional[str] = None, blog_url: Optional[str] = None):
        if api_key is None:
            api_key = os.environ.get("AKISMET_API_KEY", "")
        if blog_url is None:
            blog_url = os.environ.get("AKISMET_BLOG_URL", "")

        self.api_key = api_key.strip()
        self.blog_url = blog_url.strip()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _endpoint(self, method: str) -> str:
        return f"https://{self.api_key}.{AKISMET_REST_HOST}/{AKISMET_API_VERSION}/{method}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": AKISMET_USER_AGENT,
        }

    def check(self, params: CommentCheckParams, timeout_ms: int) -> AdapterResult:
        """Run comment-check for one submission.

        Args:
            params: Submission fields
            timeout_ms: Connect/read timeout for the HTTP call; the pipeline
                deadline bounds the total time spent waiting on it

        Returns:
            AdapterResult with configured=False when no key is set, an error of
            "timeout" or "request_failed" when the call fails, otherwise a
            ReputationVerdict.
        """
        if not self.configured:
            logger.warning("akismet_not_configured")
            return AdapterResult(configured=False)

        try:
            response = requests.post(
                self._endpoint("comment-check"),
                data=params.to_form(self.blog_url),
                headers=self._headers(),
                timeout=timeout_ms / 1000.0,
            )
            response.raise_for_status()
            body = response.text.strip()

        except requests.Timeout as e:
            logger.error(
                "akismet_request_timed_out",
                error_type=type(e).__name__,
                error_message=str(e),
                timeout_ms=timeout_ms
            )
            return AdapterResult(configured=True, error=ERROR_TIMEOUT)

        except requests.RequestException as e:
            logger.error(
                "akismet_request_failed",
                error_type=type(e).__name__,
                error_message=str(e)
            )
            return AdapterResult(configured=True, error=ERROR_REQUEST_FAILED)

        except Exception as e:
            logger.error(
                "akismet_check_failed",
                error_type=type(e).__name__,
                error_message=str(e)
            )
            return AdapterResult(configured=True, error=ERROR_REQUEST_FAILED)

        # Anything but a literal true/false (e.g. "invalid" for a bad key) is not a verdict
        if body not in ("true", "false"):
            logger.error(
                "akismet_unexpected_response",
                body=body[:100],
                debug_help=response.headers.get("X-akismet-debug-help")
            )
            return AdapterResult(configured=True, error=ERROR_REQUEST_FAILED)

        verdict = ReputationVerdict(
            is_spam=body == "true",
            tip=response.headers.get(PRO_TIP_HEADER) or None
        )
        logger.info("akismet_check_completed", is_spam=verdict.is_spam, tip=verdict.tip)
        return AdapterResult(configured=True, result=verdict)

    def verify_key(self, timeout_ms: int = 10_000) -> bool:
        """Return True if Akismet accepts the configured key for the blog URL."""
        if not self.configured:
            return False

        try:
            response = requests.post(
                f"https://{AKISMET_REST_HOST}/{AKISMET_API_VERSION}/verify-key",
                data={"key": self.api_key, "blog": self.blog_url},
                headers=self._headers(),
                timeout=timeout_ms / 1000.0,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("akismet_verify_key_failed", error_type=type(e).__name__, error_message=str(e))
            return False

        return response.text.strip() == "valid"

    def _submit_feedback(self, method: str, params: CommentCheckParams, timeout_ms: int, max_retries: int) -> bool:
        if not self.configured:
            return False

        def _post():
            response = requests.post(
                self._endpoint(method),
                data=params.to_form(self.blog_url),
                headers=self._headers(),
                timeout=timeout_ms / 1000.0,
            )
            response.raise_for_status()
            return response

        try:
            retry_with_backoff(
                _post,
                max_retries=max_retries,
                base_delay=1.0,
                max_delay=10.0,
                retryable_exceptions=(requests.ConnectionError, requests.Timeout),
            )
        except requests.RequestException as e:
            logger.error(
                "akismet_feedback_failed",
                method=method,
                error_type=type(e).__name__,
                error_message=str(e)
            )
            raise AkismetError(f"Akismet {method} failed: {e}") from e

        logger.info("akismet_feedback_submitted", method=method)
        return True

    def report_spam(self, params: CommentCheckParams, timeout_ms: int = 10_000, max_retries: int = 3) -> bool:
        """Tell Akismet a comment it let through was spam.

        Returns:
            False when unconfigured, True once submitted

        Raises:
            AkismetError: If the submission fails after retries
        """
        return self._submit_feedback("submit-spam", params, timeout_ms, max_retries)

    def report_ham(self, params: CommentCheckParams, timeout_ms: int = 10_000, max_retries: int = 3) -> bool:
        """Tell Akismet a comment it flagged was legitimate.

        Returns:
            False when unconfigured, True once submitted

        Raises:
            AkismetError: If the submission fails after retries
        """
        return self._submit_feedback("submit-ham", params, timeout_ms, max_retries)
