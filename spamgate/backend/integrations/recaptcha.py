"""
reCAPTCHA v3 Integration Module

Behavioral signal for the moderation pipeline: verifies the token the client
obtained from reCAPTCHA and returns its bot score in [0, 1] and action name.

check() never raises. A missing secret yields an unconfigured result; a
transport failure yields an error result. A token that Google itself rejects
(`success: false`) is a real verdict and comes back with score 0.0.

Environment variables: RECAPTCHA_SECRET_KEY
"""

import os
from typing import Optional

import requests
import structlog

from spamgate.models.moderation_models import AdapterResult, BehavioralScore

logger = structlog.get_logger()

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"

ERROR_TIMEOUT = "timeout"
ERROR_REQUEST_FAILED = "request_failed"


class RecaptchaClient:
    """reCAPTCHA siteverify client.

    Example:
        >>> client = RecaptchaClient()
        >>> outcome = client.check(token, "submit_comment", timeout_ms=10000)
        >>> outcome.result.score
        0.9
    """

    def __init__(self, secret_key: Optional[str] = None):
        if secret_key is None:
            secret_key = os.environ.get("RECAPTCHA_SECRET_KEY", "")
        self.secret_key = secret_key.strip()

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def check(
        self,
        token: str,
        expected_action: str,
        timeout_ms: int,
        remote_ip: Optional[str] = None,
    ) -> AdapterResult:
        """Verify a client token.

        Args:
            token: Token produced by grecaptcha.execute() on the client
            expected_action: Action the token should have been issued for; only
                logged here, the decision engine compares it
            timeout_ms: Connect/read timeout for the HTTP call; the pipeline
                deadline bounds the total time spent waiting on it
            remote_ip: Client IP forwarded to Google, if known

        Returns:
            AdapterResult holding a BehavioralScore, configured=False without a
            secret, or an error of "timeout" / "request_failed".
        """
        if not self.configured:
            logger.warning("recaptcha_not_configured")
            return AdapterResult(configured=False)

        data = {"secret": self.secret_key, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            response = requests.post(
                RECAPTCHA_VERIFY_URL,
                data=data,
                timeout=timeout_ms / 1000.0,
            )
            response.raise_for_status()
            payload = response.json()

        except requests.Timeout as e:
            logger.error(
                "recaptcha_request_timed_out",
                error_type=type(e).__name__,
                error_message=str(e),
                timeout_ms=timeout_ms
            )
            return AdapterResult(configured=True, error=ERROR_TIMEOUT)

        except Exception as e:
            # requests.RequestException, or a body that is not JSON
            logger.error(
                "recaptcha_request_failed",
                error_type=type(e).__name__,
                error_message=str(e)
            )
            return AdapterResult(configured=True, error=ERROR_REQUEST_FAILED)

        if not isinstance(payload, dict):
            logger.error("recaptcha_unexpected_response", payload_type=type(payload).__name__)
            return AdapterResult(configured=True, error=ERROR_REQUEST_FAILED)

        success = bool(payload.get("success"))
        try:
            score = float(payload.get("score", 0.0)) if success else 0.0
        except (TypeError, ValueError):
            score = 0.0

        result = BehavioralScore(
            success=success,
            score=score,
            action=payload.get("action"),
            error_codes=tuple(payload.get("error-codes", ()) or ()),
        )

        logger.info(
            "recaptcha_verify_completed",
            success=result.success,
            score=result.score,
            action=result.action,
            expected_action=expected_action,
            error_codes=list(result.error_codes)
        )
        return AdapterResult(configured=True, result=result)
