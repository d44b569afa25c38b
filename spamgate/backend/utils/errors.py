"""Error Handling Utilities

Retry logic with exponential backoff for the admin-triggered calls to external
services, and a warnings collector for the non-fatal degradations that happen
during a single moderation run.

A pipeline run never retries: a failed signal source simply contributes nothing
to the decision and leaves a warning behind for the audit record.
"""

import json
import time
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar


T = TypeVar('T')


def retry_with_backoff(
    fn: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
) -> T:
    """Execute a callable with exponential backoff retry logic.

    Used for Akismet feedback submissions (report spam / report ham), which are
    triggered by a moderator after the fact and may safely wait.

    Args:
        fn: Callable to execute (should take no arguments)
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay cap in seconds (default: 30.0)
        retryable_exceptions: Exception types that trigger a retry

    Returns:
        The result of fn() on successful execution

    Raises:
        The final exception once retries are exhausted, or immediately when the
        exception type is not in retryable_exceptions

    Backoff schedule (base_delay=1.0, max_delay=30.0):
        - Attempt 1: immediate
        - Attempt 2: wait 1.0s
        - Attempt 3: wait 2.0s
        - Attempt 4: wait 4.0s
    """
    for attempt in range(max_retries + 1):
        try:
            return fn()
        except Exception as e:
            if not isinstance(e, retryable_exceptions):
                raise
            if attempt >= max_retries:
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            time.sleep(delay)

    raise RuntimeError("Unreachable code")


# Degradation warning types recorded against a moderation run
WARNING_TYPE_REPUTATION_UNAVAILABLE = "reputation_unavailable"
WARNING_TYPE_BEHAVIORAL_UNAVAILABLE = "behavioral_unavailable"
WARNING_TYPE_RATE_LIMIT_STORE_ERROR = "rate_limit_store_error"
WARNING_TYPE_SETTINGS_LOAD_FAILED = "settings_load_failed"
WARNING_TYPE_BLACKLIST_LOAD_FAILED = "blacklist_load_failed"
WARNING_TYPE_PRIOR_APPROVAL_LOOKUP_FAILED = "prior_approval_lookup_failed"
WARNING_TYPE_ADAPTER_DEADLINE_EXCEEDED = "adapter_deadline_exceeded"
WARNING_TYPE_PIPELINE_CANCELLED = "pipeline_cancelled"

VALID_WARNING_TYPES = {
    WARNING_TYPE_REPUTATION_UNAVAILABLE,
    WARNING_TYPE_BEHAVIORAL_UNAVAILABLE,
    WARNING_TYPE_RATE_LIMIT_STORE_ERROR,
    WARNING_TYPE_SETTINGS_LOAD_FAILED,
    WARNING_TYPE_BLACKLIST_LOAD_FAILED,
    WARNING_TYPE_PRIOR_APPROVAL_LOOKUP_FAILED,
    WARNING_TYPE_ADAPTER_DEADLINE_EXCEEDED,
    WARNING_TYPE_PIPELINE_CANCELLED,
}


class WarningsCollector:
    """Thread-safe collector for non-fatal warnings during one moderation run.

    Phase 2 adapters report from worker threads, hence the lock.

    Example:
        >>> collector = WarningsCollector()
        >>> collector.append(
        ...     "reputation_unavailable",
        ...     "Akismet request timed out",
        ...     {"error": "timeout"}
        ... )
        >>> collector.types()
        ['reputation_unavailable']
    """

    def __init__(self):
        self._warnings: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def append(self, warning_type: str, message: str, context: Dict[str, Any]) -> None:
        """Add a warning with type, message, timestamp, and context.

        Raises:
            ValueError: If warning_type is not in VALID_WARNING_TYPES
        """
        if warning_type not in VALID_WARNING_TYPES:
            raise ValueError(
                f"Invalid warning_type '{warning_type}'. "
                f"Must be one of: {', '.join(sorted(VALID_WARNING_TYPES))}"
            )

        warning = {
            "type": warning_type,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "context": context
        }

        with self._lock:
            self._warnings.append(warning)

    def types(self) -> List[str]:
        """Warning types in the order they were recorded."""
        with self._lock:
            return [w["type"] for w in self._warnings]

    def __len__(self) -> int:
        with self._lock:
            return len(self._warnings)

    def to_json(self) -> Optional[str]:
        """Serialize warnings to a JSON array string, or None when empty."""
        with self._lock:
            if not self._warnings:
                return None
            return json.dumps(self._warnings)
