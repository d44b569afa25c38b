"""Moderation settings: loading, validation and runtime configuration.

The moderation policy lives in the comment_settings key/value table so a
moderator can change it without a deploy. Service credentials and timeouts
come from the environment (see PipelineConfig).
"""

import os
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import structlog

from spamgate.models.moderation_models import ModerationMode, Policy

logger = structlog.get_logger()

ALLOWED_SETTING_KEYS = (
    'moderation_mode',
    'max_links_before_moderation',
    'enable_honeypot',
    'enable_akismet',
    'enable_recaptcha',
    'recaptcha_threshold',
    'rate_limit_per_minute',
    'max_content_length',
)

BOOLEAN_KEYS = {'enable_honeypot', 'enable_akismet', 'enable_recaptcha'}

# key -> (min, max) inclusive
INTEGER_RANGES = {
    'rate_limit_per_minute': (1, 20),
    'max_content_length': (100, 10000),
    'max_links_before_moderation': (0, 20),
}

DEFAULT_ADAPTER_TIMEOUT_MS = 10_000
DEADLINE_MARGIN_MS = 2_000


@dataclass(frozen=True)
class PipelineConfig:
    """Runtime knobs for one pipeline instance.

    Attributes:
        adapter_timeout_ms: Per-call timeout for each external service
        pipeline_deadline_ms: Upper bound on the whole Phase 2 wait
        behavioral_action: reCAPTCHA action the client token must carry
    """
    adapter_timeout_ms: int = DEFAULT_ADAPTER_TIMEOUT_MS
    pipeline_deadline_ms: int = DEFAULT_ADAPTER_TIMEOUT_MS + DEADLINE_MARGIN_MS
    behavioral_action: str = "submit_comment"

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build from SPAM_ADAPTER_TIMEOUT_MS / SPAM_PIPELINE_DEADLINE_MS.

        Unparseable values fall back to the defaults.
        """
        timeout_ms = _env_int('SPAM_ADAPTER_TIMEOUT_MS', DEFAULT_ADAPTER_TIMEOUT_MS)
        deadline_ms = _env_int('SPAM_PIPELINE_DEADLINE_MS', timeout_ms + DEADLINE_MARGIN_MS)
        return cls(adapter_timeout_ms=timeout_ms, pipeline_deadline_ms=max(deadline_ms, timeout_ms))


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("invalid_env_value", name=name, value=raw, default=default)
        return default
    return value if value > 0 else default


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_setting_value(key: str, value: Any) -> str:
    """Validate one setting and return its normalized string form for storage.

    Raises:
        ValueError: If the key is unknown or the value is out of range

    Examples:
        >>> validate_setting_value('enable_honeypot', True)
        'true'
        >>> validate_setting_value('moderation_mode', 'first_time')
        'first-time-hold'
    """
    if key not in ALLOWED_SETTING_KEYS:
        raise ValueError(f"Unknown setting: {key}")

    if key == 'moderation_mode':
        try:
            return ModerationMode.parse(value).value
        except ValueError:
            modes = ', '.join(f'"{m.value}"' for m in ModerationMode)
            raise ValueError(f"moderation_mode must be one of {modes}")

    if key in BOOLEAN_KEYS:
        str_value = str(value).strip().lower()
        if str_value not in ('true', 'false'):
            raise ValueError(f'{key} must be "true" or "false"')
        return str_value

    if key == 'recaptcha_threshold':
        try:
            threshold = float(value)
        except (TypeError, ValueError):
            threshold = None
        if threshold is None or threshold != threshold or not 0.0 <= threshold <= 1.0:
            raise ValueError("recaptcha_threshold must be a number between 0 and 1")
        return str(threshold)

    low, high = INTEGER_RANGES[key]
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        number = None
    if number is None or not low <= number <= high:
        raise ValueError(f"{key} must be an integer between {low} and {high}")
    return str(number)


def validate_settings_patch(patch: Any) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Validate a batch of settings, collecting every error at once.

    Returns:
        (validated, errors): normalized values for valid keys and an error
        message per invalid key. Callers should only persist when errors is empty.
    """
    if not isinstance(patch, dict) or not patch:
        return {}, {'_': 'A non-empty settings object is required'}

    validated: Dict[str, str] = {}
    errors: Dict[str, str] = {}
    for key, value in patch.items():
        try:
            validated[key] = validate_setting_value(key, value)
        except ValueError as e:
            errors[key] = str(e)

    return validated, errors


def setting_constraints(key: str) -> Dict[str, Any]:
    """Describe the accepted values of a setting (for admin UIs)."""
    if key == 'moderation_mode':
        return {'type': 'enum', 'options': [m.value for m in ModerationMode]}
    if key in BOOLEAN_KEYS:
        return {'type': 'boolean'}
    if key == 'recaptcha_threshold':
        return {'type': 'number', 'min': 0, 'max': 1, 'step': 0.1}
    low, high = INTEGER_RANGES[key]
    return {'type': 'number', 'min': low, 'max': high, 'step': 100 if key == 'max_content_length' else 1}


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def get_settings(conn: sqlite3.Connection) -> Dict[str, str]:
    """Return the raw stored settings as a key -> value dict."""
    rows = conn.execute("SELECT key, value FROM comment_settings").fetchall()
    return {row['key']: row['value'] for row in rows}


def update_settings(conn: sqlite3.Connection, validated: Dict[str, str]) -> Dict[str, str]:
    """Upsert already-validated settings and return the full stored set."""
    for key, value in validated.items():
        conn.execute(
            """
            INSERT INTO comment_settings (key, value, updated_at)
            VALUES (?, ?, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value)
        )
    conn.commit()

    logger.info("comment_settings_updated", keys=sorted(validated))
    return get_settings(conn)


def policy_from_settings(raw: Dict[str, str], defaults: Optional[Policy] = None) -> Policy:
    """Build a Policy from stored values.

    Missing or invalid values fall back to the defaults one key at a time, so a
    single bad row never disables the rest of the policy.
    """
    defaults = defaults or Policy()

    def _get(key: str, convert, fallback):
        if key not in raw:
            return fallback
        try:
            return convert(validate_setting_value(key, raw[key]))
        except ValueError:
            logger.warning("invalid_comment_setting", key=key, value=raw[key])
            return fallback

    def _bool(v: str) -> bool:
        return v == 'true'

    return Policy(
        moderation_mode=_get('moderation_mode', ModerationMode.parse, defaults.moderation_mode),
        max_links_before_moderation=_get('max_links_before_moderation', int, defaults.max_links_before_moderation),
        honeypot_enabled=_get('enable_honeypot', _bool, defaults.honeypot_enabled),
        reputation_enabled=_get('enable_akismet', _bool, defaults.reputation_enabled),
        behavioral_enabled=_get('enable_recaptcha', _bool, defaults.behavioral_enabled),
        behavioral_threshold=_get('recaptcha_threshold', float, defaults.behavioral_threshold),
        rate_limit_per_minute=_get('rate_limit_per_minute', int, defaults.rate_limit_per_minute),
        max_content_length=_get('max_content_length', int, defaults.max_content_length),
    )


def load_policy(conn: sqlite3.Connection) -> Policy:
    """Load the current Policy snapshot.

    Raises:
        sqlite3.Error: Propagated to the caller, which decides how to degrade
    """
    return policy_from_settings(get_settings(conn))
