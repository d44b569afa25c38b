"""Client IP extraction and hashing.

Raw IPs are never persisted: the rate limiter and the decision log only see
the salted SHA-256 digest produced by hash_ip().
"""

import hashlib
import os
from typing import Mapping, Optional

UNKNOWN_IP = "unknown"


def get_client_ip(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """Resolve the client IP from proxy headers.

    Uses the first hop of X-Forwarded-For, then X-Real-IP, then fallback
    (typically the socket peer address), then "unknown". Header lookup is
    case-insensitive.
    """
    lowered = {k.lower(): v for k, v in headers.items()}

    forwarded = lowered.get("x-forwarded-for", "")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = lowered.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    return fallback or UNKNOWN_IP


def hash_ip(ip: str, salt: Optional[str] = None) -> str:
    """Return the hex SHA-256 of salt + ip. Salt defaults to IP_HASH_SALT."""
    if salt is None:
        salt = os.environ.get("IP_HASH_SALT", "")
    return hashlib.sha256(f"{salt}{ip}".encode("utf-8")).hexdigest()
