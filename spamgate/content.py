"""
Content normalization for submitted comments.

Default implementation of the normalizer collaborator consumed by the
moderation pipeline: rejects empty, dangerous or oversize content, cleans up
whitespace and control characters, counts links, and flags repetitive text.
Any callable with the signature of normalize_content() can replace it.
"""

import re
from collections import Counter
from typing import Optional

from spamgate.models.moderation_models import NormalizedContent


DEFAULT_MAX_LENGTH = 4000

URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)

DANGEROUS_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),  # onclick=, onerror=, ...
    re.compile(r"data:\s*text/html", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
]

_EXCESS_NEWLINES = re.compile(r"\n{4,}")
# Control characters except \t, \n and \r
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

# A word longer than MIN_REPEAT_WORD_LENGTH seen more than this many times
# marks the content as repetitive.
REPETITION_THRESHOLD = 5
MIN_REPEAT_WORD_LENGTH = 2


def count_links(text: str) -> int:
    """Count http(s) URLs in text.

    Examples:
        >>> count_links("see http://a.example and https://b.example")
        2
        >>> count_links("no links here")
        0
    """
    if not text:
        return 0
    return len(URL_PATTERN.findall(text))


def is_repetitive(text: str, threshold: int = REPETITION_THRESHOLD) -> bool:
    """Return True if any word of 3+ characters appears more than threshold times.

    Matching is case-insensitive on whitespace-separated tokens.

    Examples:
        >>> is_repetitive("buy " * 6)
        True
        >>> is_repetitive("a a a a a a a")
        False
    """
    if not text:
        return False

    counts: Counter = Counter()
    for word in text.lower().split():
        if len(word) > MIN_REPEAT_WORD_LENGTH:
            counts[word] += 1
            if counts[word] > threshold:
                return True
    return False


def _rejected(reason: str) -> NormalizedContent:
    return NormalizedContent(text="", rejected=True, reject_reason=reason)


def normalize_content(raw: Optional[str], max_length: int = DEFAULT_MAX_LENGTH) -> NormalizedContent:
    """
    Sanitize raw comment text and extract the signals the pipeline needs.

    Args:
        raw: Comment text exactly as submitted
        max_length: Maximum accepted length after cleanup

    Returns:
        NormalizedContent. Rejected (with a reason) when the content is empty,
        contains markup that could execute in a browser, or is longer than
        max_length. Otherwise the cleaned text, its link count, and the
        repetition flag.

    Examples:
        >>> normalize_content("  hello  ").text
        'hello'
        >>> normalize_content("").reject_reason
        'Empty content'
    """
    if not raw or not isinstance(raw, str) or not raw.strip():
        return _rejected("Empty content")

    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(raw):
            return _rejected("Contains potentially dangerous content")

    text = raw.strip()
    text = _EXCESS_NEWLINES.sub("\n\n\n", text)
    text = _CONTROL_CHARS.sub("", text)

    if not text:
        return _rejected("Empty content")

    if len(text) > max_length:
        return _rejected(f"Content too long ({len(text)} > {max_length} characters)")

    return NormalizedContent(
        text=text,
        link_count=count_links(text),
        is_repetitive=is_repetitive(text),
    )
