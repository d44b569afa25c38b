"""
External signal sources for the moderation pipeline.

- Akismet (content reputation: spam / ham verdict with optional pro-tip)
- reCAPTCHA v3 (behavioral bot score in [0, 1])
"""

from spamgate.backend.integrations.akismet import AkismetClient, AkismetError, CommentCheckParams
from spamgate.backend.integrations.recaptcha import RecaptchaClient

__all__ = ["AkismetClient", "AkismetError", "CommentCheckParams", "RecaptchaClient"]
