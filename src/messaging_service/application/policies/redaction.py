"""PII redaction for message text, applied before persistence.

The filter is a pure function of its input, so redacting the same text twice
in two places gives the same result.
"""
from __future__ import annotations

import re

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_SSN_RE = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_CARD_RE = re.compile(r"\b(?:\d[ -]?){12,18}\d\b")
_PHONE_RE = re.compile(
    r"(?<!\w)(?:\+?\d{1,3}[\s.-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}(?!\w)"
)

# Order matters: card numbers contain phone-shaped runs.
_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (_EMAIL_RE, "[redacted email]"),
    (_SSN_RE, "[redacted ssn]"),
    (_CARD_RE, "[redacted card]"),
    (_PHONE_RE, "[redacted phone]"),
)


def redact_pii(text: str) -> str:
    """Replace emails, SSNs, card numbers and phone numbers with placeholders."""
    rendered = text
    for pattern, placeholder in _RULES:
        rendered = pattern.sub(placeholder, rendered)
    return rendered
