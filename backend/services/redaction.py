"""Minimal PII redaction applied before message content is stored."""

import re

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# Phone numbers and 11-digit OIB numbers are both long digit runs
LONG_DIGITS_PATTERN = re.compile(r"\d{8,}")


def redact_pii(text: str) -> str:
    """Mask e-mail addresses and long digit sequences."""
    if not text:
        return text
    redacted = EMAIL_PATTERN.sub("***@***", text)
    return LONG_DIGITS_PATTERN.sub("***", redacted)
