"""Deterministic ticket-intent gate.

Checked before any embedding or completion call. A match means the citizen
wants to report a problem: the chat turn skips retrieval entirely and the
conversation is escalated to staff.
"""

import unicodedata

TICKET_INTENT_PHRASES = (
    "prijaviti problem",
    "prijaviti kvar",
    "prijava problema",
    "prijava kvara",
    "trebam prijaviti",
    "zelim prijaviti",
)


def normalize_message(text: str) -> str:
    """Lowercase, trim and strip diacritics ("Želim" -> "zelim")."""
    decomposed = unicodedata.normalize("NFD", (text or "").lower().strip())
    # đ has no combining-mark decomposition
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.replace("đ", "d")


def matches_ticket_intent(text: str) -> bool:
    """True if the message contains one of the ticket-intent phrases."""
    normalized = normalize_message(text)
    return any(phrase in normalized for phrase in TICKET_INTENT_PHRASES)
