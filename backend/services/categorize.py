"""Keyword-based conversation categorisation.

First match wins, in CATEGORY_ORDER. Category ids match the ones the admin
UI knows about.
"""

from typing import Optional

CATEGORY_ORDER = [
    "contacts_hours",
    "forms_requests",
    "utilities_communal",
    "budget_finance",
    "tenders_jobs",
    "acts_decisions",
    "permits_solutions",
    "social_support",
    "events_news",
    "issue_reporting",
]

CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "contacts_hours": ["kontakt", "telefon", "email", "mail", "radno vrijeme", "adresa", "ured"],
    "forms_requests": ["obrazac", "zahtjev", "ispuniti", "predati", "pdf", "prilog"],
    "utilities_communal": ["komunal", "otpad", "smeće", "rasvjeta", "voda", "kanal", "cesta", "parking"],
    "budget_finance": ["proračun", "rebalans", "nabava", "izvješće", "financ"],
    "tenders_jobs": ["natječaj", "zapošlj", "posao", "prijava", "oglas"],
    "acts_decisions": ["odluka", "pravilnik", "statut", "sjednica", "vijeće"],
    "permits_solutions": ["dozvola", "rješenje", "građev", "legaliz", "suglasnost"],
    "social_support": ["potpora", "stipend", "socijal", "naknada"],
    "events_news": ["događaj", "manifest", "obavijest", "novost"],
    "issue_reporting": ["prijaviti", "kvar", "problem", "rupa", "ne radi", "curi", "buka"],
}

SPAM_WORDS = ["kurcina", "jebem", "pizda", "serem", "jebote"]


def classify_by_keywords(text: str) -> Optional[str]:
    """Return a category id for the text, "spam", or None when nothing matches."""
    t = (text or "").lower().strip()
    if not t:
        return None
    if any(w in t for w in SPAM_WORDS):
        return "spam"
    for category in CATEGORY_ORDER:
        if any(k in t for k in CATEGORY_KEYWORDS[category]):
            return category
    return None
