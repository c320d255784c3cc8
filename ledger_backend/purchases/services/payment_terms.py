# purchases/services/payment_terms.py

from __future__ import annotations

from datetime import timedelta

from django.utils import timezone

DEFAULT_TERM_DAYS = 30

# Normalised term -> days until due
TERM_DAYS = {
    "net 15": 15,
    "net 30": 30,
    "net 60": 60,
    "cod": 0,
}


def term_days(terms: str | None) -> int:
    """
    Days until payment is due for a supplier's terms.
    Matching trims whitespace and ignores case; unknown terms are Net 30.
    """
    key = " ".join((terms or "").split()).lower()
    return TERM_DAYS.get(key, DEFAULT_TERM_DAYS)


def calculate_due_date(terms: str | None, from_date=None):
    from_date = from_date or timezone.localdate()
    return from_date + timedelta(days=term_days(terms))
