"""Matching helpers — date windows, counterparty keywords, closest pick.

These are the pure building blocks of :func:`src.reconcile.reconcile`.
Each pass is expressed as filter -> minimum-by-key so the tie-break rule
lives in one place (:func:`pick_closest`).
"""

from __future__ import annotations

import re
from datetime import date
from typing import Callable, Iterable, TypeVar

T = TypeVar("T")

# Leading card-network token (e.g. "VISA海外利用", "JCB") and an optional
# "VS " token after it. A Latin letter or digit right after the network name
# means an ordinary word such as "MASTERS".
CARD_PREFIX_RE = re.compile(
    r"^\s*(?:VISA|MASTERCARD|MASTER|JCB|AMEX|DINERS)(?![A-Za-z0-9])\S*\s+(?:VS\s+)?",
    re.IGNORECASE,
)
KEYWORD_PUNCT_RE = re.compile(r"[,.*()（）]")
MIN_KEYWORD_LENGTH = 2


def parse_iso_date(value: str) -> date | None:
    """Parse ``YYYY-MM-DD``; return None for anything else."""
    try:
        return date.fromisoformat(value.strip())
    except (ValueError, AttributeError):
        return None


def in_date_window(tx_date: date, invoice_date: date, tolerance_days: int) -> bool:
    """True if the invoice is dated on or up to *tolerance_days* after tx_date."""
    delta = (invoice_date - tx_date).days
    return 0 <= delta <= tolerance_days


def extract_keywords(description: str) -> list[str]:
    """Split a ledger description into upper-cased counterparty keywords.

    ``"VISA海外利用 GITHUB, INC."`` -> ``["GITHUB", "INC"]``
    """
    text = CARD_PREFIX_RE.sub("", description, count=1)
    text = KEYWORD_PUNCT_RE.sub(" ", text)
    return [tok.upper() for tok in text.split() if len(tok) >= MIN_KEYWORD_LENGTH]


def counterparty_matches(counterparty: str, keywords: Iterable[str]) -> bool:
    """True if the counterparty contains a keyword or a keyword contains it."""
    name = counterparty.strip().upper()
    if not name:
        return False
    return any(kw in name or name in kw for kw in keywords)


def pick_closest(candidates: Iterable[T], distance: Callable[[T], int]) -> T | None:
    """Return the candidate with the smallest distance.

    Ties go to the earliest candidate; None if there are no candidates.
    """
    best: T | None = None
    best_distance = 0
    for item in candidates:
        d = distance(item)
        if best is None or d < best_distance:
            best = item
            best_distance = d
    return best
