"""Reconciler — pair document-requiring transactions with invoice records.

Each transaction that needs a document gets at most one invoice from the
pool, chosen in two passes over the invoices that are still unclaimed and
dated within ``[tx.date, tx.date + date_tolerance_days]``:

1. exact — same amount
2. fuzzy — counterparty matches a keyword from the transaction description

Both passes pick the invoice closest in date (earliest pool position on a
tie). A chosen invoice is consumed for the rest of the run, and
transactions are served in input order, so earlier transactions win
contested invoices.

The pool itself is never modified; consumption is tracked by pool position
inside a single :func:`reconcile` call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Iterable, Sequence

from .journal import Transaction
from .matching import (
    counterparty_matches,
    extract_keywords,
    in_date_window,
    parse_iso_date,
    pick_closest,
)

log = logging.getLogger(__name__)


class ReconcileStatus(str, Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class InvoiceRecord:
    """Metadata of a captured source document (invoice, receipt, ...).

    Attributes:
        date: Transaction date on the document, ``YYYY-MM-DD``.
        amount: Tax-inclusive amount in the same unit as Transaction.amount.
        counterparty: Issuer name as captured.
        document_type: invoice, receipt, quotation, delivery_slip, contract, other.
        currency: ISO 4217 code; carried for display only.
        id: Identifier in the external store, if any.
    """

    date: str
    amount: int
    counterparty: str
    document_type: str = "other"
    currency: str = "JPY"
    id: int | str | None = None
    memo: str = ""


@dataclass(frozen=True)
class ReconcileResult:
    transaction: Transaction
    status: ReconcileStatus
    invoice: InvoiceRecord | None = None
    # "exact" or "fuzzy" when matched
    match_kind: str | None = None


@dataclass
class ReconcileSummary:
    """Counts and totals over one reconciliation run."""

    total: int = 0
    matched: int = 0
    unmatched: int = 0
    not_applicable: int = 0
    exact_matches: int = 0
    fuzzy_matches: int = 0
    matched_amount: int = 0
    unmatched_amount: int = 0
    unused_invoices: int = 0

    def as_rows(self) -> list[dict[str, object]]:
        """Return ``[{"metric": ..., "value": ...}, ...]`` for tabular output."""
        return [
            {"metric": "transactions", "value": self.total},
            {"metric": "matched", "value": self.matched},
            {"metric": "matched_exact", "value": self.exact_matches},
            {"metric": "matched_fuzzy", "value": self.fuzzy_matches},
            {"metric": "unmatched", "value": self.unmatched},
            {"metric": "not_applicable", "value": self.not_applicable},
            {"metric": "matched_amount", "value": self.matched_amount},
            {"metric": "unmatched_amount", "value": self.unmatched_amount},
            {"metric": "unused_invoices", "value": self.unused_invoices},
        ]


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------

# (pool position, record, parsed record date)
Candidate = tuple[int, InvoiceRecord, date]


def _window_candidates(
    tx_date: date,
    pool: Sequence[tuple[InvoiceRecord, date | None]],
    consumed: set[int],
    tolerance_days: int,
) -> list[Candidate]:
    return [
        (pos, inv, inv_date)
        for pos, (inv, inv_date) in enumerate(pool)
        if pos not in consumed
        and inv_date is not None
        and in_date_window(tx_date, inv_date, tolerance_days)
    ]


def _closest(tx_date: date, candidates: Iterable[Candidate]) -> Candidate | None:
    return pick_closest(candidates, lambda c: abs((c[2] - tx_date).days))


def exact_pass(
    tx: Transaction, tx_date: date, window: list[Candidate]
) -> Candidate | None:
    """Closest in-window invoice with exactly the transaction amount."""
    return _closest(tx_date, (c for c in window if c[1].amount == tx.amount))


def fuzzy_pass(
    tx: Transaction, tx_date: date, window: list[Candidate]
) -> Candidate | None:
    """Closest in-window invoice whose counterparty matches the description."""
    keywords = extract_keywords(tx.description)
    if not keywords:
        return None
    return _closest(
        tx_date,
        (c for c in window if counterparty_matches(c[1].counterparty, keywords)),
    )


_PASSES: list[tuple[str, Callable[[Transaction, date, list[Candidate]], Candidate | None]]] = [
    ("exact", exact_pass),
    ("fuzzy", fuzzy_pass),
]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def reconcile(
    transactions: Sequence[Transaction],
    invoices: Sequence[InvoiceRecord],
    date_tolerance_days: int,
) -> list[ReconcileResult]:
    """Match transactions against an invoice pool.

    Returns one result per transaction, in input order. Neither the
    transactions nor the invoice records are modified.
    """
    if date_tolerance_days < 0:
        raise ValueError(
            f"date_tolerance_days must be >= 0, got {date_tolerance_days}"
        )

    pool = [(inv, parse_iso_date(inv.date)) for inv in invoices]
    consumed: set[int] = set()
    results: list[ReconcileResult] = []

    for tx in transactions:
        if not tx.needs_document:
            results.append(ReconcileResult(tx, ReconcileStatus.NOT_APPLICABLE))
            continue

        tx_date = parse_iso_date(tx.date)
        if tx_date is None:
            log.debug("[%s] unparseable date %r", tx.transaction_no, tx.date)
            results.append(ReconcileResult(tx, ReconcileStatus.UNMATCHED))
            continue

        window = _window_candidates(tx_date, pool, consumed, date_tolerance_days)
        result = ReconcileResult(tx, ReconcileStatus.UNMATCHED)
        for kind, run_pass in _PASSES:
            hit = run_pass(tx, tx_date, window)
            if hit is not None:
                pos, inv, _ = hit
                consumed.add(pos)
                result = ReconcileResult(tx, ReconcileStatus.MATCHED, inv, kind)
                log.debug(
                    "[%s] %s match -> %s (%s)", tx.transaction_no, kind, inv.counterparty, inv.date
                )
                break
        results.append(result)

    return results


def unused_invoices(
    invoices: Sequence[InvoiceRecord], results: Iterable[ReconcileResult]
) -> list[InvoiceRecord]:
    """Return pool records that no result claimed, in pool order."""
    claimed = [r.invoice for r in results if r.invoice is not None]
    remaining: list[InvoiceRecord] = []
    for inv in invoices:
        # By identity: equal-valued records in the pool are distinct documents
        for i, c in enumerate(claimed):
            if c is inv:
                del claimed[i]
                break
        else:
            remaining.append(inv)
    return remaining


def summarize(
    results: Sequence[ReconcileResult],
    invoices: Sequence[InvoiceRecord] | None = None,
) -> ReconcileSummary:
    s = ReconcileSummary(total=len(results))
    for r in results:
        if r.status is ReconcileStatus.MATCHED:
            s.matched += 1
            s.matched_amount += r.transaction.amount
            if r.match_kind == "exact":
                s.exact_matches += 1
            else:
                s.fuzzy_matches += 1
        elif r.status is ReconcileStatus.UNMATCHED:
            s.unmatched += 1
            s.unmatched_amount += r.transaction.amount
        else:
            s.not_applicable += 1
    if invoices is not None:
        s.unused_invoices = len(unused_invoices(invoices, results))
    return s
