"""Ledger reconciliation — core modules."""

from .journal import (
    JournalLine,
    JournalReadError,
    JournalSide,
    Transaction,
    parse_journal,
    read_journal,
)
from .reconcile import (
    InvoiceRecord,
    ReconcileResult,
    ReconcileStatus,
    ReconcileSummary,
    reconcile,
    summarize,
    unused_invoices,
)
from .invoices import coerce_invoices, load_invoices
from .settings import Settings, resolve_settings

__all__ = [
    # Journal import
    "JournalLine",
    "JournalReadError",
    "JournalSide",
    "Transaction",
    "parse_journal",
    "read_journal",
    # Reconciliation
    "InvoiceRecord",
    "ReconcileResult",
    "ReconcileStatus",
    "ReconcileSummary",
    "reconcile",
    "summarize",
    "unused_invoices",
    # Invoice pool
    "coerce_invoices",
    "load_invoices",
    # Settings
    "Settings",
    "resolve_settings",
]
