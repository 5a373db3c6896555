"""Shared fixtures and helpers for the ledger reconciliation test suite."""

import duckdb
import pytest

from src.journal import JournalLine, JournalSide, Transaction
from src.reconcile import InvoiceRecord

HEADER = (
    "取引No,取引日,借方勘定科目,借方補助科目,借方部門,借方取引先,借方税区分,"
    "借方インボイス,借方金額(円),貸方勘定科目,貸方補助科目,貸方部門,貸方取引先,"
    "貸方税区分,貸方インボイス,貸方金額(円),摘要,タグ,メモ"
)


@pytest.fixture
def conn():
    """In-memory DuckDB connection for each test."""
    c = duckdb.connect(":memory:")
    yield c
    c.close()


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _row(
    no: str = "1",
    date: str = "2025/04/01",
    debit_account: str = "通信費",
    debit_tax: str = "課税仕入 10%",
    debit_amount: str = "5000",
    credit_account: str = "普通預金",
    credit_tax: str = "対象外",
    credit_amount: str = "5000",
    description: str = "",
    tag: str = "",
    memo: str = "",
) -> list[str]:
    """Build a 19-field journal row."""
    return [
        no, date,
        debit_account, "", "", "", debit_tax, "", debit_amount,
        credit_account, "", "", "", credit_tax, "", credit_amount,
        description, tag, memo,
    ]


def _journal_bytes(rows: list[list[str]], encoding: str = "cp932") -> bytes:
    """Encode a header plus quoted rows as a journal export."""
    lines = [HEADER] + [",".join(_quote(f) for f in r) for r in rows]
    return ("\r\n".join(lines) + "\r\n").encode(encoding)


def _make_tx(
    no: str = "1",
    date: str = "2025-04-01",
    amount: int = 5000,
    description: str = "",
    needs_document: bool = True,
) -> Transaction:
    """Helper to create a single-line Transaction."""
    tax = "課税仕入 10%" if needs_document else "対象外"
    line = JournalLine(
        transaction_no=no,
        date=date,
        debit=JournalSide(account="通信費", tax_category=tax, amount=amount),
        credit=JournalSide(account="普通預金", tax_category="対象外", amount=amount),
        description=description,
    )
    return Transaction.from_lines(no, [line])


def _make_invoice(**kwargs) -> InvoiceRecord:
    """Helper to create an InvoiceRecord with defaults."""
    defaults = {
        "date": "2025-04-01",
        "amount": 5000,
        "counterparty": "Acme",
        "document_type": "invoice",
    }
    defaults.update(kwargs)
    return InvoiceRecord(**defaults)
