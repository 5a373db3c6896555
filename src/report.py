"""Run snapshots and reports.

The reconciler keeps nothing between runs. The CLI can snapshot one run
into a DuckDB file, and export results to CSV or a multi-sheet workbook.

A snapshot database contains:
- ``journal_lines``      one row per journal line
- ``transactions``       one row per grouped transaction
- ``invoices``           the invoice pool, in pool order
- ``reconcile_results``  one row per transaction with the paired invoice
- ``unused_invoices``    pool records no transaction claimed
- ``_run_meta``          key/value run metadata (tolerance, inputs, counts)

Every data table carries an INTEGER ``_row_id`` in original order.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import duckdb
import polars as pl

from .journal import Transaction
from .reconcile import InvoiceRecord, ReconcileResult, summarize, unused_invoices

log = logging.getLogger(__name__)

RUN_TABLES = [
    "journal_lines",
    "transactions",
    "invoices",
    "reconcile_results",
    "unused_invoices",
]

CURRENCY_SYMBOLS = {
    "JPY": "¥",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "KRW": "₩",
    "CNY": "¥",
}


def format_amount(amount: int | float, currency: str | None = None) -> str:
    """Format an amount for display: ``¥1,234``, ``$12.50``, ``CHF 3.00``."""
    code = currency or "JPY"
    symbol = CURRENCY_SYMBOLS.get(code, code + " ")
    if code == "JPY":
        return f"{symbol}{int(amount):,}"
    return f"{symbol}{amount:,.2f}"


def quote_ident(name: str) -> str:
    """Quote an identifier for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------

_TRANSACTION_SCHEMA = {
    "transaction_no": pl.String,
    "date": pl.String,
    "description": pl.String,
    "primary_account": pl.String,
    "amount": pl.Int64,
    "tax_category": pl.String,
    "needs_document": pl.Boolean,
    "line_count": pl.Int64,
}

_INVOICE_SCHEMA = {
    "date": pl.String,
    "amount": pl.Int64,
    "counterparty": pl.String,
    "document_type": pl.String,
    "currency": pl.String,
    "invoice_id": pl.String,
    "memo": pl.String,
}

_RESULT_SCHEMA = {
    "transaction_no": pl.String,
    "date": pl.String,
    "description": pl.String,
    "primary_account": pl.String,
    "amount": pl.Int64,
    "tax_category": pl.String,
    "status": pl.String,
    "match_kind": pl.String,
    "invoice_date": pl.String,
    "invoice_amount": pl.Int64,
    "invoice_counterparty": pl.String,
    "invoice_document_type": pl.String,
    "invoice_id": pl.String,
}

_LINE_SCHEMA = {
    "transaction_no": pl.String,
    "date": pl.String,
    **{
        f"{side}_{col}": dtype
        for side in ("debit", "credit")
        for col, dtype in (
            ("account", pl.String),
            ("sub_account", pl.String),
            ("department", pl.String),
            ("counterparty", pl.String),
            ("tax_category", pl.String),
            ("invoice_number", pl.String),
            ("amount", pl.Int64),
        )
    },
    "description": pl.String,
    "tag": pl.String,
    "memo": pl.String,
}


def _id_str(value: Any) -> str | None:
    return None if value is None else str(value)


def transactions_frame(transactions: Sequence[Transaction]) -> pl.DataFrame:
    rows = [
        {
            "transaction_no": t.transaction_no,
            "date": t.date,
            "description": t.description,
            "primary_account": t.primary_account,
            "amount": t.amount,
            "tax_category": t.tax_category,
            "needs_document": t.needs_document,
            "line_count": len(t.lines),
        }
        for t in transactions
    ]
    return pl.DataFrame(rows, schema=_TRANSACTION_SCHEMA)


def journal_lines_frame(transactions: Sequence[Transaction]) -> pl.DataFrame:
    rows: list[dict[str, Any]] = []
    for t in transactions:
        for ln in t.lines:
            row: dict[str, Any] = {"transaction_no": ln.transaction_no, "date": ln.date}
            for side_name, side in (("debit", ln.debit), ("credit", ln.credit)):
                row[f"{side_name}_account"] = side.account
                row[f"{side_name}_sub_account"] = side.sub_account
                row[f"{side_name}_department"] = side.department
                row[f"{side_name}_counterparty"] = side.counterparty
                row[f"{side_name}_tax_category"] = side.tax_category
                row[f"{side_name}_invoice_number"] = side.invoice_number
                row[f"{side_name}_amount"] = side.amount
            row.update(description=ln.description, tag=ln.tag, memo=ln.memo)
            rows.append(row)
    return pl.DataFrame(rows, schema=_LINE_SCHEMA)


def invoices_frame(invoices: Sequence[InvoiceRecord]) -> pl.DataFrame:
    rows = [
        {
            "date": inv.date,
            "amount": inv.amount,
            "counterparty": inv.counterparty,
            "document_type": inv.document_type,
            "currency": inv.currency,
            "invoice_id": _id_str(inv.id),
            "memo": inv.memo,
        }
        for inv in invoices
    ]
    return pl.DataFrame(rows, schema=_INVOICE_SCHEMA)


def results_frame(results: Sequence[ReconcileResult]) -> pl.DataFrame:
    rows: list[dict[str, Any]] = []
    for r in results:
        t, inv = r.transaction, r.invoice
        rows.append(
            {
                "transaction_no": t.transaction_no,
                "date": t.date,
                "description": t.description,
                "primary_account": t.primary_account,
                "amount": t.amount,
                "tax_category": t.tax_category,
                "status": r.status.value,
                "match_kind": r.match_kind,
                "invoice_date": inv.date if inv else None,
                "invoice_amount": inv.amount if inv else None,
                "invoice_counterparty": inv.counterparty if inv else None,
                "invoice_document_type": inv.document_type if inv else None,
                "invoice_id": _id_str(inv.id) if inv else None,
            }
        )
    return pl.DataFrame(rows, schema=_RESULT_SCHEMA)


# ---------------------------------------------------------------------------
# Snapshot database
# ---------------------------------------------------------------------------


def _write_table(
    conn: duckdb.DuckDBPyConnection, df: pl.DataFrame, table_name: str
) -> None:
    """Write a DataFrame to DuckDB with a leading _row_id INTEGER column."""
    conn.execute(f"DROP TABLE IF EXISTS {quote_ident(table_name)}")
    conn.register("_df", df)
    try:
        conn.execute(
            f"CREATE TABLE {quote_ident(table_name)} AS "
            'SELECT CAST(row_number() OVER () AS INTEGER) AS "_row_id", * '
            "FROM _df"
        )
    finally:
        conn.unregister("_df")


def write_run_meta(conn: duckdb.DuckDBPyConnection, meta: dict[str, Any]) -> None:
    """Replace _run_meta with *meta* (values stored as JSON text)."""
    conn.execute(
        "CREATE TABLE IF NOT EXISTS _run_meta (key VARCHAR PRIMARY KEY, value VARCHAR)"
    )
    conn.execute("DELETE FROM _run_meta")
    for key, value in meta.items():
        conn.execute(
            "INSERT INTO _run_meta (key, value) VALUES (?, ?)",
            [key, json.dumps(value, ensure_ascii=False)],
        )


def read_run_meta(conn: duckdb.DuckDBPyConnection) -> dict[str, Any]:
    """Return _run_meta as a dict, or {} if the table is missing."""
    try:
        rows = conn.execute("SELECT key, value FROM _run_meta ORDER BY key").fetchall()
    except duckdb.Error:
        return {}
    meta: dict[str, Any] = {}
    for key, value in rows:
        try:
            meta[key] = json.loads(value)
        except (TypeError, json.JSONDecodeError):
            meta[key] = value
    return meta


def write_run(
    conn: duckdb.DuckDBPyConnection,
    transactions: Sequence[Transaction],
    invoices: Sequence[InvoiceRecord],
    results: Sequence[ReconcileResult],
    meta: dict[str, Any] | None = None,
) -> None:
    """Write all run tables plus _run_meta into an open connection."""
    _write_table(conn, journal_lines_frame(transactions), "journal_lines")
    _write_table(conn, transactions_frame(transactions), "transactions")
    _write_table(conn, invoices_frame(invoices), "invoices")
    _write_table(conn, results_frame(results), "reconcile_results")

    summary = summarize(results, invoices)
    full_meta: dict[str, Any] = {
        "created_at": datetime.now(timezone.utc).isoformat(),
        "summary": {row["metric"]: row["value"] for row in summary.as_rows()},
    }
    full_meta.update(meta or {})
    write_run_meta(conn, full_meta)

    unused = unused_invoices(invoices, results)
    _write_table(conn, invoices_frame(unused), "unused_invoices")
    log.debug(
        "Wrote run: %d transaction(s), %d invoice(s), %d unused",
        len(transactions),
        len(invoices),
        len(unused),
    )


def table_counts(conn: duckdb.DuckDBPyConnection) -> dict[str, int | None]:
    """Return row counts for the run tables (None for missing tables)."""
    counts: dict[str, int | None] = {}
    for name in RUN_TABLES:
        try:
            row = conn.execute(f"SELECT COUNT(*) FROM {quote_ident(name)}").fetchone()
        except duckdb.Error:
            counts[name] = None
            continue
        counts[name] = int(row[0]) if row else 0
    return counts


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------


def export_results_csv(results: Sequence[ReconcileResult], path: Path) -> None:
    """Write one CSV row per reconcile result."""
    results_frame(results).write_csv(path)


def export_report_xlsx(conn: duckdb.DuckDBPyConnection, path: Path) -> None:
    """Write a saved run to a multi-sheet Excel workbook."""
    from openpyxl import Workbook

    wb = Workbook()
    sheets = [
        (
            "Matched",
            "SELECT * EXCLUDE (_row_id) FROM reconcile_results "
            "WHERE status = 'matched' ORDER BY _row_id",
        ),
        (
            "Unmatched",
            "SELECT * EXCLUDE (_row_id) FROM reconcile_results "
            "WHERE status = 'unmatched' ORDER BY _row_id",
        ),
        (
            "Not applicable",
            "SELECT transaction_no, date, description, primary_account, amount, "
            "tax_category FROM reconcile_results "
            "WHERE status = 'not_applicable' ORDER BY _row_id",
        ),
        (
            "Unused invoices",
            "SELECT * EXCLUDE (_row_id) FROM unused_invoices ORDER BY _row_id",
        ),
    ]

    for i, (name, query) in enumerate(sheets):
        ws = wb.active if i == 0 else wb.create_sheet()
        ws.title = name
        result = conn.execute(query)
        ws.append([col[0] for col in result.description])
        for row in result.fetchall():
            ws.append(list(row))

    ws = wb.create_sheet()
    ws.title = "Summary"
    ws.append(["metric", "value"])
    for key, value in read_run_meta(conn).get("summary", {}).items():
        ws.append([key, value])

    wb.save(str(path))
