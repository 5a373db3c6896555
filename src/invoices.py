"""Invoice pool loading.

Invoice records are captured and stored elsewhere; this module only turns
what the store hands over (rows, a DataFrame, or an exported file) into
:class:`~src.reconcile.InvoiceRecord` objects.

Accepts Polars DataFrames, list[dict] (array of structs), or dict[str, list]
(struct of arrays), plus csv / parquet / json files read through DuckDB.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import duckdb
import polars as pl

from .reconcile import InvoiceRecord

log = logging.getLogger(__name__)

# Type alias for the tabular shapes accepted by coerce_invoices
InvoiceData = Any  # pl.DataFrame | list[dict] | dict[str, list] | list[InvoiceRecord]

SUPPORTED_INVOICE_EXTENSIONS = {
    ".csv": "read_csv_auto",
    ".parquet": "read_parquet",
    ".json": "read_json_auto",
}

REQUIRED_COLUMNS = ("date", "amount", "counterparty")

# Alternate column names seen in exported invoice stores
COLUMN_ALIASES = {
    "transaction_date": "date",
    "transactionDate": "date",
    "documentType": "document_type",
}


def _to_dataframe(data: InvoiceData) -> pl.DataFrame:
    if isinstance(data, pl.DataFrame):
        return data
    if isinstance(data, (list, dict)):
        return pl.DataFrame(data)
    raise TypeError(
        f"Unsupported invoice data type: {type(data).__name__}. "
        f"Expected DataFrame, list[dict], or dict[str, list]."
    )


def _int_amount(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError("amount must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.replace(",", "").strip() or "0"
    number = float(value)
    if not number.is_integer():
        raise ValueError("amount must be a whole number")
    return int(number)


def _str_date(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()[:10]
    return str(value).strip().replace("/", "-")


def coerce_invoices(data: InvoiceData) -> list[InvoiceRecord]:
    """Convert supported tabular formats to a list of InvoiceRecord.

    A list of InvoiceRecord is returned as a new list with the same records.
    Raises ValueError if date, amount or counterparty columns are missing.
    """
    if isinstance(data, list) and all(isinstance(r, InvoiceRecord) for r in data):
        return list(data)

    df = _to_dataframe(data)
    if df.is_empty() and not df.columns:
        return []
    renames: dict[str, str] = {}
    for alias, name in COLUMN_ALIASES.items():
        if alias in df.columns and name not in df.columns and name not in renames.values():
            renames[alias] = name
    df = df.rename(renames)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(
            f"Invoice data is missing required column(s): {', '.join(missing)}"
        )

    records: list[InvoiceRecord] = []
    for row in df.iter_rows(named=True):
        try:
            amount = _int_amount(row["amount"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid invoice amount {row['amount']!r}: {e}") from e
        records.append(
            InvoiceRecord(
                date=_str_date(row["date"]),
                amount=amount,
                counterparty=str(row["counterparty"] or ""),
                document_type=str(row.get("document_type") or "other"),
                currency=str(row.get("currency") or "JPY"),
                id=row.get("id"),
                memo=str(row.get("memo") or ""),
            )
        )
    return records


def load_invoices(path: Path) -> list[InvoiceRecord]:
    """Load an invoice export (csv, parquet or json) into InvoiceRecords."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_INVOICE_EXTENSIONS:
        raise ValueError(f"Unsupported invoice file extension: {suffix}")
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    reader_fn = SUPPORTED_INVOICE_EXTENSIONS[suffix]
    conn = duckdb.connect(":memory:")
    try:
        result = conn.execute(f"SELECT * FROM {reader_fn}(?)", [str(path)])
        columns = [col[0] for col in result.description]
        rows = [dict(zip(columns, row)) for row in result.fetchall()]
    except duckdb.Error as e:
        raise ValueError(f"Failed to read invoices from {path}: {e}") from e
    finally:
        conn.close()

    records = coerce_invoices(rows)
    log.info("  %s: %d invoice(s)", path.name, len(records))
    return records
