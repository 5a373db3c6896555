"""Tests for src/report.py — frames, run snapshots and exports."""

from pathlib import Path

import polars as pl
from openpyxl import load_workbook

from tests.conftest import _make_invoice, _make_tx
from src.reconcile import reconcile
from src.report import (
    export_report_xlsx,
    export_results_csv,
    format_amount,
    quote_ident,
    read_run_meta,
    results_frame,
    table_counts,
    transactions_frame,
    write_run,
    write_run_meta,
)


def _run():
    txs = [
        _make_tx("1", amount=5000),
        _make_tx("2", amount=980, description="JCB GITHUB"),
        _make_tx("3", amount=300),
        _make_tx("4", needs_document=False),
    ]
    invs = [
        _make_invoice(amount=5000, id=1),
        _make_invoice(amount=1200, counterparty="GitHub", id=2),
        _make_invoice(amount=77, counterparty="Unused", id=3),
    ]
    return txs, invs, reconcile(txs, invs, 14)


class TestFormatAmount:
    def test_jpy_default(self):
        assert format_amount(1234567) == "¥1,234,567"

    def test_usd(self):
        assert format_amount(12.5, "USD") == "$12.50"

    def test_unknown_currency_uses_code(self):
        assert format_amount(3, "CHF") == "CHF 3.00"


class TestQuoteIdent:
    def test_simple_name(self):
        assert quote_ident("results") == '"results"'

    def test_name_with_quotes(self):
        assert quote_ident('a"b') == '"a""b"'


class TestFrames:
    def test_results_frame(self):
        _, _, results = _run()
        df = results_frame(results)
        assert df["status"].to_list() == ["matched", "matched", "unmatched", "not_applicable"]
        assert df["match_kind"].to_list() == ["exact", "fuzzy", None, None]
        assert df["invoice_id"].to_list() == ["1", "2", None, None]

    def test_empty_frames_keep_schema(self):
        df = results_frame([])
        assert df.is_empty()
        assert "invoice_counterparty" in df.columns
        assert transactions_frame([]).schema["amount"] == pl.Int64


class TestWriteRun:
    def test_tables_and_meta(self, conn):
        txs, invs, results = _run()
        write_run(conn, txs, invs, results, {"date_tolerance_days": 14})

        assert table_counts(conn) == {
            "journal_lines": 4,
            "transactions": 4,
            "invoices": 3,
            "reconcile_results": 4,
            "unused_invoices": 1,
        }
        rows = conn.execute(
            "SELECT _row_id, transaction_no, status FROM reconcile_results ORDER BY _row_id"
        ).fetchall()
        assert rows[0] == (1, "1", "matched")

        meta = read_run_meta(conn)
        assert meta["date_tolerance_days"] == 14
        assert meta["summary"]["matched"] == 2
        assert meta["summary"]["unused_invoices"] == 1
        assert "created_at" in meta

    def test_rewrite_replaces_tables(self, conn):
        txs, invs, results = _run()
        write_run(conn, txs, invs, results)
        write_run(conn, txs[:1], invs[:1], results[:1])
        assert table_counts(conn)["transactions"] == 1

    def test_missing_tables(self, conn):
        assert set(table_counts(conn).values()) == {None}
        assert read_run_meta(conn) == {}

    def test_meta_round_trip(self, conn):
        write_run_meta(conn, {"journal": "仕訳帳.csv", "n": 3})
        write_run_meta(conn, {"journal": "other.csv"})
        assert read_run_meta(conn) == {"journal": "other.csv"}


class TestExports:
    def test_csv(self, tmp_path: Path):
        _, _, results = _run()
        path = tmp_path / "results.csv"
        export_results_csv(results, path)
        df = pl.read_csv(path)
        assert len(df) == 4
        assert df["status"].to_list()[2] == "unmatched"

    def test_xlsx(self, conn, tmp_path: Path):
        txs, invs, results = _run()
        write_run(conn, txs, invs, results)
        path = tmp_path / "report.xlsx"
        export_report_xlsx(conn, path)

        wb = load_workbook(path)
        assert wb.sheetnames == [
            "Matched",
            "Unmatched",
            "Not applicable",
            "Unused invoices",
            "Summary",
        ]
        assert wb["Matched"].max_row == 3  # header + 2
        assert wb["Unused invoices"]["C2"].value == "Unused"
        summary = {r[0]: r[1] for r in wb["Summary"].iter_rows(min_row=2, values_only=True)}
        assert summary["unmatched"] == 1
