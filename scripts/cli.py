"""CLI entry point for the ledger reconciler.

Usage:
    # List the transactions in a journal export
    ledger-reconcile parse journal.csv

    # Reconcile against an invoice export, snapshot the run, export a report
    ledger-reconcile run journal.csv --invoices invoices.csv -o runs/2025-04.db --xlsx report.xlsx

    # Summarize a saved run
    ledger-reconcile show runs/2025-04.db
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import click
import duckdb

from src.settings import Settings, load_env, resolve_settings
from src.journal import JournalReadError, Transaction, read_journal
from src.invoices import load_invoices
from src.reconcile import ReconcileStatus, reconcile, summarize
from src.report import (
    export_report_xlsx,
    export_results_csv,
    format_amount,
    read_run_meta,
    table_counts,
    write_run,
)

# Load .env by walking upward from the CWD.
DOTENV_PATH = load_env()

log = logging.getLogger(__name__)


def _configure_logging(quiet: bool) -> None:
    level = logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def _settings(tolerance: int | None, encoding: str | None) -> Settings:
    try:
        return resolve_settings(date_tolerance_days=tolerance, encoding=encoding)
    except ValueError as e:
        raise click.ClickException(str(e))


def _load_journal(path: Path, encoding: str) -> list[Transaction]:
    try:
        return read_journal(path, encoding=encoding)
    except (FileNotFoundError, JournalReadError) as e:
        raise click.ClickException(str(e))


def _default_output_db_path(journal: Path, now: datetime | None = None) -> Path:
    """Generate a default snapshot path from the journal name + timestamp."""
    if now is None:
        now = datetime.now(timezone.utc)
    ts = now.strftime("%Y%m%d_%H%M%S")
    return Path("runs") / f"{journal.stem}_{ts}.db"


def _confirm_overwrite(path: Path, force: bool) -> None:
    if path.exists() and not force:
        click.confirm(
            f"{path} already exists and will be overwritten. Continue?",
            abort=True,
        )


@click.group()
def main():
    """Ledger reconciler — prove taxed journal entries have documents."""


@main.command()
@click.argument("journal", type=click.Path(path_type=Path))
@click.option("--encoding", "-e", default=None, help="Journal encoding (default: cp932)")
@click.option(
    "--all", "show_all", is_flag=True, help="Include transactions that need no document"
)
def parse(journal: Path, encoding: str | None, show_all: bool):
    """List the transactions in a journal export."""
    _configure_logging(quiet=True)
    settings = _settings(None, encoding)
    transactions = _load_journal(journal, settings.encoding)

    shown = 0
    for t in transactions:
        if not show_all and not t.needs_document:
            continue
        shown += 1
        flag = "*" if t.needs_document else " "
        click.echo(
            f"{flag} {t.date}  #{t.transaction_no:<6} {format_amount(t.amount):>12}  "
            f"{t.primary_account}  {t.tax_category}  {t.description}"
        )
    click.echo(
        f"\n{len(transactions)} transactions, "
        f"{sum(1 for t in transactions if t.needs_document)} need documents"
        + ("" if show_all else f" ({shown} shown)")
    )


@main.command()
@click.argument("journal", type=click.Path(path_type=Path))
@click.option(
    "--invoices",
    "-i",
    "invoices_path",
    type=click.Path(path_type=Path),
    required=True,
    help="Invoice export (.csv, .parquet or .json)",
)
@click.option(
    "--tolerance",
    "-t",
    type=int,
    default=None,
    help="Days an invoice may trail its transaction (default: 14)",
)
@click.option("--encoding", "-e", default=None, help="Journal encoding (default: cp932)")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Snapshot database path (default: no snapshot)",
)
@click.option(
    "--save", is_flag=True, help="Snapshot to runs/<journal>_<timestamp>.db"
)
@click.option("--csv", "csv_path", type=click.Path(path_type=Path), default=None)
@click.option("--xlsx", "xlsx_path", type=click.Path(path_type=Path), default=None)
@click.option("--quiet", "-q", is_flag=True, help="Suppress verbose output")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite output files without prompting",
)
def run(
    journal: Path,
    invoices_path: Path,
    tolerance: int | None,
    encoding: str | None,
    output: Path | None,
    save: bool,
    csv_path: Path | None,
    xlsx_path: Path | None,
    quiet: bool,
    force: bool,
):
    """Reconcile a journal export against an invoice pool."""
    _configure_logging(quiet)
    settings = _settings(tolerance, encoding)

    if output is None and save:
        output = _default_output_db_path(journal)
        output.parent.mkdir(parents=True, exist_ok=True)
    elif output is not None and output.suffix != ".db":
        output = output.with_suffix(".db")
        log.warning("Output path adjusted to %s (added .db suffix)", output)

    for path in (output, csv_path, xlsx_path):
        if path is not None:
            _confirm_overwrite(path, force)

    log.info("Journal: %s", journal)
    log.info("Invoices: %s", invoices_path)
    log.info("Date tolerance: %d day(s)", settings.date_tolerance_days)

    transactions = _load_journal(journal, settings.encoding)
    try:
        invoices = load_invoices(invoices_path)
    except (FileNotFoundError, ValueError, TypeError) as e:
        raise click.ClickException(str(e))

    results = reconcile(transactions, invoices, settings.date_tolerance_days)
    summary = summarize(results, invoices)

    log.info("")
    log.info(
        "Matched: %d (%d exact, %d fuzzy)",
        summary.matched,
        summary.exact_matches,
        summary.fuzzy_matches,
    )
    log.info("Unmatched: %d (%s)", summary.unmatched, format_amount(summary.unmatched_amount))
    log.info("Not applicable: %d", summary.not_applicable)
    log.info("Unused invoices: %d", summary.unused_invoices)

    unmatched = [r for r in results if r.status is ReconcileStatus.UNMATCHED]
    if unmatched:
        log.warning("\nMissing documents:")
        for r in unmatched:
            t = r.transaction
            log.warning(
                "  %s  #%s  %s  %s", t.date, t.transaction_no, format_amount(t.amount), t.description
            )

    meta = {
        "journal": str(journal),
        "invoices": str(invoices_path),
        "date_tolerance_days": settings.date_tolerance_days,
        "encoding": settings.encoding,
    }

    if output is not None or xlsx_path is not None:
        if output is not None and output.exists():
            output.unlink()
        conn = duckdb.connect(str(output) if output is not None else ":memory:")
        try:
            write_run(conn, transactions, invoices, results, meta)
            if xlsx_path is not None:
                export_report_xlsx(conn, xlsx_path)
                log.info("Report: %s", xlsx_path)
        finally:
            conn.close()
        if output is not None:
            log.info("Saved to: %s", output)

    if csv_path is not None:
        export_results_csv(results, csv_path)
        log.info("Results: %s", csv_path)


@main.command()
@click.argument("db", type=click.Path(path_type=Path))
def show(db: Path):
    """Summarize a saved reconciliation run."""
    if not db.exists():
        raise click.ClickException(f"Database not found: {db}")
    try:
        conn = duckdb.connect(str(db), read_only=True)
    except duckdb.Error as e:
        raise click.ClickException(f"Failed to open {db}: {e}")
    try:
        counts = table_counts(conn)
        meta = read_run_meta(conn)
    finally:
        conn.close()

    click.echo(f"Run: {db}")
    for key in ("created_at", "journal", "invoices", "date_tolerance_days"):
        if key in meta:
            click.echo(f"  {key}: {meta[key]}")

    click.echo("\nTables:")
    for name, n in counts.items():
        click.echo(f"  {name}: {n if n is not None else 'missing'}")

    summary = meta.get("summary") or {}
    if summary:
        click.echo("\nSummary:")
        for key, value in summary.items():
            click.echo(f"  {key}: {value}")


if __name__ == "__main__":
    main()
