"""Journal importer — turn an accounting journal export into transactions.

The export is a Shift_JIS (cp932) text file with one header line followed by
comma-separated rows of a fixed 19-column schema:

    transaction-no, date,
    debit  {account, sub-account, department, counterparty, tax-category,
            invoice-reg-no, amount},
    credit {same 7 fields},
    description, tag, memo

Rows sharing a transaction number are one economic event. They are grouped
(first-seen order), reduced to a :class:`Transaction` with a resolved primary
account/amount/tax category, and returned sorted by date.

Usage:

    transactions = read_journal(Path("journal.csv"))
    # or, from bytes already in memory
    transactions = parse_journal(raw_bytes)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)

DEFAULT_ENCODING = "cp932"

JOURNAL_COLUMN_COUNT = 19

# Tax-category markers (substring matches)
TAXABLE_MARKER = "課税"
TAXABLE_PURCHASE_MARKER = "課税仕入"
TAXABLE_SALE_MARKER = "課税売上"


class JournalReadError(OSError):
    """Raised when a journal export cannot be decoded."""


@dataclass(frozen=True)
class JournalSide:
    """One side (debit or credit) of a journal line."""

    account: str = ""
    sub_account: str = ""
    department: str = ""
    counterparty: str = ""
    tax_category: str = ""
    invoice_number: str = ""
    amount: int = 0


@dataclass(frozen=True)
class JournalLine:
    transaction_no: str
    date: str
    debit: JournalSide
    credit: JournalSide
    description: str = ""
    tag: str = ""
    memo: str = ""

    def is_taxable(self) -> bool:
        """Return True if either side carries a taxable tax category."""
        return (
            TAXABLE_MARKER in self.debit.tax_category
            or TAXABLE_MARKER in self.credit.tax_category
        )


@dataclass(frozen=True)
class Transaction:
    """All journal lines sharing one transaction number.

    Build with :meth:`from_lines`; the derived attributes (description,
    needs_document, primary_account, amount, tax_category) are resolved
    once there and stored.
    """

    transaction_no: str
    date: str
    lines: tuple[JournalLine, ...]
    description: str
    needs_document: bool
    primary_account: str
    amount: int
    tax_category: str

    @classmethod
    def from_lines(cls, transaction_no: str, lines: list[JournalLine]) -> "Transaction":
        if not lines:
            raise ValueError(f"Transaction {transaction_no!r} has no lines")
        account, amount, tax_category = resolve_primary(lines)
        description = next((ln.description for ln in lines if ln.description), "")
        return cls(
            transaction_no=transaction_no,
            date=lines[0].date,
            lines=tuple(lines),
            description=description,
            needs_document=any(ln.is_taxable() for ln in lines),
            primary_account=account,
            amount=amount,
            tax_category=tax_category,
        )


@dataclass
class ImportStats:
    """Counters collected while importing one journal."""

    rows: int = 0
    dropped_rows: int = 0
    amount_fallbacks: int = 0
    transactions: int = 0
    short_rows: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


def split_csv_line(line: str) -> list[str]:
    """Split one CSV line into fields, honouring double-quote escaping.

    Inside quotes, ``""`` is a literal quote and a single ``"`` closes the
    quote. Outside quotes, ``,`` ends a field and ``"`` opens quoting. The
    last field is always emitted, even when empty.
    """
    fields: list[str] = []
    current: list[str] = []
    quoted = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if quoted:
            if ch == '"':
                if i + 1 < n and line[i + 1] == '"':
                    current.append('"')
                    i += 1
                else:
                    quoted = False
            else:
                current.append(ch)
        elif ch == '"':
            quoted = True
        elif ch == ",":
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def normalize_date(value: str) -> str:
    """``2025/04/01`` -> ``2025-04-01`` (character substitution only)."""
    return value.replace("/", "-")


def _parse_amount(value: str, stats: ImportStats | None = None) -> int:
    value = value.strip()
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        if stats is not None:
            stats.amount_fallbacks += 1
        log.debug("Unparseable amount %r, using 0", value)
        return 0


def _side_from_fields(fields: list[str], start: int, stats: ImportStats | None) -> JournalSide:
    return JournalSide(
        account=fields[start],
        sub_account=fields[start + 1],
        department=fields[start + 2],
        counterparty=fields[start + 3],
        tax_category=fields[start + 4],
        invoice_number=fields[start + 5],
        amount=_parse_amount(fields[start + 6], stats),
    )


def line_from_fields(fields: list[str], stats: ImportStats | None = None) -> JournalLine:
    """Map one row of fields onto a :class:`JournalLine` by position.

    Short rows are padded with empty strings; extra columns are ignored.
    """
    padded = list(fields[:JOURNAL_COLUMN_COUNT])
    padded += [""] * (JOURNAL_COLUMN_COUNT - len(padded))
    return JournalLine(
        transaction_no=padded[0],
        date=normalize_date(padded[1]),
        debit=_side_from_fields(padded, 2, stats),
        credit=_side_from_fields(padded, 9, stats),
        description=padded[16],
        tag=padded[17],
        memo=padded[18],
    )


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def group_lines(
    lines: list[JournalLine],
) -> tuple[dict[str, list[JournalLine]], list[str]]:
    """Group lines by transaction number.

    Returns ``(groups, order)`` where *order* lists transaction numbers in
    first-seen order. Lines without a transaction number are dropped.
    """
    groups: dict[str, list[JournalLine]] = {}
    order: list[str] = []
    for line in lines:
        key = line.transaction_no
        if not key:
            continue
        if key not in groups:
            groups[key] = []
            order.append(key)
        groups[key].append(line)
    return groups, order


def resolve_primary(lines: list[JournalLine]) -> tuple[str, int, str]:
    """Pick the tax-relevant leg of a transaction.

    Returns ``(account, amount, tax_category)``. Lines are scanned in order and
    the first taxable-purchase debit or taxable-sale credit wins. Otherwise each
    field comes from the first line's debit side, or its credit side where the
    debit value is empty.
    """
    for line in lines:
        if TAXABLE_PURCHASE_MARKER in line.debit.tax_category:
            return line.debit.account, line.debit.amount, line.debit.tax_category
        if TAXABLE_SALE_MARKER in line.credit.tax_category:
            return line.credit.account, line.credit.amount, line.credit.tax_category

    debit, credit = lines[0].debit, lines[0].credit
    return (
        debit.account or credit.account,
        debit.amount or credit.amount,
        debit.tax_category or credit.tax_category,
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def _decode(data: bytes, encoding: str) -> str:
    try:
        return data.decode(encoding)
    except UnicodeDecodeError as e:
        raise JournalReadError(
            f"Journal is not readable as {encoding}: invalid byte at offset {e.start}"
        ) from e
    except LookupError as e:
        raise JournalReadError(f"Unknown journal encoding: {encoding}") from e


def parse_journal(
    data: bytes,
    encoding: str = DEFAULT_ENCODING,
    stats: ImportStats | None = None,
) -> list[Transaction]:
    """Parse a raw journal export into date-sorted transactions.

    Raises JournalReadError if *data* cannot be decoded; nothing is
    returned in that case.
    """
    if stats is None:
        stats = ImportStats()

    text = _decode(data, encoding)
    rows = [ln.rstrip("\r") for ln in text.split("\n") if ln.strip()]
    # First non-blank line is the header
    body = rows[1:]

    lines: list[JournalLine] = []
    for row_no, row in enumerate(body, start=2):
        fields = split_csv_line(row)
        if len(fields) < JOURNAL_COLUMN_COUNT:
            stats.short_rows.append(row_no)
        lines.append(line_from_fields(fields, stats))
    stats.rows = len(lines)
    stats.dropped_rows = sum(1 for ln in lines if not ln.transaction_no)

    groups, order = group_lines(lines)
    transactions = [Transaction.from_lines(no, groups[no]) for no in order]
    transactions.sort(key=lambda t: t.date)
    stats.transactions = len(transactions)

    if stats.dropped_rows:
        log.debug("  %d row(s) without a transaction number skipped", stats.dropped_rows)
    if stats.short_rows:
        log.debug("  %d short row(s) padded", len(stats.short_rows))
    return transactions


def read_journal(
    path: Path,
    encoding: str = DEFAULT_ENCODING,
    stats: ImportStats | None = None,
) -> list[Transaction]:
    """Read a journal export from disk and parse it."""
    if stats is None:
        stats = ImportStats()
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Journal not found: {path}")
    try:
        data = path.read_bytes()
    except OSError as e:
        raise JournalReadError(f"Failed to read journal {path}: {e}") from e
    transactions = parse_journal(data, encoding=encoding, stats=stats)
    log.info(
        "  %s: %d rows, %d transactions (%d need documents)",
        path.name,
        stats.rows,
        stats.transactions,
        sum(1 for t in transactions if t.needs_document),
    )
    return transactions
