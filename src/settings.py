"""Run settings: date tolerance and journal encoding.

Resolution order (first hit wins):

1. explicit values passed by the caller (CLI flags)
2. environment: ``LEDGER_DATE_TOLERANCE_DAYS``, ``LEDGER_JOURNAL_ENCODING``
   (a ``.env`` found by walking upward from the CWD is loaded first)
3. ``[tool.ledger_reconcile]`` in ``pyproject.toml`` of the CWD
4. defaults
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from .journal import DEFAULT_ENCODING

DEFAULT_DATE_TOLERANCE_DAYS = 14

TOLERANCE_ENV = "LEDGER_DATE_TOLERANCE_DAYS"
ENCODING_ENV = "LEDGER_JOURNAL_ENCODING"
PYPROJECT_TABLE = "ledger_reconcile"


@dataclass(frozen=True)
class Settings:
    date_tolerance_days: int = DEFAULT_DATE_TOLERANCE_DAYS
    encoding: str = DEFAULT_ENCODING


def load_env() -> Path | None:
    """Load the nearest .env (walking upward from the CWD); return its path."""
    found = find_dotenv(usecwd=True)
    if not found:
        return None
    load_dotenv(found)
    return Path(found)


def parse_tolerance(value: Any) -> int:
    """Validate a date tolerance value; raise ValueError if not an int >= 0."""
    if isinstance(value, bool):
        raise ValueError(f"Date tolerance must be an integer, got {value!r}")
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Date tolerance must be an integer, got {value!r}")
    if isinstance(value, float) and value != days:
        raise ValueError(f"Date tolerance must be an integer, got {value!r}")
    if days < 0:
        raise ValueError(f"Date tolerance must be >= 0, got {days}")
    return days


def read_pyproject_settings(root: Path | None = None) -> dict[str, Any]:
    """Return the ``[tool.ledger_reconcile]`` table, or {} if absent."""
    if root is None:
        root = Path.cwd()
    pyproject_path = root / "pyproject.toml"
    if not pyproject_path.exists():
        return {}
    try:
        data = tomllib.loads(pyproject_path.read_text())
    except OSError as e:
        raise ValueError(f"Failed to read {pyproject_path}: {e}")
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {pyproject_path}: {e}")
    table = data.get("tool", {}).get(PYPROJECT_TABLE, {})
    return table if isinstance(table, dict) else {}


def resolve_settings(
    date_tolerance_days: int | None = None,
    encoding: str | None = None,
    root: Path | None = None,
) -> Settings:
    """Merge explicit values, environment and pyproject into Settings."""
    file_cfg = read_pyproject_settings(root)

    if date_tolerance_days is None:
        raw = os.environ.get(TOLERANCE_ENV) or file_cfg.get("date_tolerance_days")
        if raw is None or raw == "":
            date_tolerance_days = DEFAULT_DATE_TOLERANCE_DAYS
        else:
            date_tolerance_days = parse_tolerance(raw)
    else:
        date_tolerance_days = parse_tolerance(date_tolerance_days)

    if not encoding:
        encoding = (
            os.environ.get(ENCODING_ENV) or file_cfg.get("encoding") or DEFAULT_ENCODING
        )

    return Settings(date_tolerance_days=date_tolerance_days, encoding=str(encoding))
