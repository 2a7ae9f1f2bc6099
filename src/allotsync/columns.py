"""Spreadsheet column addressing.

Columns are numbered bijective base-26: there is no zero digit, so the
sequence runs A..Z, AA..AZ, BA.. and so on.  Indices are 0-based.
"""

from __future__ import annotations

import re

_LETTERS_RE = re.compile(r"^[A-Za-z]+$")


def col_letter_to_index(letters: str) -> int:
    """Convert column letter(s) to 0-based index.  A=0, B=1, ..., Z=25, AA=26."""
    if not _LETTERS_RE.match(letters or ""):
        raise ValueError(f"Invalid column letters: {letters!r}")
    idx = 0
    for ch in letters.upper():
        idx = idx * 26 + (ord(ch) - ord("A") + 1)
    return idx - 1


def index_to_col_letter(idx: int) -> str:
    """Convert 0-based column index to letter(s).  0=A, 25=Z, 26=AA."""
    if idx < 0:
        raise ValueError(f"Column index must be >= 0, got {idx}")
    result = ""
    n = idx + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        result = chr(65 + rem) + result
    return result


def quote_sheet_title(title: str) -> str:
    """Quote a tab name for A1 notation (embedded quotes are doubled)."""
    return "'" + title.replace("'", "''") + "'"


def a1_range(sheet_title: str, col_idx: int, row: int) -> str:
    """Build a single-cell range such as ``'JEE Modules'!D12``.

    Args:
        sheet_title: Tab name.
        col_idx: 0-based column index.
        row: 1-based row number.
    """
    if row < 1:
        raise ValueError(f"Row must be >= 1, got {row}")
    return f"{quote_sheet_title(sheet_title)}!{index_to_col_letter(col_idx)}{row}"
