"""A1-notation helpers.

Columns are 0-based throughout the engine; rows are 1-based as displayed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_CELL_RE = re.compile(r"^([A-Za-z]*)(\d*)$")


def column_letter(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, 701 -> ZZ, 702 -> AAA."""
    if index < 0:
        msg = f"Column index must be >= 0, got {index}"
        raise ValueError(msg)
    letters = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def column_index(letters: str) -> int:
    """Inverse of ``column_letter`` (case-insensitive)."""
    if not letters or not letters.isalpha():
        msg = f"Invalid column letters: {letters!r}"
        raise ValueError(msg)
    n = 0
    for ch in letters.upper():
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


def quote_sheet(title: str) -> str:
    """Quote a sheet title for use in a range when it needs it."""
    if re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", title):
        return title
    return "'" + title.replace("'", "''") + "'"


def a1(sheet: str, ref: str | None = None) -> str:
    """Build ``Sheet!ref`` (or just the quoted sheet when ``ref`` is None)."""
    quoted = quote_sheet(sheet)
    return f"{quoted}!{ref}" if ref else quoted


def cell(col: int, row: int) -> str:
    """0-based column and 1-based row to ``B12``."""
    return f"{column_letter(col)}{row}"


@dataclass(frozen=True)
class GridRange:
    """A parsed range.  Bounds are 0-based and end-exclusive; ``None`` means unbounded."""

    sheet: str
    start_row: int | None = None
    end_row: int | None = None
    start_col: int | None = None
    end_col: int | None = None


def _split_sheet(text: str) -> tuple[str, str | None]:
    if text.startswith("'"):
        i = 1
        title = []
        while i < len(text):
            ch = text[i]
            if ch == "'":
                if i + 1 < len(text) and text[i + 1] == "'":
                    title.append("'")
                    i += 2
                    continue
                break
            title.append(ch)
            i += 1
        else:
            msg = f"Unterminated sheet title in range: {text!r}"
            raise ValueError(msg)
        rest = text[i + 1 :]
        if not rest:
            return "".join(title), None
        if not rest.startswith("!"):
            msg = f"Unable to parse range: {text}"
            raise ValueError(msg)
        return "".join(title), rest[1:]
    if "!" in text:
        sheet, ref = text.split("!", 1)
        return sheet, ref
    return text, None


def _parse_ref(ref: str) -> tuple[int | None, int | None]:
    match = _CELL_RE.match(ref)
    if not match or not ref:
        msg = f"Unable to parse range: {ref}"
        raise ValueError(msg)
    letters, digits = match.groups()
    col = column_index(letters) if letters else None
    row = int(digits) - 1 if digits else None
    if row is not None and row < 0:
        msg = f"Unable to parse range: {ref}"
        raise ValueError(msg)
    return col, row


def parse_range(text: str) -> GridRange:
    """Parse ``Sheet``, ``Sheet!B12``, ``Sheet!A1:L``, ``Sheet!A:L`` or ``Sheet!1:12``.

    Raises ``ValueError`` on anything else.
    """
    sheet, ref = _split_sheet(text)
    if not sheet:
        msg = f"Unable to parse range: {text}"
        raise ValueError(msg)
    if ref is None:
        return GridRange(sheet=sheet)

    start, _, end = ref.partition(":")
    start_col, start_row = _parse_ref(start)
    if not end:
        if start_col is None or start_row is None:
            msg = f"Unable to parse range: {text}"
            raise ValueError(msg)
        return GridRange(sheet, start_row, start_row + 1, start_col, start_col + 1)

    end_col, end_row = _parse_ref(end)
    # A:L leaves rows open; 1:12 leaves columns open; A1:L leaves the end row open
    return GridRange(
        sheet=sheet,
        start_row=start_row if start_row is not None else (0 if end_row is not None else None),
        end_row=end_row + 1 if end_row is not None else None,
        start_col=start_col if start_col is not None else (0 if end_col is not None else None),
        end_col=end_col + 1 if end_col is not None else None,
    )
