"""A1 notation helpers for spreadsheet ranges."""

from dataclasses import dataclass, field
from typing import Any


def column_letter(index: int) -> str:
    """Convert a zero-based column index to its spreadsheet letter.

    Uses bijective base-26, so 0 is ``A``, 25 is ``Z``, 26 is ``AA`` and 702
    is ``AAA``.

    Raises:
        ValueError: If ``index`` is negative
    """
    if index < 0:
        raise ValueError(f"Column index must be non-negative, got {index}")

    letters = ""
    n = index + 1
    while n > 0:
        n, remainder = divmod(n - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


@dataclass(frozen=True)
class Range:
    """A sheet range; ``start``/``end`` are A1 cell references or columns."""

    sheet: str
    start: str | None = None
    end: str | None = None


@dataclass(frozen=True)
class DataRange:
    """Values to write into a range, one list per row."""

    range: Range
    data: list[list[Any]] = field(default_factory=list)


def translate_range(range_: Range) -> str:
    """Render a range as ``Sheet!A1:C3``.

    ``end`` is only used together with ``start``; a range with neither covers
    the whole sheet.
    """
    result = range_.sheet
    if range_.start:
        result += f"!{range_.start}"
        if range_.end:
            result += f":{range_.end}"
    return result
