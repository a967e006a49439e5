from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .config import (
    DEFAULT_COLUMN_WIDTH_CHARS,
    DEFAULT_ROW_HEIGHT_POINTS,
    POINTS_PER_CHAR,
)
from .errors import InvalidPlacementError


MAX_COLUMNS = 16_384  # XFD
MAX_ROWS = 1_048_576

_ADDRESS_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?([0-9]{1,7})$")


def chars_to_points(width_chars: float) -> float:
    return width_chars * POINTS_PER_CHAR


DEFAULT_COLUMN_WIDTH_POINTS = chars_to_points(DEFAULT_COLUMN_WIDTH_CHARS)


def column_letter(col: int) -> str:
    """Return the column letters for a zero-based column index (0 -> "A")."""
    if col < 0:
        raise ValueError(f"Column index {col} is negative.")
    letters = ""
    n = col + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def column_index(letters: str) -> int:
    """Return the zero-based column index for column letters ("C" -> 2)."""
    value = 0
    for ch in letters.upper():
        if not "A" <= ch <= "Z":
            raise ValueError(f"Invalid column letters {letters!r}.")
        value = value * 26 + (ord(ch) - ord("A") + 1)
    return value - 1


def format_address(col: int, row: int) -> str:
    return f"{column_letter(col)}{row + 1}"


def parse_address(address: str) -> Tuple[int, int]:
    """Parse a canonical address like "F35" into zero-based ``(col, row)``."""
    match = _ADDRESS_RE.match(address.strip()) if isinstance(address, str) else None
    if not match:
        raise InvalidPlacementError(f"{address!r} is not a cell address.")
    col = column_index(match.group(1))
    row = int(match.group(2)) - 1
    if not (0 <= col < MAX_COLUMNS and 0 <= row < MAX_ROWS):
        raise InvalidPlacementError(f"Cell address {address} is out of range.")
    return col, row


@dataclass(frozen=True)
class MergeRange:
    """Inclusive, zero-based merge block. The anchor is the top-left cell."""

    min_col: int
    min_row: int
    max_col: int
    max_row: int

    @property
    def anchor(self) -> Tuple[int, int]:
        return self.min_col, self.min_row

    @property
    def colspan(self) -> int:
        return self.max_col - self.min_col + 1

    @property
    def rowspan(self) -> int:
        return self.max_row - self.min_row + 1

    def contains(self, col: int, row: int) -> bool:
        return self.min_col <= col <= self.max_col and self.min_row <= row <= self.max_row

    @classmethod
    def from_ref(cls, ref: str) -> "MergeRange":
        start, _, end = ref.partition(":")
        c0, r0 = parse_address(start)
        c1, r1 = parse_address(end or start)
        return cls(min(c0, c1), min(r0, r1), max(c0, c1), max(r0, r1))

    def __str__(self) -> str:
        return f"{format_address(self.min_col, self.min_row)}:{format_address(self.max_col, self.max_row)}"


class SheetGeometry:
    """Point geometry of a worksheet grid.

    Native spreadsheet space has its origin at the top-left corner of cell A1
    and grows right and down. Column widths and row heights come from the
    worksheet where it sets them and fall back to the default grid
    otherwise; the same numbers drive click resolution in the preview and
    cell resolution in the stamper.
    """

    def __init__(
        self,
        column_widths: Optional[Mapping[int, float]] = None,
        row_heights: Optional[Mapping[int, float]] = None,
        merges: Iterable[MergeRange] = (),
        default_column_width: float = DEFAULT_COLUMN_WIDTH_POINTS,
        default_row_height: float = DEFAULT_ROW_HEIGHT_POINTS,
    ) -> None:
        self.column_widths: Dict[int, float] = dict(column_widths or {})
        self.row_heights: Dict[int, float] = dict(row_heights or {})
        self.merges = tuple(merges)
        self.default_column_width = default_column_width
        self.default_row_height = default_row_height

    def column_width(self, col: int) -> float:
        width = self.column_widths.get(col)
        return width if width and width > 0 else self.default_column_width

    def row_height(self, row: int) -> float:
        height = self.row_heights.get(row)
        return height if height and height > 0 else self.default_row_height

    def column_offset(self, col: int) -> float:
        return sum(self.column_width(c) for c in range(col))

    def row_offset(self, row: int) -> float:
        return sum(self.row_height(r) for r in range(row))

    def locate(self, x: float, y: float) -> Tuple[int, int]:
        """Return the zero-based ``(col, row)`` whose box contains the point."""
        return (
            _accumulate(max(0.0, x), self.column_width, MAX_COLUMNS),
            _accumulate(max(0.0, y), self.row_height, MAX_ROWS),
        )

    def merge_at(self, col: int, row: int) -> Optional[MergeRange]:
        for merge in self.merges:
            if merge.contains(col, row):
                return merge
        return None

    def cell_box(self, col: int, row: int) -> Tuple[float, float, float, float]:
        x0 = self.column_offset(col)
        y0 = self.row_offset(row)
        return x0, y0, x0 + self.column_width(col), y0 + self.row_height(row)

    def merge_box(self, merge: MergeRange) -> Tuple[float, float, float, float]:
        x0, y0, _, _ = self.cell_box(merge.min_col, merge.min_row)
        _, _, x1, y1 = self.cell_box(merge.max_col, merge.max_row)
        return x0, y0, x1, y1

    def subdivide(self, merge: MergeRange, fx: float, fy: float) -> Tuple[int, int]:
        """Resolve a click at fractions ``(fx, fy)`` of a merged box to a sub-cell.

        The box is split along the real widths and heights of the columns and
        rows it covers, so a narrow column inside the merge gets a narrow share.
        """
        fx = min(max(fx, 0.0), 1.0)
        fy = min(max(fy, 0.0), 1.0)
        x0, y0, x1, y1 = self.merge_box(merge)
        col = merge.min_col + _accumulate(
            fx * (x1 - x0), lambda c: self.column_width(merge.min_col + c), merge.colspan
        )
        row = merge.min_row + _accumulate(
            fy * (y1 - y0), lambda r: self.row_height(merge.min_row + r), merge.rowspan
        )
        return col, row

    def cell_center(self, col: int, row: int) -> Tuple[float, float]:
        x0, y0, x1, y1 = self.cell_box(col, row)
        return (x0 + x1) / 2, (y0 + y1) / 2

    def rows_covered(self, row: int, height: float) -> int:
        """Number of rows, starting at ``row``, that a block of ``height`` points spans."""
        count = 0
        remaining = height
        while remaining > 0 and row + count < MAX_ROWS:
            remaining -= self.row_height(row + count)
            count += 1
        return max(count, 1)


def _accumulate(offset: float, size_of, limit: int) -> int:
    """Walk cells until their accumulated size passes ``offset``."""
    total = 0.0
    for index in range(limit):
        total += size_of(index)
        if total > offset:
            return index
    return limit - 1
