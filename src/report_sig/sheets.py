from __future__ import annotations

import datetime as dt
import io
import logging
import struct
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import openpyxl
import xlrd
from openpyxl.styles import Alignment, Font
from openpyxl.utils import column_index_from_string
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet
from xlrd.biffh import error_text_from_code
from xlrd.compdoc import CompDocError
from xlrd.xldate import xldate_as_datetime

from .config import DEFAULT_ROW_HEIGHT_POINTS, POINTS_PER_CHAR
from .errors import DocumentLoadError
from .grid import (
    DEFAULT_COLUMN_WIDTH_POINTS,
    MergeRange,
    SheetGeometry,
    chars_to_points,
    column_letter,
)
from .models import DocumentType


logger = logging.getLogger(__name__)

TWIPS_PER_POINT = 20.0
XLS_WIDTH_UNITS_PER_CHAR = 256.0

_XLS_HORIZONTAL = {
    1: "left",
    2: "center",
    3: "right",
    4: "fill",
    5: "justify",
    6: "centerContinuous",
    7: "distributed",
}
# Bottom (2) is the default and is left unset.
_XLS_VERTICAL = {0: "top", 1: "center", 3: "justify", 4: "distributed"}


@dataclass(frozen=True)
class CellStyle:
    """Formatting carried over from a legacy xls cell."""

    font_name: Optional[str] = None
    font_size: Optional[float] = None
    bold: bool = False
    italic: bool = False
    horizontal: Optional[str] = None
    vertical: Optional[str] = None
    number_format: Optional[str] = None

    @property
    def has_font(self) -> bool:
        return bool(self.font_name or self.font_size or self.bold or self.italic)

    def apply(self, cell) -> None:
        if self.has_font:
            cell.font = Font(name=self.font_name, sz=self.font_size, b=self.bold, i=self.italic)
        if self.horizontal or self.vertical:
            cell.alignment = Alignment(horizontal=self.horizontal, vertical=self.vertical)
        if self.number_format:
            cell.number_format = self.number_format


@dataclass
class SheetModel:
    """First worksheet of a workbook, reduced to what preview and stamping need.

    Keys of ``values`` are zero-based ``(col, row)`` pairs.
    """

    title: str
    n_cols: int
    n_rows: int
    geometry: SheetGeometry
    values: Dict[Tuple[int, int], Any] = field(default_factory=dict)
    styles: Dict[Tuple[int, int], CellStyle] = field(default_factory=dict)

    @property
    def merges(self) -> Tuple[MergeRange, ...]:
        return self.geometry.merges

    @property
    def cell_count(self) -> int:
        return self.n_cols * self.n_rows

    def display(self, col: int, row: int) -> str:
        return display_value(self.values.get((col, row)))


def display_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, dt.datetime):
        if value.time() == dt.time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (dt.date, dt.time)):
        return value.isoformat()
    return str(value)


def load_sheet(data: bytes, doc_type: DocumentType) -> SheetModel:
    if doc_type is DocumentType.XLSX:
        return _load_xlsx(data)
    if doc_type is DocumentType.XLS:
        return _load_xls(data)
    raise DocumentLoadError(f"{doc_type.value} is not a spreadsheet type.")


def open_workbook(data: bytes, data_only: bool = False) -> openpyxl.Workbook:
    try:
        return openpyxl.load_workbook(io.BytesIO(data), data_only=data_only)
    except (zipfile.BadZipFile, InvalidFileException, KeyError, OSError, ValueError) as exc:
        logger.error("Workbook failed to parse: %s", exc)
        raise DocumentLoadError(f"Unable to read workbook: {exc}") from exc


def first_worksheet(workbook: openpyxl.Workbook) -> Worksheet:
    if not workbook.worksheets:
        raise DocumentLoadError("Workbook has no worksheets.")
    return workbook.worksheets[0]


def worksheet_geometry(ws: Worksheet) -> SheetGeometry:
    """Grid geometry of an openpyxl worksheet, in points."""
    widths: Dict[int, float] = {}
    for letter, dim in ws.column_dimensions.items():
        if not dim.width:
            continue
        start = dim.min or column_index_from_string(letter)
        end = dim.max or start
        for col in range(start, end + 1):
            widths[col - 1] = chars_to_points(dim.width)

    heights = {
        idx - 1: float(dim.height)
        for idx, dim in ws.row_dimensions.items()
        if dim.height
    }
    merges = [
        MergeRange(r.min_col - 1, r.min_row - 1, r.max_col - 1, r.max_row - 1)
        for r in ws.merged_cells.ranges
    ]

    fmt = ws.sheet_format
    default_width = (
        chars_to_points(fmt.defaultColWidth) if fmt.defaultColWidth else DEFAULT_COLUMN_WIDTH_POINTS
    )
    default_height = float(fmt.defaultRowHeight or DEFAULT_ROW_HEIGHT_POINTS)
    return SheetGeometry(widths, heights, merges, default_width, default_height)


def _xls_style(book: xlrd.Book, xf_index: int) -> Optional[CellStyle]:
    """Font, alignment and number format of an xf record, or None when all default.

    The font is only carried when it differs from the workbook's default font.
    """
    xf = book.xf_list[xf_index]
    kwargs: Dict[str, Any] = {}

    font = book.font_list[xf.font_index]
    default = book.font_list[0]
    if (font.name, font.height, font.bold, font.italic) != (
        default.name,
        default.height,
        default.bold,
        default.italic,
    ):
        kwargs.update(
            font_name=font.name,
            font_size=font.height / TWIPS_PER_POINT,
            bold=bool(font.bold),
            italic=bool(font.italic),
        )

    horizontal = _XLS_HORIZONTAL.get(xf.alignment.hor_align)
    vertical = _XLS_VERTICAL.get(xf.alignment.vert_align)
    if horizontal or vertical:
        kwargs.update(horizontal=horizontal, vertical=vertical)

    fmt = book.format_map.get(xf.format_key)
    if fmt is not None and fmt.format_str and fmt.format_str != "General":
        kwargs["number_format"] = fmt.format_str

    return CellStyle(**kwargs) if kwargs else None


def _load_xlsx(data: bytes) -> SheetModel:
    ws = first_worksheet(open_workbook(data, data_only=True))
    values = {
        (cell.column - 1, cell.row - 1): cell.value
        for row in ws.iter_rows()
        for cell in row
        if cell.value is not None
    }
    return SheetModel(
        title=ws.title,
        n_cols=ws.max_column,
        n_rows=ws.max_row,
        geometry=worksheet_geometry(ws),
        values=values,
    )


def _load_xls(data: bytes) -> SheetModel:
    try:
        book = xlrd.open_workbook(file_contents=data, formatting_info=True)
    except (xlrd.XLRDError, CompDocError, struct.error, OSError, ValueError) as exc:
        logger.error("Legacy workbook failed to parse: %s", exc)
        raise DocumentLoadError(f"Unable to read xls workbook: {exc}") from exc
    if book.nsheets == 0:
        raise DocumentLoadError("Workbook has no worksheets.")
    sheet = book.sheet_by_index(0)

    values: Dict[Tuple[int, int], Any] = {}
    styles: Dict[Tuple[int, int], CellStyle] = {}
    for r in range(sheet.nrows):
        for c in range(sheet.ncols):
            cell = sheet.cell(r, c)
            if cell.ctype == xlrd.XL_CELL_EMPTY:
                continue
            style = _xls_style(book, cell.xf_index)
            if style is not None:
                styles[(c, r)] = style
            if cell.ctype == xlrd.XL_CELL_BLANK:
                continue
            value = cell.value
            if cell.ctype == xlrd.XL_CELL_DATE:
                value = xldate_as_datetime(value, book.datemode)
            elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                value = bool(value)
            elif cell.ctype == xlrd.XL_CELL_ERROR:
                value = error_text_from_code.get(value, "#ERR")
            values[(c, r)] = value

    widths = {
        col: info.width / XLS_WIDTH_UNITS_PER_CHAR * POINTS_PER_CHAR
        for col, info in sheet.colinfo_map.items()
        if info.width
    }
    heights = {
        row: info.height / TWIPS_PER_POINT
        for row, info in sheet.rowinfo_map.items()
        if info.height
    }
    merges = [
        MergeRange(clo, rlo, chi - 1, rhi - 1)
        for rlo, rhi, clo, chi in sheet.merged_cells
    ]
    default_width = (
        chars_to_points(sheet.defcolwidth) if sheet.defcolwidth else DEFAULT_COLUMN_WIDTH_POINTS
    )
    default_height = (
        sheet.default_row_height / TWIPS_PER_POINT
        if sheet.default_row_height
        else DEFAULT_ROW_HEIGHT_POINTS
    )
    return SheetModel(
        title=sheet.name,
        n_cols=max(sheet.ncols, 1),
        n_rows=max(sheet.nrows, 1),
        geometry=SheetGeometry(widths, heights, merges, default_width, default_height),
        values=values,
        styles=styles,
    )


def workbook_from_model(model: SheetModel) -> openpyxl.Workbook:
    """Rebuild a sheet model as an xlsx workbook (values, styles, merges and sizes)."""
    workbook = openpyxl.Workbook()
    ws = workbook.active
    ws.title = model.title[:31] or "Sheet1"
    for (col, row), value in model.values.items():
        ws.cell(row=row + 1, column=col + 1, value=value)
    for (col, row), style in model.styles.items():
        style.apply(ws.cell(row=row + 1, column=col + 1))
    for col, width in model.geometry.column_widths.items():
        ws.column_dimensions[column_letter(col)].width = width / POINTS_PER_CHAR
    for row, height in model.geometry.row_heights.items():
        ws.row_dimensions[row + 1].height = height
    for merge in model.merges:
        ws.merge_cells(str(merge))
    return workbook
