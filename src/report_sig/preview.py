from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pymupdf as fitz  # PyMuPDF
from PIL import Image

from .config import DEFAULT_CONTAINER_SIZE, MAX_PREVIEW_CELLS, PIXELS_PER_POINT
from .errors import DocumentLoadError
from .grid import MergeRange, format_address, parse_address
from .layout import ScaleContext, auto_fit_scale
from .models import DocumentType, SignaturePlacement, TextLabelPlacement
from .runtime import PdfRuntime
from .sheets import SheetModel, load_sheet


logger = logging.getLogger(__name__)


class PdfPreview:
    """Page-addressable PDF preview that turns raster clicks into placements.

    Pages are 1-based. The scale context is rebuilt on every :meth:`render`
    and dropped on page changes and resizes, so clicks are only accepted
    against the raster that is actually on screen.
    """

    def __init__(
        self,
        runtime: PdfRuntime,
        container_size: Tuple[int, int] = DEFAULT_CONTAINER_SIZE,
    ) -> None:
        self.runtime = runtime
        self.container_size = container_size
        self.doc: Optional[fitz.Document] = None
        self.current_page: int = 1
        self.scale_context: Optional[ScaleContext] = None

    @property
    def page_count(self) -> int:
        return len(self.doc) if self.doc else 0

    def load(self, data: bytes) -> None:
        self.close()
        self.doc = self.runtime.open(data)
        self.current_page = 1

    def close(self) -> None:
        if self.doc:
            self.doc.close()
        self.doc = None
        self.current_page = 1
        self.scale_context = None

    def go_to_page(self, page: int) -> None:
        if self.doc and 1 <= page <= self.page_count and page != self.current_page:
            self.current_page = page
            self.scale_context = None

    def next_page(self) -> None:
        self.go_to_page(self.current_page + 1)

    def prev_page(self) -> None:
        self.go_to_page(self.current_page - 1)

    def resize(self, width: int, height: int) -> None:
        if (width, height) != self.container_size:
            self.container_size = (width, height)
            self.scale_context = None

    def page_rect(self) -> fitz.Rect:
        if not self.doc:
            raise DocumentLoadError("No PDF loaded.")
        return self.doc.load_page(self.current_page - 1).rect

    def render(self) -> Image.Image:
        """Rasterize the current page at the auto-fit scale."""
        if not self.doc:
            raise DocumentLoadError("No PDF loaded.")
        page = self.doc.load_page(self.current_page - 1)
        rect = page.rect
        scale = auto_fit_scale(*self.container_size, rect.width, rect.height)
        pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        self.scale_context = ScaleContext(rect.width, rect.height, pix.width, pix.height)
        return image

    def _to_native(self, screen_x: float, screen_y: float) -> Tuple[float, float]:
        if not self.scale_context:
            raise RuntimeError("Render the current page before resolving clicks.")
        return self.scale_context.to_native(screen_x, screen_y)

    def on_click(self, screen_x: float, screen_y: float) -> SignaturePlacement:
        x, y = self._to_native(screen_x, screen_y)
        return SignaturePlacement(x=x, y=y, page=self.current_page)

    def label_at(self, screen_x: float, screen_y: float, text: str) -> TextLabelPlacement:
        x, y = self._to_native(screen_x, screen_y)
        return TextLabelPlacement(x=x, y=y, text=text)

    def marker_position(self, placement, page: int = 0) -> Optional[Tuple[float, float]]:
        """Screen point of a placement's marker, or None when it is not on screen."""
        page = page or getattr(placement, "page", 1)
        if not self.scale_context or page != self.current_page:
            return None
        return self.scale_context.to_screen(placement.x, placement.y)


@dataclass(frozen=True)
class PreviewCell:
    col: int
    row: int
    text: str
    x: float
    y: float
    width: float
    height: float
    colspan: int = 1
    rowspan: int = 1

    @property
    def address(self) -> str:
        return format_address(self.col, self.row)


@dataclass
class PreviewGrid:
    title: str
    width: float
    height: float
    cells: List[PreviewCell] = field(default_factory=list)
    placeholder: bool = False
    cell_count: int = 0
    n_rows: int = 0

    def to_html(self, table_id: str = "sheet-preview") -> str:
        if self.placeholder:
            return (
                f'<p class="sheet-placeholder">{html.escape(self.title)}: '
                f"{self.cell_count} cells is too large to preview. "
                "Click positions still map to cells.</p>"
            )
        rows: Dict[int, List[PreviewCell]] = {}
        for cell in self.cells:
            rows.setdefault(cell.row, []).append(cell)
        out = [f'<table id="{html.escape(table_id)}" style="border-collapse:collapse">']
        for row in range(max([self.n_rows, *(r + 1 for r in rows)])):
            out.append("<tr>")
            for cell in rows.get(row, []):
                spans = ""
                if cell.colspan > 1:
                    spans += f' colspan="{cell.colspan}"'
                if cell.rowspan > 1:
                    spans += f' rowspan="{cell.rowspan}"'
                style = (
                    f"width:{cell.width * PIXELS_PER_POINT:.0f}px;"
                    f"height:{cell.height * PIXELS_PER_POINT:.0f}px"
                )
                out.append(
                    f'<td data-address="{cell.address}"{spans} style="{style}">'
                    f"{html.escape(cell.text)}</td>"
                )
            out.append("</tr>")
        out.append("</table>")
        return "".join(out)


class SpreadsheetPreview:
    """Grid preview of a workbook's first sheet with click-to-cell resolution.

    Screen space is the rendered grid at ``zoom`` (1.0 means one point per
    pixel), origin top-left of A1, so no axis inversion is involved.
    """

    def __init__(self, max_cells: int = MAX_PREVIEW_CELLS, zoom: float = 1.0) -> None:
        self.max_cells = max_cells
        self.zoom = zoom
        self.sheet: Optional[SheetModel] = None
        self.grid: Optional[PreviewGrid] = None

    def load(self, data: bytes, doc_type: DocumentType) -> PreviewGrid:
        self.sheet = None
        self.grid = None
        self.sheet = load_sheet(data, doc_type)
        self.grid = self.build_grid(self.sheet)
        return self.grid

    def build_grid(self, sheet: SheetModel) -> PreviewGrid:
        geometry = sheet.geometry
        col_offsets = _offsets(geometry.column_width, sheet.n_cols)
        row_offsets = _offsets(geometry.row_height, sheet.n_rows)
        grid = PreviewGrid(
            title=sheet.title,
            width=col_offsets[-1],
            height=row_offsets[-1],
            cell_count=sheet.cell_count,
            n_rows=sheet.n_rows,
        )
        if sheet.cell_count > self.max_cells:
            logger.info(
                "Sheet %r has %d cells (limit %d); rendering placeholder",
                sheet.title,
                sheet.cell_count,
                self.max_cells,
            )
            grid.placeholder = True
            return grid

        covered: Dict[Tuple[int, int], MergeRange] = {}
        for merge in sheet.merges:
            for r in range(merge.min_row, min(merge.max_row, sheet.n_rows - 1) + 1):
                for c in range(merge.min_col, min(merge.max_col, sheet.n_cols - 1) + 1):
                    covered[(c, r)] = merge

        for row in range(sheet.n_rows):
            for col in range(sheet.n_cols):
                merge = covered.get((col, row))
                if merge and (col, row) != merge.anchor:
                    continue
                colspan = min(merge.max_col, sheet.n_cols - 1) - col + 1 if merge else 1
                rowspan = min(merge.max_row, sheet.n_rows - 1) - row + 1 if merge else 1
                grid.cells.append(
                    PreviewCell(
                        col=col,
                        row=row,
                        text=sheet.display(col, row),
                        x=col_offsets[col],
                        y=row_offsets[row],
                        width=col_offsets[col + colspan] - col_offsets[col],
                        height=row_offsets[row + rowspan] - row_offsets[row],
                        colspan=colspan,
                        rowspan=rowspan,
                    )
                )
        return grid

    def resolve(self, x: float, y: float) -> Tuple[int, int]:
        """Native point -> the sub-cell the user meant, even inside a merge."""
        geometry = self._geometry()
        col, row = geometry.locate(x, y)
        merge = geometry.merge_at(col, row)
        if merge is None:
            return col, row
        x0, y0, x1, y1 = geometry.merge_box(merge)
        return geometry.subdivide(merge, (x - x0) / (x1 - x0), (y - y0) / (y1 - y0))

    def cell_click(self, address: str, fx: float, fy: float) -> SignaturePlacement:
        """Resolve a click reported relative to a rendered cell element.

        ``fx`` and ``fy`` are the click's fractions of the element's box; for
        a merged element they pick the covered sub-cell proportionally.
        """
        geometry = self._geometry()
        anchor = parse_address(address)
        merge = geometry.merge_at(*anchor)
        col, row = geometry.subdivide(merge, fx, fy) if merge else anchor
        return self._placement(col, row)

    def on_click(self, screen_x: float, screen_y: float) -> SignaturePlacement:
        col, row = self.resolve(*self._to_native(screen_x, screen_y))
        return self._placement(col, row)

    def label_at(self, screen_x: float, screen_y: float, text: str) -> TextLabelPlacement:
        col, row = self.resolve(*self._to_native(screen_x, screen_y))
        x, y = self._geometry().cell_center(col, row)
        return TextLabelPlacement(x=x, y=y, text=text, cell_address=format_address(col, row))

    def marker_position(self, placement, page: int = 1) -> Optional[Tuple[float, float]]:
        if not self.sheet:
            return None
        cell = placement.cell
        x, y = self._geometry().cell_center(*cell) if cell else (placement.x, placement.y)
        return x * self.zoom, y * self.zoom

    def _placement(self, col: int, row: int) -> SignaturePlacement:
        x, y = self._geometry().cell_center(col, row)
        return SignaturePlacement(x=x, y=y, page=1, cell_address=format_address(col, row))

    def _to_native(self, screen_x: float, screen_y: float) -> Tuple[float, float]:
        return max(screen_x / self.zoom, 0.0), max(screen_y / self.zoom, 0.0)

    def _geometry(self):
        if not self.sheet:
            raise DocumentLoadError("No workbook loaded.")
        return self.sheet.geometry


def _offsets(size_of, count: int) -> List[float]:
    offsets = [0.0]
    for index in range(count):
        offsets.append(offsets[-1] + size_of(index))
    return offsets
