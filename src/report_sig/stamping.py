from __future__ import annotations

import io
import logging
from typing import List, Optional, Protocol, Tuple

import pymupdf as fitz  # PyMuPDF
from openpyxl.cell.cell import MergedCell
from openpyxl.drawing.image import Image as SheetImage
from openpyxl.styles import Alignment, Font
from openpyxl.styles.fonts import DEFAULT_FONT
from openpyxl.worksheet.worksheet import Worksheet

from .config import LABEL_GAP_POINTS, SHEET_LABEL_FONT_SIZE, StampSettings
from .errors import FontResolutionDegraded, InvalidPlacementError
from .fonts import FontResolver, LoadedFont
from .grid import SheetGeometry, format_address
from .models import (
    DocumentType,
    SignatureImage,
    SignaturePlacement,
    StampResult,
    TextLabelPlacement,
)
from .runtime import PdfRuntime
from .sheets import (
    first_worksheet,
    load_sheet,
    open_workbook,
    workbook_from_model,
    worksheet_geometry,
)


logger = logging.getLogger(__name__)

POINTS_PER_PIXEL = 0.75
TEXT_COLOR = (0, 0, 0)


class Stamper(Protocol):
    def stamp(
        self,
        data: bytes,
        placement: SignaturePlacement,
        image: SignatureImage,
        label: Optional[TextLabelPlacement] = None,
        name: Optional[str] = None,
    ) -> StampResult: ...


def stamp_rect(page_height: float, x: float, y: float, width: float, height: float) -> fitz.Rect:
    """Rectangle, in MuPDF's top-left space, of a stamp centered on a native point."""
    top = page_height - y - height / 2
    return fitz.Rect(x - width / 2, top, x + width / 2, top + height)


def label_baseline(
    page_height: float, x: float, y: float, width: float, font: LoadedFont, fontsize: float
) -> fitz.Point:
    """Baseline start that centers a run of text on a native point."""
    center_y = page_height - y
    shift = (font.font.ascender + font.font.descender) / 2 * fontsize
    return fitz.Point(x - width / 2, center_y + shift)


class PdfStamper:
    """Bakes a signature image and name label onto one page of a PDF copy."""

    def __init__(self, settings: StampSettings, runtime: Optional[PdfRuntime] = None) -> None:
        self.settings = settings
        self.runtime = runtime or PdfRuntime()
        self.resolver = FontResolver(settings.font_sources, settings.fallback_font)

    def stamp(
        self,
        data: bytes,
        placement: SignaturePlacement,
        image: SignatureImage,
        label: Optional[TextLabelPlacement] = None,
        name: Optional[str] = None,
    ) -> StampResult:
        doc = self.runtime.open(data)
        try:
            result = StampResult(data=b"", document_type=DocumentType.PDF)
            try:
                page = self._target_page(doc, placement)
            except InvalidPlacementError as exc:
                logger.warning("Signature not stamped: %s", exc)
                page = None

            if page is not None:
                png, (px_width, px_height) = image.to_png()
                width = px_width * self.settings.signature_scale
                height = px_height * self.settings.signature_scale
                rect = stamp_rect(page.rect.height, placement.x, placement.y, width, height)
                page.insert_image(
                    rect * page.derotation_matrix,
                    stream=png,
                    keep_proportion=False,
                    overlay=True,
                    rotate=page.rotation,
                )
                result.image_stamped = True

                text_label = label or self._adjacent_label(placement, height, name)
                if text_label and text_label.text.strip():
                    result.label_stamped = self._draw_label(page, text_label, result.degradations)

            result.data = doc.tobytes(garbage=3, deflate=True, no_new_id=True)
            return result
        finally:
            doc.close()

    @staticmethod
    def _target_page(doc: fitz.Document, placement: SignaturePlacement) -> fitz.Page:
        if not 1 <= placement.page <= len(doc):
            raise InvalidPlacementError(
                f"Page {placement.page} is out of range for document with {len(doc)} page(s)."
            )
        return doc.load_page(placement.page - 1)

    def _adjacent_label(
        self, placement: SignaturePlacement, image_height: float, name: Optional[str]
    ) -> Optional[TextLabelPlacement]:
        if not name:
            return None
        size = self.settings.label_font_size
        y = placement.y - image_height / 2 - LABEL_GAP_POINTS - size / 2
        return TextLabelPlacement(x=placement.x, y=max(y, size / 2), text=name)

    def _draw_label(
        self,
        page: fitz.Page,
        label: TextLabelPlacement,
        degradations: List[FontResolutionDegraded],
    ) -> bool:
        font, steps = self.resolver.resolve()
        degradations.extend(steps)

        candidates: List[LoadedFont] = [font] if font else []
        if font is None or font.embedded:
            fallback = self.resolver.load_fallback()
            if fallback:
                candidates.append(fallback)

        drawn = False
        for candidate in candidates:
            try:
                self._insert_text(page, label, candidate)
                drawn = True
                break
            except Exception as exc:
                degradations.append(
                    FontResolutionDegraded("draw-failed", f"{candidate.source}: {exc}")
                )

        if not drawn:
            drawn = self._insert_text_unstyled(page, label, degradations)

        for step in degradations:
            logger.warning("Font resolution degraded: %s", step)
        return drawn

    def _insert_text(self, page: fitz.Page, label: TextLabelPlacement, font: LoadedFont) -> None:
        size = self.settings.label_font_size
        if font.embedded:
            page.insert_font(fontname=font.alias, fontbuffer=font.buffer)
        width = font.text_length(label.text, size)
        point = label_baseline(page.rect.height, label.x, label.y, width, font, size)
        page.insert_text(
            point * page.derotation_matrix,
            label.text,
            fontname=font.alias,
            fontsize=size,
            color=TEXT_COLOR,
            overlay=True,
            rotate=page.rotation,
        )

    def _insert_text_unstyled(
        self,
        page: fitz.Page,
        label: TextLabelPlacement,
        degradations: List[FontResolutionDegraded],
    ) -> bool:
        size = self.settings.label_font_size
        approx_width = len(label.text) * size * 0.5
        point = fitz.Point(label.x - approx_width / 2, page.rect.height - label.y + size / 3)
        try:
            page.insert_text(
                point * page.derotation_matrix,
                label.text,
                fontsize=size,
                color=TEXT_COLOR,
                overlay=True,
                rotate=page.rotation,
            )
        except Exception as exc:
            degradations.append(FontResolutionDegraded("label-omitted", str(exc)))
            logger.error("Label %r omitted from page %d: %s", label.text, page.number + 1, exc)
            return False
        degradations.append(
            FontResolutionDegraded("no-explicit-font", "label drawn with the engine default font")
        )
        return True


class SpreadsheetStamper:
    """Anchors a signature image and writes a name label on the first sheet.

    Legacy xls input is rebuilt as an xlsx workbook before stamping.
    """

    def __init__(self, settings: StampSettings, source_type: DocumentType = DocumentType.XLSX) -> None:
        self.settings = settings
        self.source_type = source_type

    def stamp(
        self,
        data: bytes,
        placement: SignaturePlacement,
        image: SignatureImage,
        label: Optional[TextLabelPlacement] = None,
        name: Optional[str] = None,
    ) -> StampResult:
        if self.source_type is DocumentType.XLS:
            model = load_sheet(data, DocumentType.XLS)
            workbook = workbook_from_model(model)
            ws = first_worksheet(workbook)
            geometry = model.geometry
        else:
            workbook = open_workbook(data)
            ws = first_worksheet(workbook)
            geometry = worksheet_geometry(ws)
        png, _ = image.to_png()
        result = StampResult(data=b"", document_type=DocumentType.XLSX)

        col, row = self._resolve(geometry, placement.cell, placement.x, placement.y)
        width_px, height_px = self.settings.sheet_signature_size
        picture = SheetImage(io.BytesIO(png))
        picture.width, picture.height = width_px, height_px
        ws.add_image(picture, format_address(col, row))
        result.image_stamped = True

        if label is not None:
            text = label.text
            label_col, label_row = self._resolve(geometry, label.cell, label.x, label.y)
        else:
            text = name or ""
            label_col = col
            label_row = row + geometry.rows_covered(row, height_px * POINTS_PER_PIXEL)
        if text.strip():
            result.label_stamped = write_label(ws, label_col, label_row, text)

        buf = io.BytesIO()
        workbook.save(buf)
        result.data = buf.getvalue()
        return result

    @staticmethod
    def _resolve(
        geometry: SheetGeometry, cell: Optional[Tuple[int, int]], x: float, y: float
    ) -> Tuple[int, int]:
        return cell if cell is not None else geometry.locate(x, y)


def write_label(ws: Worksheet, col: int, row: int, text: str) -> bool:
    """Write ``text`` into an empty cell; occupied cells are left untouched.

    Existing font and alignment are kept; defaults (bold, centered) are only
    applied where the cell has none of its own.
    """
    cell = ws.cell(row=row + 1, column=col + 1)
    if isinstance(cell, MergedCell):
        for merged in ws.merged_cells.ranges:
            if cell.coordinate in merged:
                cell = ws.cell(row=merged.min_row, column=merged.min_col)
                break
    if cell.value not in (None, ""):
        logger.info("Label cell %s already holds a value; leaving it", cell.coordinate)
        return False
    cell.value = text
    if not cell.has_style or cell.font == DEFAULT_FONT:
        cell.font = Font(bold=True, size=SHEET_LABEL_FONT_SIZE)
    if cell.alignment == Alignment():
        cell.alignment = Alignment(horizontal="center", vertical="center")
    return True


def stamper_for(
    doc_type: DocumentType, settings: StampSettings, runtime: Optional[PdfRuntime] = None
) -> Stamper:
    if doc_type is DocumentType.PDF:
        return PdfStamper(settings, runtime)
    return SpreadsheetStamper(settings, doc_type)


def stamp_document(
    data: bytes,
    doc_type,
    placement: SignaturePlacement,
    image: SignatureImage,
    label: Optional[TextLabelPlacement] = None,
    name: Optional[str] = None,
    settings: Optional[StampSettings] = None,
    runtime: Optional[PdfRuntime] = None,
) -> StampResult:
    """Stamp a copy of ``data`` and return the new bytes.

    The declared type is checked before any parsing. Document and image
    failures propagate; label font problems only show up on
    ``StampResult.degradations``.
    """
    doc_type = DocumentType.parse(doc_type)
    stamper = stamper_for(doc_type, settings or StampSettings(), runtime)
    return stamper.stamp(data, placement, image, label=label, name=name)
