from __future__ import annotations

import io

import openpyxl
import pymupdf as fitz  # PyMuPDF
import pytest
from openpyxl.styles import Font
from PIL import ImageOps

from report_sig.config import StampSettings
from report_sig.errors import (
    DocumentLoadError,
    ImageDecodeError,
    UnsupportedDocumentTypeError,
)
from report_sig.fonts import BuiltinFontSource, FileFontSource, LoadedFont
from report_sig.models import (
    DocumentType,
    SignatureImage,
    SignaturePlacement,
    TextLabelPlacement,
)
from report_sig.preview import PdfPreview
from report_sig.runtime import PdfRuntime
from report_sig.stamping import PdfStamper, stamp_document, stamp_rect


class BrokenSource:
    name = "broken"

    def load(self) -> LoadedFont:
        raise RuntimeError("no such font")


class BogusBufferSource:
    """Measures fine but cannot be embedded."""

    name = "bogus"

    def load(self) -> LoadedFont:
        return LoadedFont(
            alias="BogusFont", font=fitz.Font("helv"), buffer=b"not a font", source=self.name
        )


@pytest.fixture
def settings():
    return StampSettings(font_sources=(), fallback_font=BuiltinFontSource())


@pytest.fixture
def signature(png_factory):
    # 400x160 px at the default 0.3 scale -> 120x48 pt
    return SignatureImage(png_factory(400, 160))


def _images(data: bytes, page: int = 0):
    with fitz.open(stream=data, filetype="pdf") as doc:
        return doc.load_page(page).get_image_info()


def _page_text(data: bytes, page: int = 0) -> str:
    with fitz.open(stream=data, filetype="pdf") as doc:
        return doc.load_page(page).get_text()


def test_stamp_rect_centers_on_bottom_left_point():
    rect = stamp_rect(792, 300, 400, 120, 48)

    assert tuple(rect) == (240, 368, 360, 416)
    # Same box in bottom-left space starts at (240, 376).
    assert 792 - rect.y1 == 376


def test_pdf_image_lands_centered_on_placement(pdf_bytes, signature, settings):
    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(x=300, y=400, page=1), signature, settings=settings
    )

    assert result.image_stamped
    assert not result.label_stamped
    assert result.content_type == "application/pdf"
    (info,) = _images(result.data)
    assert info["bbox"] == pytest.approx((240, 368, 360, 416), abs=0.01)


def test_pdf_stamps_requested_page_only(pdf_factory, signature, settings):
    result = stamp_document(
        pdf_factory(pages=3), DocumentType.PDF, SignaturePlacement(100, 100, page=2), signature,
        settings=settings,
    )

    assert len(_images(result.data, 0)) == 0
    assert len(_images(result.data, 1)) == 1
    assert len(_images(result.data, 2)) == 0


def test_out_of_range_page_stamps_nothing(pdf_bytes, signature, settings, caplog):
    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(300, 400, page=5), signature, name="Kim",
        settings=settings,
    )

    assert not result.image_stamped
    assert not result.label_stamped
    with fitz.open(stream=result.data, filetype="pdf") as doc:
        assert len(doc) == 1
    assert len(_images(result.data)) == 0
    assert "out of range" in caplog.text


def test_pdf_output_is_byte_deterministic(pdf_bytes, signature, settings):
    placement = SignaturePlacement(300, 400, page=1)
    label = TextLabelPlacement(300, 340, "Kim")

    first = stamp_document(pdf_bytes, "pdf", placement, signature, label=label, settings=settings)
    second = stamp_document(pdf_bytes, "pdf", placement, signature, label=label, settings=settings)

    assert first.data == second.data


def test_label_drawn_with_builtin_font_when_sources_missing(tmp_path, pdf_bytes, signature):
    settings = StampSettings(
        font_sources=(FileFontSource(tmp_path / "nope.ttf"),), fallback_font=BuiltinFontSource()
    )

    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(300, 400), signature,
        label=TextLabelPlacement(300, 340, "Inspector Kim"), settings=settings,
    )

    assert result.image_stamped and result.label_stamped
    assert [d.step for d in result.degradations] == ["builtin-fallback"]
    assert "Inspector Kim" in _page_text(result.data)


def test_unembeddable_font_retries_with_builtin(pdf_bytes, signature):
    settings = StampSettings(font_sources=(BogusBufferSource(),), fallback_font=BuiltinFontSource())

    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(300, 400), signature, name="Kim", settings=settings,
    )

    assert result.label_stamped
    assert [d.step for d in result.degradations] == ["draw-failed"]
    assert "Kim" in _page_text(result.data)


def test_label_still_drawn_when_no_font_resolves(pdf_bytes, signature):
    settings = StampSettings(font_sources=(BrokenSource(),), fallback_font=BrokenSource())

    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(300, 400), signature, name="Kim", settings=settings,
    )

    assert result.image_stamped and result.label_stamped
    assert [d.step for d in result.degradations] == [
        "builtin-fallback",
        "fallback-unavailable",
        "no-explicit-font",
    ]


def test_adjacent_label_sits_below_image(pdf_bytes, signature, settings):
    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(300, 400), signature, name="Kim", settings=settings,
    )

    with fitz.open(stream=result.data, filetype="pdf") as doc:
        (hit,) = doc.load_page(0).search_for("Kim")
    # The image spans y 368..416 in top-left space; the name is under it.
    assert 416 < (hit.y0 + hit.y1) / 2 < 445
    assert hit.x0 < 300 < hit.x1


def test_blank_label_text_is_skipped(pdf_bytes, signature, settings):
    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(300, 400), signature,
        label=TextLabelPlacement(1, 1, "   "), settings=settings,
    )

    assert result.image_stamped
    assert not result.label_stamped
    assert result.degradations == []



def test_out_of_range_page_skips_image_decode(pdf_bytes, settings):
    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(300, 400, page=9), SignatureImage(b"junk"),
        settings=settings,
    )

    assert not result.image_stamped
    assert _page_text(result.data) == _page_text(pdf_bytes)
    assert len(_images(result.data)) == 0


def _rotated_blank_pdf(rotation: int) -> bytes:
    doc = fitz.open()
    page = doc.new_page(width=612, height=792)
    page.set_rotation(rotation)
    data = doc.tobytes()
    doc.close()
    return data


def _ink_box(image):
    return ImageOps.invert(image.convert("L")).getbbox()


@pytest.mark.parametrize("rotation", [0, 90, 270])
def test_rotated_page_stamp_lands_under_click_upright(rotation, png_factory, settings):
    data = _rotated_blank_pdf(rotation)
    preview = PdfPreview(PdfRuntime())
    preview.load(data)
    raster = preview.render()
    click = (raster.width / 4, raster.height / 4)
    placement = preview.on_click(*click)
    preview.close()

    result = stamp_document(
        data, "pdf", placement, SignatureImage(png_factory(200, 100)), settings=settings
    )

    stamped = PdfPreview(PdfRuntime(), container_size=preview.container_size)
    stamped.load(result.data)
    left, top, right, bottom = _ink_box(stamped.render())
    stamped.close()
    assert (left + right) / 2 == pytest.approx(click[0], abs=2)
    assert (top + bottom) / 2 == pytest.approx(click[1], abs=2)
    # 200x100 px source stays wider than tall on screen.
    assert right - left > bottom - top


def test_hangul_label_with_embedded_font(tmp_path, pdf_bytes, signature):
    cjk = fitz.Font("cjk")
    if not cjk.buffer or not cjk.has_glyph(ord("홍")):
        pytest.skip("MuPDF build lacks the CJK fallback font")
    font_path = tmp_path / "cjk.ttf"
    font_path.write_bytes(cjk.buffer)
    settings = StampSettings(
        font_sources=(FileFontSource(font_path),), fallback_font=BuiltinFontSource()
    )

    result = stamp_document(
        pdf_bytes, "pdf", SignaturePlacement(300, 400), signature,
        label=TextLabelPlacement(300, 340, "홍길동"), settings=settings,
    )

    assert result.label_stamped
    assert result.degradations == []
    assert "홍길동" in _page_text(result.data)


def test_bad_image_is_fatal(pdf_bytes, settings):
    with pytest.raises(ImageDecodeError):
        stamp_document(
            pdf_bytes, "pdf", SignaturePlacement(1, 1), SignatureImage(b"junk"), settings=settings
        )


def test_bad_pdf_is_fatal(signature, settings):
    with pytest.raises(DocumentLoadError):
        PdfStamper(settings).stamp(b"not a pdf", SignaturePlacement(1, 1), signature)


def test_unknown_type_rejected_before_parsing(signature, settings):
    with pytest.raises(UnsupportedDocumentTypeError):
        stamp_document(b"", "docx", SignaturePlacement(1, 1), signature, settings=settings)


def _load(data: bytes):
    return openpyxl.load_workbook(io.BytesIO(data)).worksheets[0]


def _report(ws):
    ws["A1"] = "Inspection"
    ws["A2"] = "=1+1"
    ws["F35"].font = Font(italic=True, size=9)
    ws.merge_cells("F36:G36")


def test_sheet_image_anchored_at_located_cell(xlsx_factory, signature, settings):
    result = stamp_document(
        xlsx_factory(_report), "xlsx", SignaturePlacement(120, 40), signature, settings=settings
    )

    assert result.document_type is DocumentType.XLSX
    assert result.image_stamped
    ws = _load(result.data)
    (picture,) = ws._images
    assert (picture.anchor._from.col, picture.anchor._from.row) == (2, 2)
    assert ws["A2"].value == "=1+1"


def test_sheet_cell_address_overrides_coordinates(xlsx_factory, signature, settings):
    placement = SignaturePlacement(1, 1, cell_address="E10")

    result = stamp_document(xlsx_factory(_report), "xlsx", placement, signature, settings=settings)

    (picture,) = _load(result.data)._images
    assert (picture.anchor._from.col, picture.anchor._from.row) == (4, 9)


def test_sheet_name_written_below_image(xlsx_factory, signature, settings):
    result = stamp_document(
        xlsx_factory(_report), "xlsx", SignaturePlacement(120, 40), signature, name="Kim",
        settings=settings,
    )

    ws = _load(result.data)
    # 60 px = 45 pt of default 15 pt rows below C3.
    assert ws["C6"].value == "Kim"
    assert ws["C6"].font.b
    assert ws["C6"].alignment.horizontal == "center"
    assert result.label_stamped


def test_sheet_label_keeps_existing_style(xlsx_factory, signature, settings):
    label = TextLabelPlacement(0, 0, "Kim", cell_address="F35")

    result = stamp_document(
        xlsx_factory(_report), "xlsx", SignaturePlacement(120, 40), signature, label=label,
        settings=settings,
    )

    cell = _load(result.data)["F35"]
    assert cell.value == "Kim"
    assert cell.font.i
    assert cell.font.sz == 9


def test_sheet_label_never_overwrites_values(xlsx_factory, signature, settings):
    label = TextLabelPlacement(0, 0, "Kim", cell_address="A1")

    result = stamp_document(
        xlsx_factory(_report), "xlsx", SignaturePlacement(120, 40), signature, label=label,
        settings=settings,
    )

    assert not result.label_stamped
    assert _load(result.data)["A1"].value == "Inspection"


def test_sheet_label_inside_merge_goes_to_anchor(xlsx_factory, signature, settings):
    label = TextLabelPlacement(0, 0, "Kim", cell_address="G36")

    result = stamp_document(
        xlsx_factory(_report), "xlsx", SignaturePlacement(120, 40), signature, label=label,
        settings=settings,
    )

    ws = _load(result.data)
    assert result.label_stamped
    assert ws["F36"].value == "Kim"


def test_sheet_output_content_is_stable(xlsx_factory, signature, settings):
    data = xlsx_factory(_report)
    runs = [
        stamp_document(data, "xlsx", SignaturePlacement(120, 40), signature, name="Kim",
                       settings=settings)
        for _ in range(2)
    ]

    sheets = [_load(run.data) for run in runs]
    values = [[c.value for row in ws.iter_rows() for c in row] for ws in sheets]
    assert values[0] == values[1]
    assert len(sheets[0]._images) == len(sheets[1]._images) == 1


def test_bad_workbook_is_fatal(signature, settings):
    with pytest.raises(DocumentLoadError):
        stamp_document(b"not a zip", "xlsx", SignaturePlacement(1, 1), signature, settings=settings)


def test_xls_is_stamped_as_xlsx(signature, settings):
    xlwt = pytest.importorskip("xlwt")
    book = xlwt.Workbook()
    sheet = book.add_sheet("Legacy")
    sheet.write(0, 0, "Inspection")
    buf = io.BytesIO()
    book.save(buf)

    result = stamp_document(
        buf.getvalue(), "xls", SignaturePlacement(120, 40), signature, name="Kim",
        settings=settings,
    )

    assert result.document_type is DocumentType.XLSX
    ws = _load(result.data)
    assert ws.title == "Legacy"
    assert ws["A1"].value == "Inspection"
    assert len(ws._images) == 1


def test_xls_label_keeps_legacy_cell_style(signature, settings):
    xlwt = pytest.importorskip("xlwt")
    book = xlwt.Workbook()
    sheet = book.add_sheet("Legacy")
    sheet.write(0, 0, "Inspection")
    sheet.write(34, 5, "", xlwt.easyxf("font: italic on, height 180; align: horiz right"))
    buf = io.BytesIO()
    book.save(buf)

    result = stamp_document(
        buf.getvalue(), "xls", SignaturePlacement(120, 40), signature,
        label=TextLabelPlacement(0, 0, "Kim", cell_address="F35"), settings=settings,
    )

    cell = _load(result.data)["F35"]
    assert result.label_stamped
    assert cell.value == "Kim"
    assert cell.font.i and not cell.font.b
    assert cell.font.sz == 9
    assert cell.alignment.horizontal == "right"
