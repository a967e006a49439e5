from __future__ import annotations

import pytest

from report_sig.errors import DocumentLoadError
from report_sig.grid import DEFAULT_COLUMN_WIDTH_POINTS
from report_sig.models import DocumentType, SignaturePlacement
from report_sig.preview import PdfPreview, SpreadsheetPreview
from report_sig.runtime import PdfRuntime


@pytest.fixture
def pdf_preview(pdf_factory):
    preview = PdfPreview(PdfRuntime(), container_size=(800, 600))
    preview.load(pdf_factory(pages=3))
    yield preview
    preview.close()


def test_pdf_preview_navigation_ignores_out_of_range(pdf_preview):
    assert pdf_preview.page_count == 3

    pdf_preview.go_to_page(0)
    pdf_preview.go_to_page(4)
    assert pdf_preview.current_page == 1

    pdf_preview.prev_page()
    assert pdf_preview.current_page == 1
    pdf_preview.next_page()
    pdf_preview.next_page()
    pdf_preview.next_page()
    assert pdf_preview.current_page == 3


def test_click_before_render_is_rejected(pdf_preview):
    with pytest.raises(RuntimeError):
        pdf_preview.on_click(10, 10)


def test_click_maps_to_bottom_left_origin_points(pdf_preview):
    pdf_preview.next_page()
    image = pdf_preview.render()

    ctx = pdf_preview.scale_context
    assert image.size == (ctx.raster_width, ctx.raster_height)
    assert image.height <= 600

    top_left = pdf_preview.on_click(0, 0)
    assert top_left == SignaturePlacement(x=0, y=792, page=2)

    middle = pdf_preview.on_click(image.width / 2, image.height / 2)
    assert middle.x == pytest.approx(306)
    assert middle.y == pytest.approx(396)


def test_resize_and_page_change_invalidate_scale(pdf_preview):
    pdf_preview.render()
    pdf_preview.resize(400, 300)
    with pytest.raises(RuntimeError):
        pdf_preview.on_click(1, 1)

    pdf_preview.render()
    pdf_preview.next_page()
    with pytest.raises(RuntimeError):
        pdf_preview.on_click(1, 1)


def test_marker_position_only_on_its_page(pdf_preview):
    image = pdf_preview.render()
    placement = pdf_preview.on_click(120, 80)

    assert pdf_preview.marker_position(placement) == pytest.approx((120, 80))

    pdf_preview.next_page()
    pdf_preview.render()
    assert pdf_preview.marker_position(placement) is None
    assert image.width > 0


def test_label_at_uses_same_space(pdf_preview):
    pdf_preview.render()
    label = pdf_preview.label_at(0, 0, "Kim")

    assert (label.x, label.y, label.text) == (0, 792, "Kim")


def test_failed_load_leaves_preview_blank(pdf_preview):
    with pytest.raises(DocumentLoadError):
        pdf_preview.load(b"this is not a pdf")

    assert pdf_preview.doc is None
    assert pdf_preview.page_count == 0
    with pytest.raises(DocumentLoadError):
        pdf_preview.render()


def test_runtime_wraps_opener_failures():
    def broken(data):
        raise RuntimeError("cannot open")

    with pytest.raises(DocumentLoadError):
        PdfRuntime(opener=broken).open(b"%PDF")


def _merged_report(ws):
    ws["A1"] = "Inspection"
    ws["B5"] = "Inspector"
    ws["E6"] = "end"
    ws.merge_cells("B5:D5")


@pytest.fixture
def sheet_preview(xlsx_factory):
    preview = SpreadsheetPreview()
    preview.load(xlsx_factory(_merged_report), DocumentType.XLSX)
    return preview


def test_grid_skips_cells_covered_by_merge(sheet_preview):
    grid = sheet_preview.grid
    addresses = {cell.address for cell in grid.cells}

    assert "B5" in addresses
    assert "C5" not in addresses and "D5" not in addresses
    assert len(grid.cells) == 5 * 6 - 2

    merged = next(cell for cell in grid.cells if cell.address == "B5")
    assert merged.colspan == 3
    assert merged.width == pytest.approx(3 * DEFAULT_COLUMN_WIDTH_POINTS)


def test_grid_html_carries_spans_and_addresses(sheet_preview):
    markup = sheet_preview.grid.to_html()

    assert markup.startswith('<table id="sheet-preview"')
    assert '<td data-address="B5" colspan="3"' in markup
    assert ">Inspection</td>" in markup


def test_grid_html_keeps_rows_fully_covered_by_rowspan(xlsx_factory):
    def populate(ws):
        ws["A1"] = "Item"
        ws["B1"] = "Result"
        ws.merge_cells("A2:B3")

    preview = SpreadsheetPreview()
    grid = preview.load(xlsx_factory(populate), DocumentType.XLSX)
    markup = grid.to_html()

    assert markup.count("<tr>") == 3
    assert "<tr></tr>" in markup
    assert 'rowspan="2"' in markup


def test_oversized_sheet_renders_placeholder(xlsx_factory):
    preview = SpreadsheetPreview(max_cells=10)
    grid = preview.load(xlsx_factory(_merged_report), DocumentType.XLSX)

    assert grid.placeholder
    assert grid.cells == []
    assert grid.cell_count == 30
    assert 'class="sheet-placeholder"' in grid.to_html()
    # Clicks still resolve without a rendered grid.
    assert preview.on_click(120, 40).cell_address == "C3"


def test_click_resolves_to_cell_center(sheet_preview):
    placement = sheet_preview.on_click(120, 40)

    assert placement.cell_address == "C3"
    assert placement.page == 1
    assert placement.x == pytest.approx(2.5 * DEFAULT_COLUMN_WIDTH_POINTS)
    assert placement.y == pytest.approx(37.5)


def test_click_inside_merge_picks_sub_cell(sheet_preview):
    x0 = DEFAULT_COLUMN_WIDTH_POINTS
    width = 3 * DEFAULT_COLUMN_WIDTH_POINTS

    assert sheet_preview.on_click(x0 + 0.1 * width, 67).cell_address == "B5"
    assert sheet_preview.on_click(x0 + 0.9 * width, 67).cell_address == "D5"


def test_cell_click_by_fraction_of_rendered_element(sheet_preview):
    assert sheet_preview.cell_click("B5", 0.1, 0.5).cell_address == "B5"
    assert sheet_preview.cell_click("B5", 0.9, 0.5).cell_address == "D5"
    assert sheet_preview.cell_click("A1", 0.9, 0.9).cell_address == "A1"


def test_synthesized_point_uses_real_column_width(xlsx_factory):
    def populate(ws):
        ws["A1"] = "x"
        ws.column_dimensions["B"].width = 20

    preview = SpreadsheetPreview()
    preview.load(xlsx_factory(populate), DocumentType.XLSX)
    placement = preview.on_click(150, 5)

    assert placement.cell_address == "B1"
    assert placement.x == pytest.approx(DEFAULT_COLUMN_WIDTH_POINTS + 70.0)


def test_zoom_scales_screen_space(xlsx_factory):
    preview = SpreadsheetPreview(zoom=2.0)
    preview.load(xlsx_factory(_merged_report), DocumentType.XLSX)
    placement = preview.on_click(240, 80)

    assert placement.cell_address == "C3"
    center = preview.marker_position(placement)
    assert center == pytest.approx((placement.x * 2, placement.y * 2))


def test_sheet_label_carries_cell_address(sheet_preview):
    label = sheet_preview.label_at(10, 100, "Kim")

    assert label.cell_address == "A7"
    assert label.text == "Kim"


def test_spreadsheet_preview_without_workbook():
    preview = SpreadsheetPreview()

    assert preview.marker_position(SignaturePlacement(1, 1)) is None
    with pytest.raises(DocumentLoadError):
        preview.on_click(1, 1)
