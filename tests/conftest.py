from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest


# Ensure the src/ directory is importable when running tests without
# installing the package in editable mode.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def make_pdf(pages: int = 1, width: float = 612, height: float = 792) -> bytes:
    import pymupdf as fitz

    doc = fitz.open()
    for index in range(pages):
        page = doc.new_page(width=width, height=height)
        page.insert_text((72, 72), f"Inspection report page {index + 1}", fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def make_png(width: int = 400, height: int = 160, color=(0, 0, 0, 255)) -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def pdf_bytes() -> bytes:
    return make_pdf()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def xlsx_factory():
    def build(populate=None) -> bytes:
        import openpyxl

        workbook = openpyxl.Workbook()
        ws = workbook.active
        ws.title = "Report"
        if populate:
            populate(ws)
        buf = io.BytesIO()
        workbook.save(buf)
        return buf.getvalue()

    return build
