from __future__ import annotations

import os
import pytest

if not os.environ.get("ENABLE_GUI_TESTS"):
    pytest.skip("GUI smoke test requires ENABLE_GUI_TESTS=1", allow_module_level=True)

tk = pytest.importorskip("tkinter")

from report_sig.capture import CapturedSignature
from report_sig.config import StampSettings
from report_sig.fonts import BuiltinFontSource
from report_sig.gui import ReportSigApp
from report_sig.models import DocumentType, SignatureImage, SignatureType


class DummyDialogs:
    def __init__(self, save_to=None):
        self.save_to = save_to
        self.save_requests = []

    def ask_open_document(self, parent):
        return None

    def ask_save_document(self, parent, extension, initial_name):
        self.save_requests.append((extension, initial_name))
        return self.save_to

    def ask_image(self, parent):
        return None


class DummyMessages:
    def __init__(self):
        self.infos = []
        self.errors = []

    def info(self, title: str, message: str) -> None:
        self.infos.append((title, message))

    def error(self, title: str, message: str) -> None:
        self.errors.append((title, message))


def _can_init_tk() -> bool:
    try:
        root = tk.Tk()
        root.destroy()
        return True
    except tk.TclError:
        return False


pytestmark = pytest.mark.skipif(not _can_init_tk(), reason="Tk not available in headless env")


def _app(dialogs=None, messages=None) -> ReportSigApp:
    return ReportSigApp(
        file_dialogs=dialogs or DummyDialogs(),
        messages=messages or DummyMessages(),
        settings=StampSettings(font_sources=(), fallback_font=BuiltinFontSource()),
    )


def test_gui_constructs_and_disposes_without_mainloop():
    messages = DummyMessages()
    app = _app(messages=messages)
    # Exercise a couple of menu callbacks without user interaction.
    app._show_about()
    app._save_signed()
    app.update_idletasks()
    app.destroy()

    assert messages.infos  # nothing to save yet
    assert app.winfo_exists() is False


def test_gui_places_and_saves_signed_pdf(tmp_path, pdf_bytes, png_bytes):
    target = tmp_path / "out_signed.pdf"
    dialogs = DummyDialogs(save_to=target)
    messages = DummyMessages()
    app = _app(dialogs, messages)
    try:
        app.update_idletasks()
        app.load_document(pdf_bytes, DocumentType.PDF)
        app.placement = app.pdf_preview.on_click(50, 50)
        app.set_signature(
            CapturedSignature(SignatureImage(png_bytes, SignatureType.UPLOAD), name="Kim")
        )
        app._save_signed()
    finally:
        app.destroy()

    assert messages.errors == []
    assert dialogs.save_requests == [("pdf", "report_signed.pdf")]
    assert target.read_bytes().startswith(b"%PDF")


def test_gui_name_label_uses_signer_name(tmp_path, pdf_bytes, png_bytes):
    import pymupdf as fitz  # PyMuPDF

    target = tmp_path / "out_signed.pdf"
    app = _app(DummyDialogs(save_to=target))
    try:
        app.update_idletasks()
        app.load_document(pdf_bytes, DocumentType.PDF)
        app.placement = app.pdf_preview.on_click(50, 50)
        app.label_placement = app.pdf_preview.label_at(50, 120, "Name")
        app.set_signature(
            CapturedSignature(SignatureImage(png_bytes, SignatureType.UPLOAD), name="Kim")
        )
        app._save_signed()
    finally:
        app.destroy()

    with fitz.open(target) as doc:
        text = doc.load_page(0).get_text()
    assert "Kim" in text
    assert "Name" not in text


def test_gui_canvas_scrolls_over_rendered_page(pdf_bytes):
    app = _app()
    try:
        app.update_idletasks()
        app.load_document(pdf_bytes, DocumentType.PDF)
        region = [float(v) for v in str(app.canvas.cget("scrollregion")).split()]
        yscroll = app.canvas.cget("yscrollcommand")
        xscroll = app.canvas.cget("xscrollcommand")
    finally:
        app.destroy()

    assert region[:2] == [0, 0]
    assert region[2] > 0 and region[3] > 0
    assert yscroll and xscroll
