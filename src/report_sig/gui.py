from __future__ import annotations

import logging
import os
import sys
import tkinter as tk
import tkinter.font as tkfont
from pathlib import Path
from typing import Callable, Optional

import customtkinter as ctk
from PIL import ImageTk

from report_sig.capture import CapturedSignature, SignatureCapture, resolve_label
from report_sig.config import (
    APP_AUTHOR,
    APP_DESCRIPTION,
    APP_NAME,
    APP_VERSION,
    CAPTURE_CANVAS_SIZE,
    DEFAULT_CANVAS_BG,
    DEFAULT_RENDER_DEBOUNCE_MS,
    DEFAULT_STATUS_BG,
    StampSettings,
)
from report_sig.errors import EmptySignatureError, ImageDecodeError, ReportSigError
from report_sig.models import (
    DocumentType,
    SignaturePlacement,
    SignatureType,
    TextLabelPlacement,
)
from report_sig.preview import PdfPreview, SpreadsheetPreview
from report_sig.runtime import PdfRuntime, init_pdf_runtime
from report_sig.services import (
    DefaultFileDialogs,
    DefaultMessageService,
    FileDialogs,
    MessageService,
)
from report_sig.stamping import stamp_document
from report_sig.storage import signed_filename


ctk.set_appearance_mode("dark")
ctk.set_default_color_theme("dark-blue")

logger = logging.getLogger(__name__)

SIGNATURE_MARKER = "#e53935"
LABEL_MARKER = "#1f6aa5"
MARKER_RADIUS = 8
GRID_ORIGIN = 8


class SignatureDialog(ctk.CTkToplevel):
    """Draw or upload a signature and enter the signer's name."""

    def __init__(
        self,
        master,
        file_dialogs: FileDialogs,
        messages: MessageService,
        on_save: Callable[[CapturedSignature], None],
    ) -> None:
        super().__init__(master)
        self.title("Add signature")
        self.resizable(False, False)
        self.transient(master)
        self.file_dialogs = file_dialogs
        self.messages = messages
        self.on_save = on_save
        self.capture = SignatureCapture()
        self._last_point: Optional[tuple[float, float]] = None

        self.mode_switch = ctk.CTkSegmentedButton(
            self, values=["Draw", "Upload"], command=self._switch_mode
        )
        self.mode_switch.set("Draw")
        self.mode_switch.pack(padx=16, pady=(16, 8))

        width, height = CAPTURE_CANVAS_SIZE
        self.pad = tk.Canvas(self, width=width, height=height, bg="white", highlightthickness=0)
        self.pad.pack(padx=16, pady=8)
        self.pad.bind("<ButtonPress-1>", self._pointer_down)
        self.pad.bind("<B1-Motion>", self._pointer_move)
        self.pad.bind("<ButtonRelease-1>", self._pointer_up)

        row = ctk.CTkFrame(self, fg_color="transparent")
        row.pack(fill=tk.X, padx=16)
        self.clear_button = ctk.CTkButton(row, text="Clear", width=100, command=self._clear)
        self.clear_button.pack(side=tk.LEFT)
        self.upload_button = ctk.CTkButton(
            row, text="Choose image...", width=140, command=self._choose_image, state="disabled"
        )
        self.upload_button.pack(side=tk.LEFT, padx=8)

        self.name_entry = ctk.CTkEntry(self, placeholder_text="Signer name (optional)", width=width)
        self.name_entry.pack(padx=16, pady=8)

        buttons = ctk.CTkFrame(self, fg_color="transparent")
        buttons.pack(pady=(4, 16))
        ctk.CTkButton(buttons, text="Cancel", width=100, command=self.destroy).pack(
            side=tk.LEFT, padx=6
        )
        ctk.CTkButton(buttons, text="Save signature", width=140, command=self._save).pack(
            side=tk.LEFT, padx=6
        )
        self._upload_photo: Optional[ImageTk.PhotoImage] = None

    def _switch_mode(self, value: str) -> None:
        mode = SignatureType.DRAW if value == "Draw" else SignatureType.UPLOAD
        self.capture.set_mode(mode)
        self.pad.delete("all")
        self._upload_photo = None
        self.clear_button.configure(state="normal" if mode is SignatureType.DRAW else "disabled")
        self.upload_button.configure(state="normal" if mode is SignatureType.UPLOAD else "disabled")

    def _pointer_down(self, event: tk.Event) -> None:
        if self.capture.mode is not SignatureType.DRAW:
            return
        self.capture.pad.pointer_down(event.x, event.y)
        self._last_point = (event.x, event.y)

    def _pointer_move(self, event: tk.Event) -> None:
        if self.capture.mode is not SignatureType.DRAW or self._last_point is None:
            return
        self.capture.pad.pointer_move(event.x, event.y)
        self.pad.create_line(
            *self._last_point, event.x, event.y, width=2, capstyle=tk.ROUND, smooth=True
        )
        self._last_point = (event.x, event.y)

    def _pointer_up(self, _event: tk.Event) -> None:
        self.capture.pad.pointer_up()
        self._last_point = None

    def _clear(self) -> None:
        self.capture.pad.clear()
        self.pad.delete("all")

    def _choose_image(self) -> None:
        path = self.file_dialogs.ask_image(self)
        if not path:
            return
        try:
            image = self.capture.load_upload(path)
        except (ImageDecodeError, OSError):
            self.messages.error("Error", "Unable to open that image file.")
            return
        preview = image.open()
        preview.thumbnail(CAPTURE_CANVAS_SIZE)
        self._upload_photo = ImageTk.PhotoImage(preview)
        self.pad.delete("all")
        self.pad.create_image(0, 0, image=self._upload_photo, anchor="nw")

    def _save(self) -> None:
        self.capture.name = self.name_entry.get()
        try:
            captured = self.capture.finalize()
        except EmptySignatureError as exc:
            self.messages.error("Signature required", str(exc))
            return
        self.on_save(captured)
        self.destroy()


class ReportSigApp(ctk.CTk):
    def __init__(
        self,
        file_dialogs: FileDialogs | None = None,
        messages: MessageService | None = None,
        runtime: PdfRuntime | None = None,
        settings: StampSettings | None = None,
    ) -> None:
        super().__init__()
        self.title(APP_NAME)
        try:
            self.tk.call("tk", "appname", APP_NAME)
        except tk.TclError:
            pass  # platform without appname support
        self.geometry("1000x1100")

        self.file_dialogs = file_dialogs or DefaultFileDialogs()
        self.messages = messages or DefaultMessageService()
        self.runtime = runtime or init_pdf_runtime()
        self.settings = settings or StampSettings.from_env()
        self.pdf_preview = PdfPreview(self.runtime)
        self.sheet_preview = SpreadsheetPreview()

        self.doc_type: Optional[DocumentType] = None
        self.source_bytes: Optional[bytes] = None
        self.source_path: Optional[Path] = None
        self.placement: Optional[SignaturePlacement] = None
        self.label_placement: Optional[TextLabelPlacement] = None
        self.captured: Optional[CapturedSignature] = None

        self.page_photo: Optional[ImageTk.PhotoImage] = None
        self._about_window: Optional[ctk.CTkToplevel] = None
        self._render_job: Optional[str] = None
        self.status_var = tk.StringVar(value="Open a PDF or Excel report to get started.")

        self._build_ui()

    # Tk helpers --------------------------------------------------------------
    def winfo_exists(self) -> bool:  # type: ignore[override]
        """Return False instead of raising if the Tk app has already been destroyed."""
        try:
            return bool(super().winfo_exists())
        except tk.TclError:
            return False

    # UI setup -----------------------------------------------------------------
    def _build_ui(self) -> None:
        self._configure_menu_fonts()
        self._build_menu()

        toolbar = ctk.CTkFrame(self, fg_color="transparent")
        toolbar.pack(fill=tk.X, padx=12, pady=12)
        button_kwargs = {"corner_radius": 8, "height": 36, "width": 150}
        self.open_button = ctk.CTkButton(
            toolbar, text="Open Report", command=self._open_document, **button_kwargs
        )
        self.open_button.pack(side=tk.LEFT, padx=6)
        self.sign_button = ctk.CTkButton(
            toolbar,
            text="Add Signature",
            command=self._open_signature_dialog,
            state=tk.DISABLED,
            **button_kwargs,
        )
        self.sign_button.pack(side=tk.LEFT, padx=6)
        self.save_button = ctk.CTkButton(
            toolbar,
            text="Save Signed Copy",
            command=self._save_signed,
            state=tk.DISABLED,
            **button_kwargs,
        )
        self.save_button.pack(side=tk.LEFT, padx=6)
        self.mode_switch = ctk.CTkSegmentedButton(toolbar, values=["Signature", "Name"])
        self.mode_switch.set("Signature")
        self.mode_switch.pack(side=tk.RIGHT, padx=6)

        canvas_frame = ctk.CTkFrame(self, corner_radius=12)
        canvas_frame.pack(fill=tk.BOTH, expand=True, padx=12, pady=(0, 12))
        self.canvas = tk.Canvas(
            canvas_frame,
            bg=DEFAULT_CANVAS_BG,
            highlightthickness=0,
            bd=0,
        )
        self.v_scroll = ctk.CTkScrollbar(
            canvas_frame, orientation="vertical", command=self.canvas.yview
        )
        self.h_scroll = ctk.CTkScrollbar(
            canvas_frame, orientation="horizontal", command=self.canvas.xview
        )
        self.canvas.configure(yscrollcommand=self.v_scroll.set, xscrollcommand=self.h_scroll.set)
        self.v_scroll.pack(side=tk.RIGHT, fill=tk.Y, pady=8)
        self.h_scroll.pack(side=tk.BOTTOM, fill=tk.X, padx=8)
        self.canvas.pack(side=tk.LEFT, fill=tk.BOTH, expand=True, padx=8, pady=8)
        self.canvas.bind("<Button-1>", self._handle_canvas_click)
        self.canvas.bind("<Configure>", self._handle_canvas_resize)

        nav = ctk.CTkFrame(self, fg_color="transparent")
        nav.pack(fill=tk.X, padx=12, pady=(0, 6))
        nav_button_kwargs = {"height": 34, "width": 90, "corner_radius": 6}
        self.prev_button = ctk.CTkButton(
            nav, text="◀ Prev", command=self._prev_page, state=tk.DISABLED, **nav_button_kwargs
        )
        self.prev_button.pack(side=tk.LEFT)
        self.next_button = ctk.CTkButton(
            nav, text="Next ▶", command=self._next_page, state=tk.DISABLED, **nav_button_kwargs
        )
        self.next_button.pack(side=tk.LEFT, padx=5)
        self.page_label = ctk.CTkLabel(nav, text="No report loaded", anchor="w")
        self.page_label.pack(side=tk.LEFT, padx=16)

        status_bar = ctk.CTkFrame(self, fg_color=DEFAULT_STATUS_BG, corner_radius=0)
        status_bar.pack(fill=tk.X)
        ctk.CTkLabel(
            status_bar,
            textvariable=self.status_var,
            anchor="w",
            font=ctk.CTkFont(size=13),
        ).pack(fill=tk.X, padx=10, pady=6)

    def _configure_menu_fonts(self) -> None:
        """Increase Tk's menu font so File/Help entries stay readable on Windows."""
        target_size = 24 if sys.platform.startswith("win") else 12
        try:
            base = tkfont.nametofont("TkMenuFont").copy()
        except tk.TclError:
            base = tkfont.Font(family="Segoe UI", size=target_size)
        if base.cget("size") < target_size:
            base.configure(size=target_size)
        self._menu_font = base
        try:
            self.option_add("*Menu*Font", self._menu_font)
        except tk.TclError:
            pass

    def _build_menu(self) -> None:
        font = self._menu_font
        menubar = tk.Menu(self, tearoff=0, font=font)
        item_kwargs = {
            "font": font,
            "bg": "#1e1e1e",
            "fg": "#e0e0e0",
            "activebackground": "#2a2a2a",
            "activeforeground": "#ffffff",
            "tearoff": 0,
        }
        file_menu = tk.Menu(menubar, **item_kwargs)
        file_menu.add_command(label="Open...", command=self._open_document, font=font)
        file_menu.add_command(
            label="Save Signed Copy...",
            command=self._save_signed,
            state=tk.DISABLED,
            font=font,
        )
        file_menu.add_separator()
        file_menu.add_command(label="Exit", command=self.destroy, font=font)
        menubar.add_cascade(label="File", menu=file_menu, font=font)
        help_menu = tk.Menu(menubar, **item_kwargs)
        help_menu.add_command(label="About", command=self._show_about, font=font)
        menubar.add_cascade(label="Help", menu=help_menu, font=font)
        self.configure(menu=menubar)
        self._file_menu = file_menu

    # Document actions ---------------------------------------------------------
    def _open_document(self) -> None:
        filename = self.file_dialogs.ask_open_document(self)
        if not filename:
            return
        self._close_document()
        try:
            doc_type = DocumentType.parse(filename.suffix)
            data = filename.read_bytes()
            self.load_document(data, doc_type)
        except (ReportSigError, OSError) as exc:
            self._close_document()
            logger.warning("Could not open %s: %s", filename, exc)
            self.messages.error("Error", f"Unable to open that report:\n{exc}")
            return
        self.source_path = filename

    def load_document(self, data: bytes, doc_type: DocumentType) -> None:
        if doc_type is DocumentType.PDF:
            self.pdf_preview.load(data)
        else:
            self.sheet_preview.load(data, doc_type)
        self.doc_type = doc_type
        self.source_bytes = data
        self.sign_button.configure(state="normal")
        multi_page = doc_type is DocumentType.PDF and self.pdf_preview.page_count > 1
        self.prev_button.configure(state="normal" if multi_page else "disabled")
        self.next_button.configure(state="normal" if multi_page else "disabled")
        self.status_var.set("Click the preview where the signature should go.")
        self._render()

    def _close_document(self) -> None:
        self.pdf_preview.close()
        self.sheet_preview = SpreadsheetPreview()
        self.doc_type = None
        self.source_bytes = None
        self.source_path = None
        self.placement = None
        self.label_placement = None
        self.sign_button.configure(state="disabled")
        self._update_save_state()
        self.prev_button.configure(state="disabled")
        self.next_button.configure(state="disabled")
        self.status_var.set("Open a PDF or Excel report to get started.")

    def _update_save_state(self) -> None:
        ready = bool(self.source_bytes and self.placement and self.captured)
        state = "normal" if ready else "disabled"
        self.save_button.configure(state=state)
        self._file_menu.entryconfig("Save Signed Copy...", state=state)

    def _save_signed(self) -> None:
        if not (self.source_bytes and self.placement and self.captured and self.doc_type):
            self.messages.info("Nothing to save", "Place and add a signature first.")
            return
        output_type = DocumentType.PDF if self.doc_type is DocumentType.PDF else DocumentType.XLSX
        initial = signed_filename(
            self.source_path.name if self.source_path else "report", output_type
        )
        filename = self.file_dialogs.ask_save_document(self, output_type.value, initial)
        if not filename:
            return
        label = resolve_label(self.captured.name, preset=self.label_placement)
        try:
            result = stamp_document(
                self.source_bytes,
                self.doc_type,
                self.placement,
                self.captured.image,
                label=label,
                name=self.captured.name,
                settings=self.settings,
                runtime=self.runtime,
            )
            filename.write_bytes(result.data)
        except (ReportSigError, OSError) as exc:
            self.messages.error("Error", f"Could not save signed copy:\n{exc}")
            return
        logger.info("Saved signed copy to %s", filename)
        if result.degradations:
            self.status_var.set("Saved. The name label used a fallback font.")
        else:
            self.status_var.set("Signed copy saved.")
        self._show_saved_dialog(filename)

    def _open_saved_file(self, filename: Path) -> None:
        """Open a file with the platform's default viewer."""
        try:
            if sys.platform == "darwin":
                os.spawnlp(os.P_NOWAIT, "open", "open", str(filename))
            elif sys.platform.startswith("win"):
                os.startfile(str(filename))  # type: ignore[attr-defined]
            else:
                os.spawnlp(os.P_NOWAIT, "xdg-open", "xdg-open", str(filename))
        except OSError:
            self.messages.error(
                "Unable to open file",
                f"Saved to {filename}, but the file could not be opened automatically.",
            )

    def _show_saved_dialog(self, filename: Path) -> None:
        dialog = ctk.CTkToplevel(self)
        dialog.title("Saved")
        dialog.geometry("360x150")
        dialog.resizable(False, False)
        dialog.transient(self)

        ctk.CTkLabel(
            dialog,
            text=f"Saved signed copy to\n{filename}",
            justify="center",
            wraplength=320,
        ).pack(pady=(20, 10), padx=16)

        btn_frame = ctk.CTkFrame(dialog, fg_color="transparent")
        btn_frame.pack(pady=(0, 16))
        ctk.CTkButton(
            btn_frame,
            text="Open",
            width=100,
            command=lambda: (self._open_saved_file(filename), dialog.destroy()),
        ).pack(side=tk.LEFT, padx=6)
        ctk.CTkButton(btn_frame, text="Close", width=100, command=dialog.destroy).pack(
            side=tk.LEFT, padx=6
        )
        dialog.protocol("WM_DELETE_WINDOW", dialog.destroy)

    # Signature capture --------------------------------------------------------
    def _open_signature_dialog(self) -> None:
        SignatureDialog(self, self.file_dialogs, self.messages, self.set_signature)

    def set_signature(self, captured: CapturedSignature) -> None:
        self.captured = captured
        self._update_save_state()
        self.status_var.set("Signature captured. Save the signed copy when ready.")

    # Preview ------------------------------------------------------------------
    def _render(self) -> None:
        if self._render_job:
            self.after_cancel(self._render_job)
            self._render_job = None

        self.canvas.delete("all")
        if self.doc_type is None:
            self.page_label.configure(text="No report loaded")
            self.canvas.create_text(
                self.canvas.winfo_width() / 2,
                self.canvas.winfo_height() / 2,
                text="Open a report to preview it here.",
                fill="#bbbbbb",
                font=("Segoe UI", 16),
            )
            return

        if self.doc_type is DocumentType.PDF:
            self._render_pdf()
        else:
            self._render_sheet()
        self._draw_markers()

    def _render_pdf(self) -> None:
        self.pdf_preview.resize(
            max(100, self.canvas.winfo_width()), max(100, self.canvas.winfo_height())
        )
        image = self.pdf_preview.render()
        self.page_photo = ImageTk.PhotoImage(image)
        self.canvas.create_image(0, 0, image=self.page_photo, anchor="nw")
        self.canvas.configure(scrollregion=(0, 0, image.width, image.height))
        self.page_label.configure(
            text=f"Page {self.pdf_preview.current_page} / {self.pdf_preview.page_count}"
        )

    def _render_sheet(self) -> None:
        grid = self.sheet_preview.grid
        zoom = self.sheet_preview.zoom
        self.page_label.configure(text=f"Sheet: {grid.title} (first sheet only)")
        self.canvas.configure(scrollregion=(0, 0, grid.width * zoom, grid.height * zoom))
        if grid.placeholder:
            self.canvas.create_text(
                GRID_ORIGIN,
                GRID_ORIGIN,
                anchor="nw",
                text=f"{grid.cell_count} cells is too large to preview.\n"
                "Clicks still map to cells.",
                fill="#bbbbbb",
            )
            return
        for cell in grid.cells:
            x0, y0 = cell.x * zoom, cell.y * zoom
            x1, y1 = x0 + cell.width * zoom, y0 + cell.height * zoom
            self.canvas.create_rectangle(x0, y0, x1, y1, fill="white", outline="#cccccc")
            if cell.text:
                self.canvas.create_text(
                    x0 + 3, (y0 + y1) / 2, text=cell.text, anchor="w", fill="#111111"
                )

    def _draw_markers(self) -> None:
        preview = self._active_preview()
        page = self.placement.page if self.placement else 1
        for placement, color in (
            (self.placement, SIGNATURE_MARKER),
            (self.label_placement, LABEL_MARKER),
        ):
            if placement is None:
                continue
            point = preview.marker_position(placement, page)
            if point is None:
                continue
            x, y = point
            self.canvas.create_oval(
                x - MARKER_RADIUS,
                y - MARKER_RADIUS,
                x + MARKER_RADIUS,
                y + MARKER_RADIUS,
                fill=color,
                outline="white",
                width=2,
            )

    def _active_preview(self):
        return self.pdf_preview if self.doc_type is DocumentType.PDF else self.sheet_preview

    def _handle_canvas_click(self, event: tk.Event) -> None:  # type: ignore[override]
        if self.doc_type is None:
            return
        preview = self._active_preview()
        x, y = self.canvas.canvasx(event.x), self.canvas.canvasy(event.y)
        try:
            if self.mode_switch.get() == "Name":
                name = self.captured.name if self.captured and self.captured.name else "Name"
                self.label_placement = preview.label_at(x, y, name)
                where = self.label_placement.cell_address or (
                    f"({self.label_placement.x:.0f}, {self.label_placement.y:.0f})"
                )
                self.status_var.set(f"Name label will go at {where}.")
            else:
                self.placement = preview.on_click(x, y)
                where = self.placement.cell_address or (
                    f"({self.placement.x:.0f}, {self.placement.y:.0f}) on page {self.placement.page}"
                )
                self.status_var.set(f"Signature will go at {where}.")
        except RuntimeError:
            # Raster is stale (resize pending); the next render accepts clicks again.
            return
        self._update_save_state()
        self._render()

    def _prev_page(self) -> None:
        self.pdf_preview.prev_page()
        self._render()

    def _next_page(self) -> None:
        self.pdf_preview.next_page()
        self._render()

    def _handle_canvas_resize(self, _event: tk.Event) -> None:  # type: ignore[override]
        if self._render_job:
            self.after_cancel(self._render_job)
        self._render_job = self.after(DEFAULT_RENDER_DEBOUNCE_MS, self._render)

    # Help menu --------------------------------------------------------------
    def _show_about(self) -> None:
        if self._about_window and self._about_window.winfo_exists():
            self._about_window.lift()
            self._about_window.focus_force()
            return

        about = ctk.CTkToplevel(self)
        about.title("About")
        about.geometry("440x260")
        about.resizable(False, False)
        about.transient(self)
        self._about_window = about

        heading_font = ctk.CTkFont(size=20, weight="bold")
        ctk.CTkLabel(about, text=APP_NAME, font=heading_font).pack(pady=(18, 6))
        ctk.CTkLabel(about, text=f"Version {APP_VERSION}").pack()
        ctk.CTkLabel(about, text=f"Developer: {APP_AUTHOR}").pack(pady=(2, 12))
        ctk.CTkLabel(
            about,
            text=APP_DESCRIPTION,
            wraplength=380,
            justify="center",
        ).pack(padx=16, pady=(0, 16))

        def handle_close() -> None:
            self._about_window = None
            about.destroy()

        ctk.CTkButton(about, text="Close", command=handle_close, width=100).pack(pady=(4, 16))
        about.protocol("WM_DELETE_WINDOW", handle_close)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = ReportSigApp()
    app.mainloop()


if __name__ == "__main__":
    main()
