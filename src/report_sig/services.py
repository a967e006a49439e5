from __future__ import annotations

from pathlib import Path
from typing import Protocol

from tkinter import filedialog, messagebox


DOCUMENT_FILETYPES = [
    ("Reports", "*.pdf *.xlsx *.xls"),
    ("PDF files", "*.pdf"),
    ("Excel workbooks", "*.xlsx *.xls"),
]


class FileDialogs(Protocol):
    def ask_open_document(self, parent) -> Path | None: ...

    def ask_save_document(self, parent, extension: str, initial_name: str) -> Path | None: ...

    def ask_image(self, parent) -> Path | None: ...


class MessageService(Protocol):
    def info(self, title: str, message: str) -> None: ...

    def error(self, title: str, message: str) -> None: ...


class DefaultFileDialogs:
    def ask_open_document(self, parent) -> Path | None:
        filename = filedialog.askopenfilename(
            title="Open report", filetypes=DOCUMENT_FILETYPES, parent=parent
        )
        return Path(filename) if filename else None

    def ask_save_document(self, parent, extension: str, initial_name: str) -> Path | None:
        filename = filedialog.asksaveasfilename(
            defaultextension=f".{extension}",
            initialfile=initial_name,
            filetypes=[(f"{extension.upper()} files", f"*.{extension}")],
            title="Save signed copy as",
            parent=parent,
        )
        return Path(filename) if filename else None

    def ask_image(self, parent) -> Path | None:
        filename = filedialog.askopenfilename(
            title="Select signature image",
            filetypes=[
                ("Image files", "*.png *.jpg *.jpeg *.bmp"),
                ("All files", "*.*"),
            ],
            parent=parent,
        )
        return Path(filename) if filename else None


class DefaultMessageService:
    def info(self, title: str, message: str) -> None:  # pragma: no cover - UI side effect
        messagebox.showinfo(title, message)

    def error(self, title: str, message: str) -> None:  # pragma: no cover - UI side effect
        messagebox.showerror(title, message)
