from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import pymupdf as fitz  # PyMuPDF

from .errors import DocumentLoadError


logger = logging.getLogger(__name__)


def _open_bytes(data: bytes) -> fitz.Document:
    return fitz.open(stream=data, filetype="pdf")


@dataclass(frozen=True)
class PdfRuntime:
    """Handle to the configured MuPDF engine.

    Created once by :func:`init_pdf_runtime` and handed to whatever needs to
    open or rasterize PDFs, instead of configuring the engine as a side
    effect of importing a module.
    """

    opener: Callable[[bytes], fitz.Document] = _open_bytes

    def open(self, data: bytes) -> fitz.Document:
        try:
            doc = self.opener(data)
        except Exception as exc:  # MuPDF raises several unrelated types
            logger.error("PDF failed to parse: %s", exc)
            raise DocumentLoadError(f"Unable to read PDF: {exc}") from exc
        if not getattr(doc, "is_pdf", True) or len(doc) == 0:
            doc.close()
            raise DocumentLoadError("Document is not a PDF with at least one page.")
        return doc


def init_pdf_runtime(
    anti_alias: int = 8,
    show_mupdf_errors: bool = False,
    opener: Callable[[bytes], fitz.Document] = _open_bytes,
) -> PdfRuntime:
    """Configure MuPDF's process-wide options and return the runtime handle.

    Call once at application start-up.
    """
    fitz.TOOLS.set_aa_level(anti_alias)
    fitz.TOOLS.mupdf_display_errors(show_mupdf_errors)
    logger.debug("MuPDF %s initialized (aa=%s)", fitz.VersionFitz, anti_alias)
    return PdfRuntime(opener=opener)
