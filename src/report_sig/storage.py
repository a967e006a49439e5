from __future__ import annotations

import logging
import time
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Protocol

from .config import SIGNED_SUFFIX, SIGNED_URL_TTL_SECONDS, StampSettings
from .errors import DocumentLoadError, ReportNotSignedError
from .models import DocumentType, SignatureImage, SignedReport, StampResult
from .runtime import PdfRuntime
from .stamping import stamp_document


logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def read(self, path: str) -> bytes: ...

    def signed_url(self, path: str, expires_in: int = SIGNED_URL_TTL_SECONDS) -> str: ...


class LocalBlobStore:
    """Blob store over a directory; paths are POSIX-style keys below ``root``."""

    def __init__(self, root: Path, clock: Callable[[], float] = time.time) -> None:
        self.root = Path(root).resolve()
        self._clock = clock

    def _resolve(self, path: str) -> Path:
        target = (self.root / PurePosixPath(path)).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path {path!r} escapes the store root.")
        return target

    def read(self, path: str) -> bytes:
        try:
            return self._resolve(path).read_bytes()
        except OSError as exc:
            raise DocumentLoadError(f"Unable to read {path}: {exc}") from exc

    def write(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def signed_url(self, path: str, expires_in: int = SIGNED_URL_TTL_SECONDS) -> str:
        expires = int(self._clock() + expires_in)
        return f"{self._resolve(path).as_uri()}?expires={expires}"


def signed_filename(file_path: str, doc_type: DocumentType) -> str:
    stem = PurePosixPath(file_path).stem or "report"
    return f"{stem}{SIGNED_SUFFIX}.{doc_type.value}"


def render_signed_file(
    store: BlobStore,
    report: SignedReport,
    settings: Optional[StampSettings] = None,
    runtime: Optional[PdfRuntime] = None,
) -> StampResult:
    """Fetch a signed report's original file and return the stamped copy."""
    if not report.is_signed:
        raise ReportNotSignedError(f"Report file {report.file_path} has not been signed.")

    data = store.read(report.file_path)
    image = SignatureImage.from_data_url(report.signature_data, report.signature_type)

    if report.signature_position is None:
        logger.warning("Report %s has no signature position; returning original", report.file_path)
        image.open()
        result = StampResult(data=data, document_type=report.file_type)
    else:
        result = stamp_document(
            data,
            report.file_type,
            report.signature_position,
            image,
            label=report.text_position,
            name=report.signature_name,
            settings=settings,
            runtime=runtime,
        )
    result.filename = signed_filename(report.file_path, result.document_type)
    return result
