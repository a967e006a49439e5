from __future__ import annotations


class ReportSigError(Exception):
    """Base class for every error raised by report_sig."""


class DocumentLoadError(ReportSigError, RuntimeError):
    """Raised when source bytes do not parse as the declared document type."""


class UnsupportedDocumentTypeError(ReportSigError, ValueError):
    """Raised when the declared document type is neither pdf nor a spreadsheet."""


class InvalidPlacementError(ReportSigError, ValueError):
    """Raised for placements that are malformed or do not fit the document.

    The PDF stamper treats an out-of-range page as "nothing to stamp"; every
    other use of this error is fatal.
    """


class ImageDecodeError(ReportSigError, ValueError):
    """Raised when signature image bytes cannot be decoded."""


class EmptySignatureError(ReportSigError, ValueError):
    """Raised when a capture is finalized without strokes or an uploaded file."""


class ReportNotSignedError(ReportSigError, ValueError):
    """Raised when a signed copy is requested for a report that was never signed."""


class FontResolutionDegraded(ReportSigError):
    """Record of a font fallback step taken while drawing a label.

    Never raised to callers. Instances are logged and collected on the
    stamp result.
    """

    def __init__(self, step: str, detail: str) -> None:
        super().__init__(f"{step}: {detail}")
        self.step = step
        self.detail = detail
