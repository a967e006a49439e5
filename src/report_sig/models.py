from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .errors import (
    FontResolutionDegraded,
    ImageDecodeError,
    InvalidPlacementError,
    UnsupportedDocumentTypeError,
)
from .grid import format_address, parse_address


class DocumentType(str, Enum):
    PDF = "pdf"
    XLSX = "xlsx"
    XLS = "xls"

    @classmethod
    def parse(cls, tag: Any) -> "DocumentType":
        if isinstance(tag, cls):
            return tag
        normalized = str(tag or "").strip().lower().lstrip(".")
        try:
            return cls(normalized)
        except ValueError:
            raise UnsupportedDocumentTypeError(
                f"Unsupported document type {tag!r}; expected pdf, xlsx or xls."
            ) from None

    @property
    def is_spreadsheet(self) -> bool:
        return self is not DocumentType.PDF

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self]


CONTENT_TYPES = {
    DocumentType.PDF: "application/pdf",
    DocumentType.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    DocumentType.XLS: "application/vnd.ms-excel",
}


class SignatureType(str, Enum):
    DRAW = "draw"
    UPLOAD = "upload"


def _number(record: Mapping[str, Any], key: str, kind=float):
    if key not in record or record[key] is None:
        raise InvalidPlacementError(f"Placement record is missing {key!r}.")
    value = record[key]
    if isinstance(value, bool):
        raise InvalidPlacementError(f"Placement field {key!r} must be a number.")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise InvalidPlacementError(
            f"Placement field {key!r} must be a number, got {value!r}."
        ) from None


def _cell_address(record: Mapping[str, Any]) -> Optional[str]:
    value = record.get("cellAddress", record.get("cell_address"))
    return value or None


@dataclass(frozen=True)
class SignaturePlacement:
    """Document-native position of the signature image center.

    PDF: points from the bottom-left of ``page``. Spreadsheet: points from
    the top-left of A1 on the first sheet, with ``cell_address`` as the
    ground truth and ``page`` always 1.
    """

    x: float
    y: float
    page: int = 1
    cell_address: Optional[str] = None

    def __post_init__(self) -> None:
        if self.x < 0 or self.y < 0:
            raise InvalidPlacementError(
                f"Placement ({self.x}, {self.y}) has a negative coordinate."
            )
        if self.page < 1:
            raise InvalidPlacementError(f"Page {self.page} is not a 1-based page number.")
        if self.cell_address is not None:
            col, row = parse_address(self.cell_address)
            object.__setattr__(self, "cell_address", format_address(col, row))

    @property
    def cell(self) -> Optional[Tuple[int, int]]:
        return parse_address(self.cell_address) if self.cell_address else None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SignaturePlacement":
        if not isinstance(record, Mapping):
            raise InvalidPlacementError("Placement record must be a mapping.")
        return cls(
            x=_number(record, "x"),
            y=_number(record, "y"),
            page=_number(record, "page", int),
            cell_address=_cell_address(record),
        )

    def to_record(self) -> dict:
        record = {"x": self.x, "y": self.y, "page": self.page}
        if self.cell_address:
            record["cellAddress"] = self.cell_address
        return record


@dataclass(frozen=True)
class TextLabelPlacement:
    """Document-native center of the name label, in the signature's space."""

    x: float
    y: float
    text: str
    cell_address: Optional[str] = None

    def __post_init__(self) -> None:
        if self.x < 0 or self.y < 0:
            raise InvalidPlacementError(
                f"Label position ({self.x}, {self.y}) has a negative coordinate."
            )
        if self.cell_address is not None:
            col, row = parse_address(self.cell_address)
            object.__setattr__(self, "cell_address", format_address(col, row))

    @property
    def cell(self) -> Optional[Tuple[int, int]]:
        return parse_address(self.cell_address) if self.cell_address else None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TextLabelPlacement":
        if not isinstance(record, Mapping):
            raise InvalidPlacementError("Label record must be a mapping.")
        text = record.get("text")
        if not isinstance(text, str):
            raise InvalidPlacementError("Label record is missing 'text'.")
        return cls(
            x=_number(record, "x"),
            y=_number(record, "y"),
            text=text,
            cell_address=_cell_address(record),
        )

    def to_record(self) -> dict:
        record = {"x": self.x, "y": self.y, "text": self.text}
        if self.cell_address:
            record["cellAddress"] = self.cell_address
        return record


@dataclass(frozen=True)
class SignatureImage:
    """A self-contained encoded signature image plus how it was captured."""

    data: bytes
    kind: SignatureType = SignatureType.DRAW

    @classmethod
    def from_data_url(cls, value: str, kind: SignatureType = SignatureType.DRAW) -> "SignatureImage":
        """Accept ``data:image/...;base64,...`` or a bare base64 payload."""
        if not value:
            raise ImageDecodeError("Signature data is empty.")
        payload = value
        if value.startswith("data:"):
            _, comma, payload = value.partition(",")
            if not comma:
                raise ImageDecodeError("Signature data URL has no payload.")
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ImageDecodeError("Signature data is not valid base64.") from exc
        return cls(data=data, kind=SignatureType(kind))

    def to_data_url(self, mime: str = "image/png") -> str:
        return f"data:{mime};base64,{base64.b64encode(self.data).decode('ascii')}"

    def open(self) -> Image.Image:
        """Decode into a loaded RGBA Pillow image."""
        if not self.data:
            raise ImageDecodeError("Signature image is empty.")
        try:
            with Image.open(io.BytesIO(self.data)) as img:
                img.load()
                return img.convert("RGBA")
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise ImageDecodeError(f"Unable to decode signature image: {exc}") from exc

    def to_png(self) -> Tuple[bytes, Tuple[int, int]]:
        """Return normalized PNG bytes and the pixel size."""
        image = self.open()
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        return buf.getvalue(), image.size


@dataclass(frozen=True)
class SignedReport:
    """The slice of a report record the signed-file download needs."""

    file_path: str
    file_type: DocumentType
    signature_status: str
    signature_data: Optional[str] = None
    signature_type: SignatureType = SignatureType.DRAW
    signature_position: Optional[SignaturePlacement] = None
    text_position: Optional[TextLabelPlacement] = None
    signature_name: Optional[str] = None

    @property
    def is_signed(self) -> bool:
        return self.signature_status == "signed" and bool(self.signature_data)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SignedReport":
        file_path = record.get("file_path")
        if not file_path:
            raise ValueError("Report record is missing 'file_path'.")
        position = record.get("signature_position")
        text_position = record.get("text_position")
        return cls(
            file_path=file_path,
            file_type=DocumentType.parse(record.get("file_type") or "pdf"),
            signature_status=record.get("signature_status") or "pending",
            signature_data=record.get("signature_data"),
            signature_type=SignatureType(record.get("signature_type") or "draw"),
            signature_position=SignaturePlacement.from_record(position) if position else None,
            text_position=TextLabelPlacement.from_record(text_position) if text_position else None,
            signature_name=record.get("signature_name"),
        )


@dataclass
class StampResult:
    data: bytes
    document_type: DocumentType
    filename: Optional[str] = None
    image_stamped: bool = False
    label_stamped: bool = False
    degradations: List[FontResolutionDegraded] = field(default_factory=list)

    @property
    def content_type(self) -> str:
        return self.document_type.content_type
