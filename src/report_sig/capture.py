from __future__ import annotations

import dataclasses
import io
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from PIL import Image, ImageDraw

from .config import CAPTURE_CANVAS_SIZE, CAPTURE_STROKE_WIDTH
from .errors import EmptySignatureError
from .models import SignatureImage, SignatureType, TextLabelPlacement


Point = Tuple[float, float]


class StrokeCapture:
    """Freehand pad: pointer events accumulate polylines that rasterize to PNG."""

    def __init__(
        self,
        size: Tuple[int, int] = CAPTURE_CANVAS_SIZE,
        stroke_width: int = CAPTURE_STROKE_WIDTH,
        color: Tuple[int, int, int, int] = (0, 0, 0, 255),
    ) -> None:
        self.size = size
        self.stroke_width = stroke_width
        self.color = color
        self.strokes: List[List[Point]] = []
        self._drawing = False

    @property
    def is_blank(self) -> bool:
        # A press without movement leaves nothing visible.
        return not any(len(stroke) > 1 for stroke in self.strokes)

    def pointer_down(self, x: float, y: float) -> None:
        self.strokes.append([self._clamp(x, y)])
        self._drawing = True

    def pointer_move(self, x: float, y: float) -> None:
        if self._drawing:
            self.strokes[-1].append(self._clamp(x, y))

    def pointer_up(self) -> None:
        self._drawing = False

    def clear(self) -> None:
        self.strokes = []
        self._drawing = False

    def render(self) -> Image.Image:
        image = Image.new("RGBA", self.size, (255, 255, 255, 0))
        draw = ImageDraw.Draw(image)
        radius = self.stroke_width / 2
        for stroke in self.strokes:
            if len(stroke) < 2:
                continue
            draw.line(stroke, fill=self.color, width=self.stroke_width, joint="curve")
            for x, y in (stroke[0], stroke[-1]):
                draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=self.color)
        return image

    def to_png(self) -> bytes:
        buf = io.BytesIO()
        self.render().save(buf, format="PNG")
        return buf.getvalue()

    def _clamp(self, x: float, y: float) -> Point:
        width, height = self.size
        return min(max(x, 0.0), width), min(max(y, 0.0), height)


@dataclass(frozen=True)
class CapturedSignature:
    image: SignatureImage
    name: Optional[str] = None

    @property
    def signature_type(self) -> SignatureType:
        return self.image.kind


class SignatureCapture:
    """One capture session; draw and upload modes are mutually exclusive.

    Switching mode discards whatever the other mode had collected.
    """

    def __init__(self, pad: Optional[StrokeCapture] = None) -> None:
        self.pad = pad or StrokeCapture()
        self.mode = SignatureType.DRAW
        self.upload: Optional[bytes] = None
        self.name: str = ""

    def set_mode(self, mode: SignatureType) -> None:
        mode = SignatureType(mode)
        if mode is self.mode:
            return
        self.mode = mode
        self.pad.clear()
        self.upload = None

    def load_upload(self, source: Union[bytes, Path, str]) -> SignatureImage:
        """Read an uploaded image; raises ImageDecodeError if it is not one."""
        data = source if isinstance(source, bytes) else Path(source).read_bytes()
        image = SignatureImage(data=data, kind=SignatureType.UPLOAD)
        image.open()
        self.set_mode(SignatureType.UPLOAD)
        self.upload = data
        return image

    def finalize(self) -> CapturedSignature:
        if self.mode is SignatureType.DRAW:
            if self.pad.is_blank:
                raise EmptySignatureError("Draw a signature before saving.")
            image = SignatureImage(data=self.pad.to_png(), kind=SignatureType.DRAW)
        else:
            if not self.upload:
                raise EmptySignatureError("Choose a signature image before saving.")
            image = SignatureImage(data=self.upload, kind=SignatureType.UPLOAD)
        name = self.name.strip() or None
        return CapturedSignature(image=image, name=name)


def resolve_label(
    name: Optional[str],
    preset: Optional[TextLabelPlacement] = None,
    submitted: Optional[TextLabelPlacement] = None,
) -> Optional[TextLabelPlacement]:
    """Pick where the signer's name goes.

    A preset name position on the report wins when a name is given, then a
    label position submitted with the signature. ``None`` means the label
    is drawn next to the signature image.
    """
    if name and preset is not None:
        return dataclasses.replace(preset, text=name)
    if submitted is not None:
        return submitted
    return None
