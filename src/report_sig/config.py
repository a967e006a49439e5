from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from .fonts import BuiltinFontSource, FileFontSource, FontSource


APP_NAME = "Report Sig"
APP_VERSION = "0.1.0"
APP_AUTHOR = "Report Sig contributors"
APP_DESCRIPTION = (
    "Pick where a report gets signed, capture the signature, "
    "and download a stamped copy of the PDF or spreadsheet."
)


# Stamping
SIGNATURE_RENDER_SCALE = 0.3
LABEL_FONT_SIZE = 18.0
LABEL_GAP_POINTS = 4.0
SHEET_SIGNATURE_SIZE_PX: Tuple[int, int] = (150, 60)
SHEET_LABEL_FONT_SIZE = 12
BUILTIN_FONT_NAME = "helv"

# Preview
PREVIEW_MARGIN = 0.95
FALLBACK_PREVIEW_SCALE = 0.5
MAX_PREVIEW_CELLS = 20_000
DEFAULT_CONTAINER_SIZE: Tuple[int, int] = (800, 600)

# Spreadsheet grid units
DEFAULT_COLUMN_WIDTH_CHARS = 8.43
POINTS_PER_CHAR = 7.0
DEFAULT_ROW_HEIGHT_POINTS = 15.0
PIXELS_PER_POINT = 4.0 / 3.0

# Signature capture
CAPTURE_CANVAS_SIZE: Tuple[int, int] = (600, 200)
CAPTURE_STROKE_WIDTH = 2

# Desktop shell
DEFAULT_CANVAS_BG = "#111111"
DEFAULT_STATUS_BG = "#0f0f0f"
DEFAULT_RENDER_DEBOUNCE_MS = 120
SIGNED_SUFFIX = "_signed"
SIGNED_URL_TTL_SECONDS = 3600

FONT_PATHS_ENV = "REPORT_SIG_FONT_PATHS"

# Deployment-relative locations tried in order for a full (non-subsetted)
# font with Hangul/CJK coverage.
DEFAULT_FONT_CANDIDATES: Tuple[str, ...] = (
    "fonts/NanumGothic.ttf",
    "assets/fonts/NanumGothic.ttf",
    "public/fonts/NanumGothic.ttf",
    "/usr/share/fonts/truetype/nanum/NanumGothic.ttf",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
)


def default_font_sources(paths: Tuple[str, ...] = DEFAULT_FONT_CANDIDATES) -> Tuple[FontSource, ...]:
    return tuple(FileFontSource(Path(p)) for p in paths)


@dataclass(frozen=True)
class AppMetadata:
    name: str = APP_NAME
    version: str = APP_VERSION
    author: str = APP_AUTHOR
    description: str = APP_DESCRIPTION


@dataclass(frozen=True)
class StampSettings:
    """Tunables for the stamping engine.

    ``font_sources`` is tried in order when a text label has to be drawn on
    a PDF; ``fallback_font`` is the built-in Latin font used once every
    source has failed.
    """

    font_sources: Tuple[FontSource, ...] = field(default_factory=default_font_sources)
    fallback_font: FontSource = field(
        default_factory=lambda: BuiltinFontSource(BUILTIN_FONT_NAME)
    )
    signature_scale: float = SIGNATURE_RENDER_SCALE
    label_font_size: float = LABEL_FONT_SIZE
    sheet_signature_size: Tuple[int, int] = SHEET_SIGNATURE_SIZE_PX

    @classmethod
    def from_env(cls, environ=None) -> "StampSettings":
        environ = os.environ if environ is None else environ
        extra = tuple(
            p for p in environ.get(FONT_PATHS_ENV, "").split(os.pathsep) if p.strip()
        )
        return cls(font_sources=default_font_sources(extra + DEFAULT_FONT_CANDIDATES))
