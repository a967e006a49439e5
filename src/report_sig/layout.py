from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from .config import FALLBACK_PREVIEW_SCALE, PREVIEW_MARGIN


def screen_to_native(
    click_x: float, click_y: float, scale: float, page_height: float
) -> Tuple[float, float]:
    """Map a raster click (top-left origin) to PDF points (bottom-left origin)."""
    if scale <= 0:
        raise ValueError(f"Scale must be positive, got {scale}.")
    return click_x / scale, page_height - (click_y / scale)


def native_to_screen(
    native_x: float, native_y: float, scale: float, page_height: float
) -> Tuple[float, float]:
    """Inverse of :func:`screen_to_native`; used to draw the placement marker."""
    if scale <= 0:
        raise ValueError(f"Scale must be positive, got {scale}.")
    return native_x * scale, (page_height - native_y) * scale


def clamp_point(x: float, y: float, width: float, height: float) -> Tuple[float, float]:
    """Pull a point back inside ``[0, width] x [0, height]``."""
    return min(max(x, 0.0), width), min(max(y, 0.0), height)


def auto_fit_scale(
    container_width: float,
    container_height: float,
    page_width: float,
    page_height: float,
    margin: float = PREVIEW_MARGIN,
) -> float:
    """Largest scale that fits the page in the container, never above 100%."""
    if page_width <= 0 or page_height <= 0:
        return FALLBACK_PREVIEW_SCALE
    scale = min(container_width / page_width, container_height / page_height, 1.0) * margin
    if math.isnan(scale) or scale <= 0:
        return FALLBACK_PREVIEW_SCALE
    return scale


@dataclass(frozen=True)
class ScaleContext:
    """Native page size against the raster currently on screen.

    Built from the raster that was just drawn, never carried over a resize,
    so a click is always inverted with the scale of the pixels it hit.
    """

    native_width: float
    native_height: float
    raster_width: int
    raster_height: int

    @property
    def scale_x(self) -> float:
        return self.raster_width / self.native_width

    @property
    def scale_y(self) -> float:
        return self.raster_height / self.native_height

    def to_native(self, click_x: float, click_y: float) -> Tuple[float, float]:
        x, _ = screen_to_native(click_x, 0.0, self.scale_x, self.native_height)
        _, y = screen_to_native(0.0, click_y, self.scale_y, self.native_height)
        return clamp_point(x, y, self.native_width, self.native_height)

    def to_screen(self, native_x: float, native_y: float) -> Tuple[float, float]:
        x, _ = native_to_screen(native_x, 0.0, self.scale_x, self.native_height)
        _, y = native_to_screen(0.0, native_y, self.scale_y, self.native_height)
        return x, y
