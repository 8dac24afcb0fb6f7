"""Captured raster buffer and the cairo surface helpers built around it."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cairo
import numpy as np

from .errors import InvariantViolation
from .geometry import Monitor, Rect

log = logging.getLogger(__name__)

PIXEL_FORMAT = cairo.FORMAT_ARGB32


def new_surface(width: int, height: int) -> cairo.ImageSurface:
    return cairo.ImageSurface(PIXEL_FORMAT, width, height)


def copy_surface(surface: cairo.ImageSurface, rect: Optional[Rect] = None) -> cairo.ImageSurface:
    """Exact pixel copy of surface, optionally limited to rect."""
    if rect is None:
        rect = Rect(0, 0, surface.get_width(), surface.get_height())
    out = new_surface(rect.width, rect.height)
    cr = cairo.Context(out)
    cr.set_operator(cairo.OPERATOR_SOURCE)
    cr.set_source_surface(surface, -rect.x, -rect.y)
    cr.paint()
    out.flush()
    return out


def pixel_view(surface: cairo.ImageSurface) -> np.ndarray:
    """Writable (height, width, 4) uint8 view over the surface memory.

    Call surface.mark_dirty() after writing through the view.
    """
    surface.flush()
    return np.ndarray(
        shape=(surface.get_height(), surface.get_width(), 4),
        dtype=np.uint8,
        buffer=surface.get_data(),
        strides=(surface.get_stride(), 4, 1),
    )


def read_pixel(surface: cairo.ImageSurface, x: int, y: int) -> tuple[int, int, int, int]:
    """Premultiplied (r, g, b, a) at x, y."""
    surface.flush()
    row = np.ndarray(
        shape=(surface.get_height(), surface.get_width()),
        dtype=np.uint32,
        buffer=surface.get_data(),
        strides=(surface.get_stride(), 4),
    )
    value = int(row[y, x])
    return ((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF, (value >> 24) & 0xFF)


def surface_bytes(surface: cairo.ImageSurface) -> bytes:
    surface.flush()
    return bytes(surface.get_data())


@dataclass(frozen=True, eq=False)
class Frame:
    """One captured screen image plus the monitor it came from.

    The surface is never drawn on; rendering always works on a copy.
    """

    surface: cairo.ImageSurface
    monitor: Monitor

    def __post_init__(self):
        if self.surface.get_format() != PIXEL_FORMAT:
            raise InvariantViolation("Frame surface must be ARGB32")
        if (self.width, self.height) != (self.monitor.width, self.monitor.height):
            raise InvariantViolation(
                f"Frame {self.width}x{self.height} does not match monitor "
                f"{self.monitor.name} {self.monitor.width}x{self.monitor.height}"
            )

    @property
    def width(self) -> int:
        return self.surface.get_width()

    @property
    def height(self) -> int:
        return self.surface.get_height()

    @property
    def stride(self) -> int:
        return self.surface.get_stride()

    @property
    def pixel_format(self) -> str:
        return "ARGB32"

    @classmethod
    def from_surface(cls, surface: cairo.ImageSurface, monitor: Optional[Monitor] = None) -> "Frame":
        """Build a Frame from any image surface, converting to ARGB32.

        When monitor is None a monitor matching the surface size is assumed.
        """
        if monitor is None:
            monitor = Monitor("image", surface.get_width(), surface.get_height())
        return cls(copy_surface(surface), monitor)

    @classmethod
    def from_png(cls, path: Path, monitor: Optional[Monitor] = None) -> "Frame":
        surface = cairo.ImageSurface.create_from_png(str(path))
        log.debug("Loaded %s: %dx%d", path, surface.get_width(), surface.get_height())
        return cls.from_surface(surface, monitor)

    @classmethod
    def solid(cls, monitor: Monitor, rgb: tuple[float, float, float]) -> "Frame":
        """Frame filled with one opaque color."""
        surface = new_surface(monitor.width, monitor.height)
        cr = cairo.Context(surface)
        cr.set_source_rgb(*rgb)
        cr.paint()
        surface.flush()
        return cls(surface, monitor)
