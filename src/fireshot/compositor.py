"""Renders Frame + active operations + selection crop into a CompositedImage.

Replay happens in monitor space on a copy of the frame; the crop to the
selection is the last step. Results are cached by generation.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import cairo

from .drawing import render_operation
from .frame import Frame, copy_surface, surface_bytes
from .geometry import Rect
from .operations import Operation
from .selection import Selection

log = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CompositedImage:
    """A rendered crop tagged with the generation it reflects."""

    surface: cairo.ImageSurface
    rect: Rect
    generation: int

    @property
    def width(self) -> int:
        return self.surface.get_width()

    @property
    def height(self) -> int:
        return self.surface.get_height()

    @property
    def stride(self) -> int:
        return self.surface.get_stride()

    def pixels(self) -> bytes:
        return surface_bytes(self.surface)


class Compositor:
    """Stateful renderer with a generation-keyed cache.

    A second cache holds the uncropped composite and the operations it was
    built from. When new operations only extend that list, just the new ones
    are replayed over a copy of it.
    """

    def __init__(self):
        self._cached: Optional[CompositedImage] = None
        self._full_frame: Optional[Frame] = None
        self._full_ops: tuple[Operation, ...] = ()
        self._full_surface: Optional[cairo.ImageSurface] = None
        self.full_replays = 0
        self.incremental_replays = 0

    def invalidate(self):
        self._cached = None
        self._full_frame = None
        self._full_ops = ()
        self._full_surface = None

    def _extends_cache(self, frame: Frame, ops: tuple[Operation, ...]) -> bool:
        if self._full_surface is None or self._full_frame is not frame:
            return False
        if len(ops) < len(self._full_ops):
            return False
        return all(a is b for a, b in zip(ops, self._full_ops))

    def render_full(self, frame: Frame, operations: Sequence[Operation]) -> cairo.ImageSurface:
        """Uncropped composite in monitor space. The returned surface is shared; do not draw on it."""
        ops = tuple(operations)
        if self._extends_cache(frame, ops):
            if len(ops) == len(self._full_ops):
                return self._full_surface
            surface = copy_surface(self._full_surface)
            pending = ops[len(self._full_ops):]
            self.incremental_replays += 1
        else:
            surface = copy_surface(frame.surface)
            pending = ops
            self.full_replays += 1

        for op in pending:
            render_operation(surface, op)
        surface.flush()

        self._full_frame = frame
        self._full_ops = ops
        self._full_surface = surface
        return surface

    def render(
        self,
        frame: Frame,
        selection: Optional[Selection],
        operations: Sequence[Operation],
        generation: int,
    ) -> CompositedImage:
        """Composite cropped to selection (whole monitor when None)."""
        if self._cached is not None and self._cached.generation == generation:
            return self._cached

        full = self.render_full(frame, operations)
        rect = selection.rect if selection is not None else frame.monitor.rect
        image = CompositedImage(copy_surface(full, rect), rect, generation)
        self._cached = image
        log.debug("Rendered generation %d at %s", generation, rect)
        return image


def render_once(
    frame: Frame,
    selection: Optional[Selection],
    operations: Sequence[Operation],
    generation: int = 0,
) -> CompositedImage:
    """Uncached full replay."""
    return Compositor().render(frame, selection, operations, generation)
