"""Operation stack with undo/redo, and gesture-to-operation drafts.

The stack keeps every operation ever pushed since the last clear, plus a
cursor. Operations before the cursor are active; the rest are the redo tail,
which the next push discards.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .config import Config
from .errors import InvariantViolation
from .generation import GenerationCounter
from .geometry import Monitor, Point, Rect
from .operations import (
    Arrow,
    Blur,
    Circle,
    Color,
    Counter,
    Line,
    Marker,
    Operation,
    Pencil,
    Pixelate,
    Rectangle,
    Text,
    validate_operation,
)

log = logging.getLogger(__name__)


class ToolEngine:
    """Ordered, undoable list of operations for one session."""

    def __init__(self, generation: GenerationCounter, monitor: Optional[Monitor] = None):
        self.generation = generation
        self.monitor = monitor
        self._ops: list[Operation] = []
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._ops)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def active(self) -> tuple[Operation, ...]:
        return tuple(self._ops[:self._cursor])

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._ops)

    def _check(self):
        if not 0 <= self._cursor <= len(self._ops):
            raise InvariantViolation(f"cursor {self._cursor} outside 0..{len(self._ops)}")

    def push(self, op: Operation) -> int:
        """Append op at the cursor, dropping any redo tail. Returns the new cursor."""
        if self.monitor is None:
            raise InvariantViolation("ToolEngine has no monitor bound")
        validate_operation(op, self.monitor)
        dropped = len(self._ops) - self._cursor
        del self._ops[self._cursor:]
        self._ops.append(op)
        self._cursor = len(self._ops)
        self._check()
        self.generation.bump()
        log.debug("Pushed %s (dropped %d redo)", type(op).__name__, dropped)
        return self._cursor

    def undo(self) -> bool:
        """Step the cursor back. False means there was nothing to undo."""
        if self._cursor == 0:
            return False
        self._cursor -= 1
        self._check()
        self.generation.bump()
        return True

    def redo(self) -> bool:
        """Step the cursor forward. False means there was nothing to redo."""
        if self._cursor >= len(self._ops):
            return False
        self._cursor += 1
        self._check()
        self.generation.bump()
        return True

    def clear(self) -> bool:
        """Drop every operation, including the redo tail."""
        if not self._ops:
            return False
        self._ops.clear()
        self._cursor = 0
        self.generation.bump()
        return True

    def next_counter_number(self) -> int:
        numbers = [op.number for op in self.active if isinstance(op, Counter)]
        return max(numbers, default=0) + 1


class Tool(Enum):
    SELECT = "select"
    PENCIL = "pencil"
    LINE = "line"
    ARROW = "arrow"
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    MARKER = "marker"
    MARKER_LINE = "marker_line"
    TEXT = "text"
    COUNTER = "counter"
    PIXELATE = "pixelate"
    BLUR = "blur"


FREEHAND_TOOLS = {Tool.PENCIL, Tool.MARKER}


@dataclass
class ToolSettings:
    """Current pen settings for new drafts."""

    color: Color = Color(255, 59, 48)
    stroke_width: float = 3
    filled: bool = False
    marker_opacity: float = 0.35
    font: str = "sans-serif"
    font_size: float = 18
    pixelate_block: int = 8
    blur_radius: int = 6

    @classmethod
    def from_config(cls, config: Config) -> "ToolSettings":
        return cls(
            color=Color.parse(config.default_color),
            stroke_width=config.default_stroke_width,
            marker_opacity=config.marker_opacity,
            font=config.font,
            font_size=config.font_size,
            pixelate_block=config.pixelate_block,
            blur_radius=config.blur_radius,
        )


def build_operation(
    tool: Tool,
    points: Sequence[Point],
    settings: ToolSettings,
    text: str = "",
    counter_number: int = 1,
) -> Optional[Operation]:
    """Turn a finished gesture into an operation.

    points holds the press position first and the latest pointer position
    last. Returns None for gestures that would draw nothing.
    """
    if tool == Tool.SELECT or not points:
        return None
    start, end = points[0], points[-1]

    if tool == Tool.PENCIL:
        return Pencil(tuple(points), settings.color, settings.stroke_width)
    if tool == Tool.MARKER:
        return Marker(
            tuple(points),
            settings.color,
            settings.marker_opacity,
            max(settings.stroke_width * 4, 8),
        )
    if tool == Tool.TEXT:
        if not text.strip():
            return None
        return Text(start, text, settings.font, settings.font_size, settings.color)
    if tool == Tool.COUNTER:
        return Counter(start, counter_number, settings.color, settings.stroke_width, pointer=end)

    if start == end:
        return None
    if tool == Tool.LINE:
        return Line(start, end, settings.stroke_width, settings.color)
    if tool == Tool.ARROW:
        return Arrow(start, end, settings.stroke_width, settings.color)
    if tool == Tool.MARKER_LINE:
        return Marker(
            (start, end),
            settings.color,
            settings.marker_opacity,
            max(settings.stroke_width * 4, 8),
        )
    if tool == Tool.RECTANGLE:
        return Rectangle(start, end, settings.stroke_width, settings.color, settings.filled)
    if tool == Tool.CIRCLE:
        radius = math.hypot(end[0] - start[0], end[1] - start[1])
        return Circle(start, radius, settings.stroke_width, settings.color, settings.filled)

    region = Rect.from_points(start, end)
    if region.width == 0 or region.height == 0:
        return None
    if tool == Tool.PIXELATE:
        return Pixelate(region, settings.pixelate_block)
    if tool == Tool.BLUR:
        return Blur(region, settings.blur_radius)
    raise InvariantViolation(f"Unhandled tool {tool}")
