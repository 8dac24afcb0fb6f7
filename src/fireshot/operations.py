"""Drawing and effect operations.

Operations are immutable. Editing one means creating a new instance. All
coordinates are in monitor pixel space, so an operation stays valid when the
selection moves after it was drawn.
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional, Union

from .errors import InvariantViolation
from .geometry import Monitor, Point, Rect


class Color(NamedTuple):
    r: int
    g: int
    b: int
    a: int = 255

    @classmethod
    def parse(cls, value: Union[str, "Color", tuple]) -> "Color":
        """Accept '#rrggbb', '#rrggbbaa' or a 3/4-tuple of 0-255 ints."""
        if isinstance(value, Color):
            return value
        if isinstance(value, tuple):
            return cls(*value)
        text = value.strip().lstrip("#")
        if len(text) not in (6, 8):
            raise ValueError(f"Invalid color: {value!r}")
        channels = [int(text[i:i + 2], 16) for i in range(0, len(text), 2)]
        return cls(*channels)

    def rgba(self) -> tuple[float, float, float, float]:
        """Channels scaled to 0..1 for cairo."""
        return (self.r / 255, self.g / 255, self.b / 255, self.a / 255)

    def is_dark(self) -> bool:
        return (0.2126 * self.r + 0.7152 * self.g + 0.0722 * self.b) < 128

    def hex(self) -> str:
        return "#{:02x}{:02x}{:02x}{:02x}".format(*self)


RED = Color(255, 0, 0)
BLACK = Color(0, 0, 0)
WHITE = Color(255, 255, 255)


def _require(condition: bool, message: str):
    if not condition:
        raise InvariantViolation(message)


def _set_color(op):
    object.__setattr__(op, "color", Color.parse(op.color))


def _point(value) -> Point:
    x, y = value
    return (float(x), float(y))


@dataclass(frozen=True)
class Pencil:
    points: tuple[Point, ...]
    color: Color = RED
    stroke_width: float = 3

    def __post_init__(self):
        _set_color(self)
        object.__setattr__(self, "points", tuple(_point(p) for p in self.points))
        _require(len(self.points) >= 1, "Pencil needs at least one point")
        _require(self.stroke_width > 0, "stroke_width must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return self.points


@dataclass(frozen=True)
class Line:
    start: Point
    end: Point
    stroke_width: float = 3
    color: Color = RED

    def __post_init__(self):
        _set_color(self)
        object.__setattr__(self, "start", _point(self.start))
        object.__setattr__(self, "end", _point(self.end))
        _require(self.stroke_width > 0, "stroke_width must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return (self.start, self.end)


@dataclass(frozen=True)
class Arrow(Line):
    """A line with a filled head at end."""


@dataclass(frozen=True)
class Rectangle:
    top_left: Point
    bottom_right: Point
    stroke_width: float = 3
    color: Color = RED
    filled: bool = False

    def __post_init__(self):
        _set_color(self)
        (x0, y0), (x1, y1) = _point(self.top_left), _point(self.bottom_right)
        object.__setattr__(self, "top_left", (min(x0, x1), min(y0, y1)))
        object.__setattr__(self, "bottom_right", (max(x0, x1), max(y0, y1)))
        _require(self.stroke_width > 0, "stroke_width must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return (self.top_left, self.bottom_right)


@dataclass(frozen=True)
class Circle:
    center: Point
    radius: float
    stroke_width: float = 3
    color: Color = RED
    filled: bool = False

    def __post_init__(self):
        _set_color(self)
        object.__setattr__(self, "center", _point(self.center))
        _require(self.radius >= 0, "radius must not be negative")
        _require(self.stroke_width > 0, "stroke_width must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return (self.center,)


@dataclass(frozen=True)
class Marker:
    """Translucent highlighter stroke."""

    path: tuple[Point, ...]
    color: Color = Color(255, 221, 0)
    opacity: float = 0.35
    stroke_width: float = 16

    def __post_init__(self):
        _set_color(self)
        object.__setattr__(self, "path", tuple(_point(p) for p in self.path))
        _require(len(self.path) >= 1, "Marker needs at least one point")
        _require(0 <= self.opacity <= 1, "opacity must be within 0..1")
        _require(self.stroke_width > 0, "stroke_width must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return self.path


@dataclass(frozen=True)
class Text:
    position: Point
    content: str
    font: str = "sans-serif"
    size: float = 18
    color: Color = RED

    def __post_init__(self):
        _set_color(self)
        object.__setattr__(self, "position", _point(self.position))
        _require(self.size > 0, "font size must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return (self.position,)


@dataclass(frozen=True)
class Counter:
    """Numbered bubble, optionally with a tail pointing at pointer."""

    center: Point
    number: int
    color: Color = RED
    size: float = 3
    pointer: Optional[Point] = None

    def __post_init__(self):
        _set_color(self)
        object.__setattr__(self, "center", _point(self.center))
        pointer = self.center if self.pointer is None else _point(self.pointer)
        object.__setattr__(self, "pointer", pointer)
        _require(self.number >= 1, "counter numbers start at 1")
        _require(self.size > 0, "size must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return (self.center, self.pointer)


@dataclass(frozen=True)
class Pixelate:
    region: Rect
    block_size: int = 8

    def __post_init__(self):
        object.__setattr__(self, "region", Rect(*self.region))
        _require(self.region.width > 0 and self.region.height > 0, "empty effect region")
        _require(self.block_size >= 1, "block_size must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return ((self.region.x, self.region.y), (self.region.right, self.region.bottom))


@dataclass(frozen=True)
class Blur:
    region: Rect
    radius: int = 6

    def __post_init__(self):
        object.__setattr__(self, "region", Rect(*self.region))
        _require(self.region.width > 0 and self.region.height > 0, "empty effect region")
        _require(self.radius >= 1, "radius must be positive")

    def anchor_points(self) -> tuple[Point, ...]:
        return ((self.region.x, self.region.y), (self.region.right, self.region.bottom))


Operation = Union[Pencil, Line, Arrow, Rectangle, Circle, Marker, Text, Counter, Pixelate, Blur]
OPERATION_TYPES = (Pencil, Line, Arrow, Rectangle, Circle, Marker, Text, Counter, Pixelate, Blur)
EFFECT_TYPES = (Pixelate, Blur)


def validate_operation(op: Operation, monitor: Monitor):
    """Fail fast when op is not a known operation or leaves monitor space."""
    if not isinstance(op, OPERATION_TYPES):
        raise InvariantViolation(f"Unknown operation type: {type(op).__name__}")
    for point in op.anchor_points():
        if not monitor.contains(point):
            raise InvariantViolation(
                f"{type(op).__name__} point {point} outside monitor "
                f"{monitor.name} ({monitor.width}x{monitor.height})"
            )
