"""Geometry primitives shared by selection, operations and rendering.

All coordinates are monitor pixel space. Rectangles are integer x/y/width/height.
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional

Point = tuple[float, float]


@dataclass(frozen=True)
class Monitor:
    """A physical output. Immutable for the lifetime of a session."""

    name: str
    width: int
    height: int
    scale: float = 1.0

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Monitor {self.name} has invalid size {self.width}x{self.height}")

    @property
    def rect(self) -> "Rect":
        return Rect(0, 0, self.width, self.height)

    def contains(self, point: Point) -> bool:
        x, y = point
        return 0 <= x <= self.width and 0 <= y <= self.height

    @classmethod
    def from_output(cls, output: dict) -> "Monitor":
        """Build a Monitor from a wayland-capture output entry."""
        return cls(
            name=output.get("name", "unknown"),
            width=int(output["width"]),
            height=int(output["height"]),
            scale=float(output.get("scale", 1.0)),
        )


class Rect(NamedTuple):
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def contains(self, point: Point) -> bool:
        px, py = point
        return self.x <= px < self.right and self.y <= py < self.bottom

    def within(self, outer: "Rect") -> bool:
        return (
            self.x >= outer.x
            and self.y >= outer.y
            and self.right <= outer.right
            and self.bottom <= outer.bottom
        )

    def intersect(self, other: "Rect") -> Optional["Rect"]:
        x0 = max(self.x, other.x)
        y0 = max(self.y, other.y)
        x1 = min(self.right, other.right)
        y1 = min(self.bottom, other.bottom)
        if x1 <= x0 or y1 <= y0:
            return None
        return Rect(x0, y0, x1 - x0, y1 - y0)

    @classmethod
    def from_points(cls, a: Point, b: Point) -> "Rect":
        """Normalized integer rectangle spanning two points."""
        x0, x1 = sorted((a[0], b[0]))
        y0, y1 = sorted((a[1], b[1]))
        x0, y0 = int(x0), int(y0)
        return cls(x0, y0, int(round(x1)) - x0, int(round(y1)) - y0)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class Handle(NamedTuple):
    """A grab point on the selection border.

    The flags say which edges follow the pointer while the handle is held.
    """

    name: str
    left: bool
    top: bool
    right: bool
    bottom: bool


# Fixed table; handles are referred to by index only.
HANDLES: tuple[Handle, ...] = (
    Handle("top-left", True, True, False, False),
    Handle("top", False, True, False, False),
    Handle("top-right", False, True, True, False),
    Handle("right", False, False, True, False),
    Handle("bottom-right", False, False, True, True),
    Handle("bottom", False, False, False, True),
    Handle("bottom-left", True, False, False, True),
    Handle("left", True, False, False, False),
)


def handle_positions(rect: Rect) -> list[Point]:
    """Positions of every handle in HANDLES order."""
    cx = rect.x + rect.width / 2
    cy = rect.y + rect.height / 2
    return [
        (rect.x, rect.y),
        (cx, rect.y),
        (rect.right, rect.y),
        (rect.right, cy),
        (rect.right, rect.bottom),
        (cx, rect.bottom),
        (rect.x, rect.bottom),
        (rect.x, cy),
    ]


def hit_handle(rect: Rect, point: Point, margin: float) -> Optional[int]:
    """Index of the closest handle within margin of point, or None."""
    best: Optional[int] = None
    best_dist = margin * margin
    px, py = point
    for index, (hx, hy) in enumerate(handle_positions(rect)):
        dist = (px - hx) ** 2 + (py - hy) ** 2
        if dist <= best_dist and (best is None or dist < best_dist):
            best = index
            best_dist = dist
    return best
