"""Cairo rendering for each operation variant.

render_operation is the single dispatch point. Shapes draw through a cairo
context; effects rewrite pixels through effects.py.
"""

import math

import cairo

from . import effects
from .errors import InvariantViolation
from .geometry import Point
from .operations import (
    BLACK,
    WHITE,
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
)

COUNTER_THICKNESS_OFFSET = 15.0
COUNTER_PADDING = 2.0


def _source(cr: cairo.Context, color: Color, opacity: float = 1.0):
    r, g, b, a = color.rgba()
    cr.set_source_rgba(r, g, b, a * opacity)


def _stroke_path(cr: cairo.Context, points, color: Color, width: float, opacity: float = 1.0):
    cr.set_line_width(width)
    cr.set_line_cap(cairo.LINE_CAP_ROUND)
    cr.set_line_join(cairo.LINE_JOIN_ROUND)
    _source(cr, color, opacity)
    first, *rest = points
    cr.move_to(*first)
    if not rest:
        # Zero-length segment so a single click still leaves a dot.
        cr.line_to(*first)
    for point in rest:
        cr.line_to(*point)
    cr.stroke()


def arrow_head_points(start: Point, end: Point, size: float) -> tuple[Point, Point, Point]:
    """Base, left and right corners of the arrow head ending at end."""
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    length = max(math.hypot(dx, dy), 1.0)
    ux, uy = dx / length, dy / length
    px, py = -uy, ux
    head_len = min(max(size * 4.0, 10.0), length * 0.8)
    head_w = min(max(size * 3.0, 6.0), length * 0.6)
    base = (end[0] - ux * head_len, end[1] - uy * head_len)
    left = (base[0] + px * head_w * 0.5, base[1] + py * head_w * 0.5)
    right = (base[0] - px * head_w * 0.5, base[1] - py * head_w * 0.5)
    return base, left, right


def draw_arrow(cr: cairo.Context, op: Arrow):
    base, left, right = arrow_head_points(op.start, op.end, op.stroke_width)
    cr.set_line_width(op.stroke_width)
    cr.set_line_cap(cairo.LINE_CAP_BUTT)
    _source(cr, op.color)
    cr.move_to(*op.start)
    cr.line_to(*base)
    cr.stroke()

    cr.move_to(*op.end)
    cr.line_to(*left)
    cr.line_to(*right)
    cr.close_path()
    cr.fill()


def draw_rectangle(cr: cairo.Context, op: Rectangle):
    (x0, y0), (x1, y1) = op.top_left, op.bottom_right
    cr.rectangle(x0, y0, x1 - x0, y1 - y0)
    _source(cr, op.color)
    if op.filled:
        cr.fill()
        return
    cr.set_line_width(op.stroke_width)
    cr.set_line_join(cairo.LINE_JOIN_MITER)
    cr.stroke()


def draw_circle(cr: cairo.Context, op: Circle):
    cr.arc(op.center[0], op.center[1], op.radius, 0, 2 * math.pi)
    _source(cr, op.color)
    if op.filled:
        cr.fill()
        return
    cr.set_line_width(op.stroke_width)
    cr.stroke()


def draw_text(cr: cairo.Context, op: Text):
    """Draw text with position as the top-left corner of the first line."""
    cr.select_font_face(op.font, cairo.FONT_SLANT_NORMAL, cairo.FONT_WEIGHT_NORMAL)
    cr.set_font_size(op.size)
    ascent, descent, line_height = cr.font_extents()[:3]
    _source(cr, op.color)
    x, y = op.position
    for index, line in enumerate(op.content.splitlines() or [""]):
        cr.move_to(x, y + ascent + index * line_height)
        cr.show_text(line)


def draw_counter(cr: cairo.Context, op: Counter):
    """Numbered bubble with an optional tail toward op.pointer."""
    bubble = op.size + COUNTER_THICKNESS_OFFSET
    contrast, anti = (WHITE, BLACK) if op.color.is_dark() else (BLACK, WHITE)
    cx, cy = op.center

    dx = op.pointer[0] - cx
    dy = op.pointer[1] - cy
    length = math.hypot(dx, dy)
    if length > bubble:
        px, py = -dy / length, dx / length
        cr.move_to(cx + px * bubble, cy + py * bubble)
        cr.line_to(*op.pointer)
        cr.line_to(cx - px * bubble, cy - py * bubble)
        cr.close_path()
        _source(cr, op.color)
        cr.fill()

    outer = bubble + COUNTER_PADDING
    cr.arc(cx, cy, outer, 0, 2 * math.pi)
    _source(cr, anti)
    cr.fill_preserve()
    cr.set_line_width(1)
    _source(cr, contrast)
    cr.stroke()

    cr.arc(cx, cy, bubble, 0, 2 * math.pi)
    _source(cr, op.color)
    cr.fill()

    label = str(op.number)
    font_size = max(bubble * 1.1, 8.0)
    cr.select_font_face("sans-serif", cairo.FONT_SLANT_NORMAL, cairo.FONT_WEIGHT_BOLD)
    while True:
        cr.set_font_size(font_size)
        extents = cr.text_extents(label)
        if extents.width <= bubble * 1.6 or font_size <= 6.0:
            break
        font_size -= 1.0
    _source(cr, contrast)
    cr.move_to(
        cx - extents.width / 2 - extents.x_bearing,
        cy - extents.height / 2 - extents.y_bearing,
    )
    cr.show_text(label)


def render_operation(surface: cairo.ImageSurface, op: Operation):
    """Apply one operation to surface in place."""
    if isinstance(op, Pixelate):
        effects.pixelate(surface, op.region, op.block_size)
        return
    if isinstance(op, Blur):
        effects.blur(surface, op.region, op.radius)
        return

    cr = cairo.Context(surface)
    if isinstance(op, Pencil):
        _stroke_path(cr, op.points, op.color, op.stroke_width)
    elif isinstance(op, Arrow):
        draw_arrow(cr, op)
    elif isinstance(op, Line):
        _stroke_path(cr, (op.start, op.end), op.color, op.stroke_width)
    elif isinstance(op, Rectangle):
        draw_rectangle(cr, op)
    elif isinstance(op, Circle):
        draw_circle(cr, op)
    elif isinstance(op, Marker):
        _stroke_path(cr, op.path, op.color, op.stroke_width, op.opacity)
    elif isinstance(op, Text):
        draw_text(cr, op)
    elif isinstance(op, Counter):
        draw_counter(cr, op)
    else:
        raise InvariantViolation(f"No renderer for {type(op).__name__}")
    surface.flush()
