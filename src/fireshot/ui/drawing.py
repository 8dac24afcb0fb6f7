"""Cairo drawing helpers for the editing overlay chrome."""

from typing import Optional

import cairo

from ..geometry import Rect, handle_positions
from ..operations import Color

HANDLE_SIZE = 8
ACCENT = (0.3, 0.6, 1.0)


def draw_crosshair(cr: cairo.Context, x: float, y: float, size: int = 15):
    """Draw a crosshair cursor at the given position."""
    for rgb, width in (((0, 0, 0), 3), ((1, 1, 1), 1)):
        cr.set_source_rgb(*rgb)
        cr.set_line_width(width)
        cr.move_to(x - size, y)
        cr.line_to(x + size, y)
        cr.move_to(x, y - size)
        cr.line_to(x, y + size)
        cr.stroke()


def draw_selection_overlay(cr: cairo.Context, rect: Optional[Rect], img_width: int, img_height: int):
    """Dim everything outside rect; dim the whole image when there is no selection."""
    cr.set_source_rgba(0, 0, 0, 0.5)
    if rect is None:
        cr.rectangle(0, 0, img_width, img_height)
        cr.fill()
        return

    x, y, width, height = rect
    cr.rectangle(0, 0, img_width, y)  # Top
    cr.rectangle(0, y, x, height)  # Left
    cr.rectangle(x + width, y, img_width - (x + width), height)  # Right
    cr.rectangle(0, y + height, img_width, img_height - (y + height))  # Bottom
    cr.fill()

    cr.set_source_rgb(*ACCENT)
    cr.set_line_width(2)
    cr.rectangle(x, y, width, height)
    cr.stroke()


def draw_handles(cr: cairo.Context, rect: Rect, size: float = HANDLE_SIZE):
    """Small squares on the eight grab points of rect."""
    half = size / 2
    for hx, hy in handle_positions(rect):
        cr.rectangle(hx - half, hy - half, size, size)
        cr.set_source_rgb(1, 1, 1)
        cr.fill_preserve()
        cr.set_source_rgb(*ACCENT)
        cr.set_line_width(1.5)
        cr.stroke()


def _label(cr: cairo.Context, text: str, x: float, y: float, alpha: float = 0.8):
    extents = cr.text_extents(text)
    cr.set_source_rgba(0, 0, 0, alpha)
    cr.rectangle(x - 5, y - extents.height - 5, extents.width + 10, extents.height + 10)
    cr.fill()
    cr.set_source_rgb(1, 1, 1)
    cr.move_to(x, y)
    cr.show_text(text)


def draw_dimension_text(cr: cairo.Context, rect: Rect):
    """Draw "W x H" in the center of a selection."""
    cr.select_font_face("monospace", cairo.FONT_SLANT_NORMAL, cairo.FONT_WEIGHT_BOLD)
    cr.set_font_size(14)
    x, y, width, height = rect
    text = f"{width} x {height}"
    extents = cr.text_extents(text)
    _label(cr, text, x + width / 2 - extents.width / 2, y + height / 2 + extents.height / 2)


SELECT_HELP = [
    "Drag: Select area",
    "Drag handles: Resize",
    "Arrow keys: Nudge",
    "Enter: Confirm selection",
    "ESC/Right-click: Cancel",
]

EDIT_HELP = [
    "P pencil  L line  A arrow  R rect  C circle",
    "M marker  H highlight line  T text  N counter",
    "X pixelate  B blur",
    "S select  F fill  [ ] width",
    "Ctrl+Z undo  Ctrl+Shift+Z redo  Del clear",
    "Enter/Ctrl+S save  Ctrl+C copy  ESC cancel",
]


def draw_instructions(cr: cairo.Context, lines: list[str], x: int = 20, y: int = 30):
    """Draw help lines in the corner."""
    cr.select_font_face("sans-serif", cairo.FONT_SLANT_NORMAL, cairo.FONT_WEIGHT_NORMAL)
    cr.set_font_size(14)
    for line in lines:
        _label(cr, line, x, y, alpha=0.7)
        y += 22


def draw_tool_status(cr: cairo.Context, tool_name: str, color: Color, stroke_width: float, x: int, y: int):
    """Current tool with a color swatch, anchored at the bottom-left of the selection."""
    cr.select_font_face("sans-serif", cairo.FONT_SLANT_NORMAL, cairo.FONT_WEIGHT_BOLD)
    cr.set_font_size(13)
    text = f"{tool_name}  {stroke_width:g}px"
    _label(cr, text, x + 22, y)
    extents = cr.text_extents(text)
    cr.rectangle(x, y - extents.height - 2, 14, 14)
    cr.set_source_rgba(*color.rgba())
    cr.fill_preserve()
    cr.set_source_rgb(1, 1, 1)
    cr.set_line_width(1)
    cr.stroke()


def draw_text_cursor(cr: cairo.Context, x: float, y: float, pending: str, font: str, size: float, color: Color):
    """Preview of text being typed, with a caret."""
    cr.select_font_face(font, cairo.FONT_SLANT_NORMAL, cairo.FONT_WEIGHT_NORMAL)
    cr.set_font_size(size)
    cr.set_source_rgba(*color.rgba())
    ascent, _, line_height = cr.font_extents()[:3]
    lines = pending.split("\n")
    for i, line in enumerate(lines):
        cr.move_to(x, y + ascent + i * line_height)
        cr.show_text(line)
    caret_x = x + cr.text_extents(lines[-1]).x_advance
    caret_y = y + (len(lines) - 1) * line_height
    cr.set_line_width(1)
    cr.move_to(caret_x + 1, caret_y)
    cr.line_to(caret_x + 1, caret_y + line_height)
    cr.stroke()
