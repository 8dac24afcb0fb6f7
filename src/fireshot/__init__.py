"""Fireshot: screenshot selection and annotation for Wayland.

A screenshot utility with:
- In-place region selection with resize handles
- Drawing tools (pencil, line, arrow, shapes, marker, text, counters)
- Pixelate and blur effects with undo/redo
- Export to file or clipboard
"""

__version__ = "0.3.0"
