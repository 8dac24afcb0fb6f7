"""Full-screen editing overlay driving a Session."""

import logging
import os
from pathlib import Path
from typing import Optional

import cairo
import gi
gi.require_version("Gtk", "3.0")
gi.require_version("Gdk", "3.0")
gi.require_version("GtkLayerShell", "0.1")
from gi.repository import Gtk, Gdk, GLib, GtkLayerShell

from ..export import ClipboardTarget, ExportRequest, ExportTarget, FileTarget
from ..operations import Color
from ..selection import SelectionState
from ..session import Session
from ..tools import Tool
from .drawing import (
    EDIT_HELP,
    SELECT_HELP,
    draw_crosshair,
    draw_dimension_text,
    draw_handles,
    draw_instructions,
    draw_selection_overlay,
    draw_text_cursor,
    draw_tool_status,
)

log = logging.getLogger(__name__)

EXPORT_POLL_MS = 30

TOOL_KEYS = {
    Gdk.KEY_s: Tool.SELECT,
    Gdk.KEY_p: Tool.PENCIL,
    Gdk.KEY_l: Tool.LINE,
    Gdk.KEY_a: Tool.ARROW,
    Gdk.KEY_r: Tool.RECTANGLE,
    Gdk.KEY_c: Tool.CIRCLE,
    Gdk.KEY_m: Tool.MARKER,
    Gdk.KEY_h: Tool.MARKER_LINE,
    Gdk.KEY_t: Tool.TEXT,
    Gdk.KEY_n: Tool.COUNTER,
    Gdk.KEY_x: Tool.PIXELATE,
    Gdk.KEY_b: Tool.BLUR,
}

PALETTE = {
    Gdk.KEY_1: Color(255, 59, 48),
    Gdk.KEY_2: Color(255, 204, 0),
    Gdk.KEY_3: Color(52, 199, 89),
    Gdk.KEY_4: Color(0, 122, 255),
    Gdk.KEY_5: Color(0, 0, 0),
    Gdk.KEY_6: Color(255, 255, 255),
}

NUDGE_KEYS = {
    Gdk.KEY_Left: (-1, 0),
    Gdk.KEY_Right: (1, 0),
    Gdk.KEY_Up: (0, -1),
    Gdk.KEY_Down: (0, 1),
}

GRAB_STATES = (SelectionState.DRAGGING, SelectionState.RESIZING, SelectionState.MOVING)


class EditorOverlay(Gtk.Window):
    """Layer-shell window showing the live composite over the captured monitor."""

    def __init__(self, session: Session, save_path: Optional[Path] = None):
        super().__init__(title="Fireshot")
        if not session.editing:
            raise ValueError("Session has no frame to edit")
        self.session = session
        self.config = session.config
        self.save_path = save_path

        # Must be done before the window is realized
        GtkLayerShell.init_for_window(self)
        GtkLayerShell.set_layer(self, GtkLayerShell.Layer.OVERLAY)
        for edge in (
            GtkLayerShell.Edge.TOP,
            GtkLayerShell.Edge.BOTTOM,
            GtkLayerShell.Edge.LEFT,
            GtkLayerShell.Edge.RIGHT,
        ):
            GtkLayerShell.set_anchor(self, edge, True)
        GtkLayerShell.set_exclusive_zone(self, -1)
        GtkLayerShell.set_keyboard_mode(self, GtkLayerShell.KeyboardMode.EXCLUSIVE)

        self.set_decorated(False)
        self.set_skip_taskbar_hint(True)
        self.set_skip_pager_hint(True)

        self.drawing_area = Gtk.DrawingArea()
        self.drawing_area.connect("draw", self._on_draw)
        self.add(self.drawing_area)

        frame = session.frame
        self.pointer = (frame.width / 2, frame.height / 2)
        self.text_pos: Optional[tuple[float, float]] = None
        self.text = ""
        self._queued: list[ExportRequest] = []
        self._close_after_export = False

        self.drawing_area.set_events(
            Gdk.EventMask.BUTTON_PRESS_MASK
            | Gdk.EventMask.BUTTON_RELEASE_MASK
            | Gdk.EventMask.POINTER_MOTION_MASK
            | Gdk.EventMask.KEY_PRESS_MASK
        )
        self.drawing_area.connect("button-press-event", self._on_button_press)
        self.drawing_area.connect("button-release-event", self._on_button_release)
        self.drawing_area.connect("motion-notify-event", self._on_motion)
        self.connect("key-press-event", self._on_key_press)

        self.drawing_area.set_can_focus(True)
        self.drawing_area.grab_focus()
        self.show_all()
        GLib.idle_add(self._set_cursor)

    def _set_cursor(self):
        window = self.get_window()
        if window:
            cursor = Gdk.Cursor.new_from_name(window.get_display(), "crosshair")
            window.set_cursor(cursor)
        self.drawing_area.queue_draw()
        return False

    def _scale(self) -> float:
        """Frame pixels per widget pixel (fractional/HiDPI outputs)."""
        allocated = self.drawing_area.get_allocated_width()
        return self.session.frame.width / allocated if allocated else 1.0

    def _to_frame(self, event) -> tuple[float, float]:
        scale = self._scale()
        return (event.x * scale, event.y * scale)

    # -- drawing ------------------------------------------------------------

    def _on_draw(self, widget, cr):
        session = self.session
        if not session.editing:
            return False
        frame = session.frame
        scale = self._scale()
        cr.scale(1 / scale, 1 / scale)

        cr.set_source_surface(session.preview(), 0, 0)
        cr.get_source().set_filter(cairo.FILTER_NEAREST)
        cr.paint()

        selection = session.selection
        rect = selection.rect
        draw_selection_overlay(cr, rect, frame.width, frame.height)
        if rect is not None:
            if session.tool == Tool.SELECT or not selection.is_confirmed:
                draw_handles(cr, rect)
            if selection.state in GRAB_STATES:
                draw_dimension_text(cr, rect)
            if selection.is_confirmed:
                settings = session.settings
                draw_tool_status(
                    cr, session.tool.value, settings.color, settings.stroke_width,
                    rect.x + 6, min(rect.bottom + 24, frame.height - 8),
                )
        else:
            draw_crosshair(cr, *self.pointer)

        if self.text_pos is not None:
            settings = session.settings
            draw_text_cursor(cr, *self.text_pos, self.text, settings.font, settings.font_size, settings.color)

        draw_instructions(cr, EDIT_HELP if selection.is_confirmed else SELECT_HELP)
        return False

    # -- pointer --------------------------------------------------------------

    def _on_button_press(self, widget, event):
        if event.button == 3:  # Right-click cancels
            self._cancel()
            return True
        if event.button != 1:
            return True

        pos = self._to_frame(event)
        if self.session.drawing_enabled and self.session.tool == Tool.TEXT:
            self._commit_text()
            self.text_pos = pos
            self.text = ""
        else:
            self.session.press(pos)
        widget.queue_draw()
        return True

    def _on_button_release(self, widget, event):
        if event.button == 1 and self.session.release():
            widget.queue_draw()
        return True

    def _on_motion(self, widget, event):
        self.pointer = self._to_frame(event)
        self.session.motion(self.pointer)
        widget.queue_draw()
        return True

    # -- keyboard ---------------------------------------------------------------

    def _on_key_press(self, widget, event):
        ctrl = bool(event.state & Gdk.ModifierType.CONTROL_MASK)
        shift = bool(event.state & Gdk.ModifierType.SHIFT_MASK)
        keyval = Gdk.keyval_to_lower(event.keyval)
        session = self.session

        if self.text_pos is not None and not ctrl:
            self._on_text_key(event, shift)
        elif keyval == Gdk.KEY_Escape:
            self._escape()
            return True
        elif ctrl and keyval == Gdk.KEY_z:
            session.redo() if shift else session.undo()
        elif ctrl and keyval == Gdk.KEY_y:
            session.redo()
        elif ctrl and keyval == Gdk.KEY_c:
            self._export([ClipboardTarget()])
        elif ctrl and keyval == Gdk.KEY_s:
            self._export([FileTarget(self.save_path)])
        elif keyval in (Gdk.KEY_Return, Gdk.KEY_KP_Enter):
            self._on_enter()
        elif keyval == Gdk.KEY_Delete:
            session.clear_operations()
        elif keyval in NUDGE_KEYS and not session.drawing_enabled:
            dx, dy = NUDGE_KEYS[keyval]
            step = 10 if shift else 1
            session.selection.nudge(dx * step, dy * step)
        elif ctrl:
            return False
        elif keyval in TOOL_KEYS:
            session.select_tool(TOOL_KEYS[keyval])
        elif keyval in PALETTE:
            session.settings.color = PALETTE[keyval]
        elif keyval == Gdk.KEY_f:
            session.settings.filled = not session.settings.filled
        elif keyval == Gdk.KEY_bracketleft:
            session.settings.stroke_width = max(1, session.settings.stroke_width - 1)
        elif keyval == Gdk.KEY_bracketright:
            session.settings.stroke_width += 1
        else:
            return False

        self.drawing_area.queue_draw()
        return True

    def _on_text_key(self, event, shift: bool):
        if event.keyval == Gdk.KEY_Escape:
            self.text_pos = None
            self.text = ""
        elif event.keyval in (Gdk.KEY_Return, Gdk.KEY_KP_Enter):
            if shift:
                self.text += "\n"
            else:
                self._commit_text()
        elif event.keyval == Gdk.KEY_BackSpace:
            self.text = self.text[:-1]
        else:
            code = Gdk.keyval_to_unicode(event.keyval)
            if code >= 32:
                self.text += chr(code)

    def _commit_text(self):
        if self.text_pos is not None:
            self.session.add_text(self.text_pos, self.text)
        self.text_pos = None
        self.text = ""

    def _on_enter(self):
        if not self.session.selection.is_confirmed:
            result = self.session.confirm_selection()
            if result.is_failure:
                log.warning("Cannot confirm selection: %s", result.error)
            return
        targets: list[ExportTarget] = [FileTarget(self.save_path)]
        if self.config.enable_clipboard:
            targets.append(ClipboardTarget())
        self._export(targets, close_after=True)

    def _escape(self):
        if self.session.selection.state in GRAB_STATES:
            self.session.selection.cancel()
            self.drawing_area.queue_draw()
        else:
            self._cancel()

    # -- export -------------------------------------------------------------------

    def _export(self, targets: list[ExportTarget], close_after: bool = False):
        for target in targets:
            self._queued.append(ExportRequest(target, self.config.default_format, self.config.default_quality))
        self._close_after_export = self._close_after_export or close_after
        if not self.session.exporter.busy:
            self._start_next_export()

    def _start_next_export(self):
        while self._queued:
            request = self._queued.pop(0)
            result = self.session.export_current(request, wait=False)
            if result.is_success:
                GLib.timeout_add(EXPORT_POLL_MS, self._poll_export)
                return
            self._export_failed(result.error)
        if self._close_after_export:
            self._close()

    def _poll_export(self):
        result = self.session.poll_export()
        if result is None:
            return True
        if result.is_failure:
            self._export_failed(result.error)
        else:
            log.info("Exported to %s", result.value.path or result.value.target)
        self._start_next_export()
        return False

    def _export_failed(self, error):
        # Keep the editor open so the edits are not lost
        log.error("Export failed: %s", error)
        self._queued.clear()
        self._close_after_export = False

    # -- lifecycle -----------------------------------------------------------------

    def _cancel(self):
        self.session.cancel_session()
        self._close()

    def _close(self):
        self.hide()
        self.destroy()
        Gtk.main_quit()


def run_editor(session: Session, save_path: Optional[Path] = None) -> int:
    """Show the overlay for an editing session and run the GTK loop.

    Args:
        session: Session that already holds a captured frame
        save_path: Where Enter/Ctrl+S save (default: timestamped file in output_dir)

    Returns:
        Exit code (0 for success)
    """
    # Must be set before the display is opened
    os.environ.setdefault("GDK_BACKEND", "wayland")
    GLib.set_prgname("fireshot")
    GLib.set_application_name("Fireshot")

    EditorOverlay(session, save_path)
    Gtk.main()
    return 0
