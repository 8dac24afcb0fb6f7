"""Interactive selection rectangle and its pointer-driven state machine.

States:
    IDLE       no drag in progress; a rectangle may exist awaiting confirm
    DRAGGING   rectangle follows the pointer from an anchor
    RESIZING   one handle (index into HANDLES) follows the pointer
    MOVING     whole rectangle follows the pointer
    CONFIRMED  rectangle locked for editing; handles may still resize it

Every rectangle the controller holds satisfies the monitor bounds and the
minimum size, including the ones produced mid-drag.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import SelectionError
from .generation import GenerationCounter
from .geometry import HANDLES, Monitor, Point, Rect, clamp, hit_handle

log = logging.getLogger(__name__)


class SelectionState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    RESIZING = "resizing"
    MOVING = "moving"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class Selection:
    x: int
    y: int
    width: int
    height: int
    monitor: Monitor

    @property
    def rect(self) -> Rect:
        return Rect(self.x, self.y, self.width, self.height)


class SelectionController:
    """Owns the selection rectangle. The only place a Selection is created."""

    def __init__(
        self,
        generation: GenerationCounter,
        min_size: int = 4,
        handle_margin: float = 8,
        monitor: Optional[Monitor] = None,
    ):
        if min_size < 1:
            raise ValueError("min_size must be >= 1")
        self.generation = generation
        self.min_size = min_size
        self.handle_margin = handle_margin
        self.monitor: Optional[Monitor] = None
        self.state = SelectionState.IDLE
        self.selection: Optional[Selection] = None
        self.handle: Optional[int] = None

        self._anchor: Optional[Point] = None
        self._grab_offset: Point = (0, 0)
        self._grab_origin_state = SelectionState.IDLE
        self._grab_rect: Optional[Rect] = None

        if monitor is not None:
            self.bind(monitor)

    # -- state helpers --------------------------------------------------

    @property
    def rect(self) -> Optional[Rect]:
        return self.selection.rect if self.selection else None

    @property
    def is_confirmed(self) -> bool:
        return self.state == SelectionState.CONFIRMED

    def _set(self, rect: Optional[Rect], state: Optional[SelectionState] = None) -> bool:
        new_state = state or self.state
        new_selection = Selection(*rect, monitor=self.monitor) if rect else None
        if new_selection == self.selection and new_state == self.state:
            return False
        self.selection = new_selection
        self.state = new_state
        self.generation.bump()
        return True

    def _require_monitor(self) -> Monitor:
        if self.monitor is None:
            raise SelectionError("No active monitor bound")
        return self.monitor

    def _valid(self, rect: Rect) -> bool:
        return (
            self.monitor is not None
            and rect.within(self.monitor.rect)
            and rect.width >= self.min_size
            and rect.height >= self.min_size
        )

    def bind(self, monitor: Monitor):
        """Bind the active monitor, dropping any previous selection."""
        if monitor.width < self.min_size or monitor.height < self.min_size:
            raise SelectionError(f"Monitor {monitor.name} is smaller than the minimum selection")
        self.monitor = monitor
        self.handle = None
        self._anchor = None
        self._set(None, SelectionState.IDLE)

    def unbind(self):
        self.monitor = None
        self.handle = None
        self._anchor = None
        self._set(None, SelectionState.IDLE)

    # -- geometry -------------------------------------------------------

    def _span(self, anchor: float, pos: float, limit: int) -> tuple[int, int]:
        """Origin and length along one axis from anchor toward pos."""
        pos = clamp(pos, 0, limit)
        anchor = int(clamp(anchor, 0, limit))
        if pos >= anchor:
            length = max(int(round(pos)) - anchor, self.min_size)
            start = anchor
        else:
            length = max(anchor - int(pos), self.min_size)
            start = anchor - length
        start = int(clamp(start, 0, limit - length))
        return start, length

    def _drag_rect(self, pos: Point) -> Rect:
        monitor = self._require_monitor()
        x, w = self._span(self._anchor[0], pos[0], monitor.width)
        y, h = self._span(self._anchor[1], pos[1], monitor.height)
        return Rect(x, y, w, h)

    def _resize_rect(self, pos: Point) -> Rect:
        monitor = self._require_monitor()
        handle = HANDLES[self.handle]
        left, top = self._grab_rect.x, self._grab_rect.y
        right, bottom = self._grab_rect.right, self._grab_rect.bottom
        px = int(round(pos[0]))
        py = int(round(pos[1]))
        if handle.left:
            left = int(clamp(px, 0, right - self.min_size))
        if handle.right:
            right = int(clamp(px, left + self.min_size, monitor.width))
        if handle.top:
            top = int(clamp(py, 0, bottom - self.min_size))
        if handle.bottom:
            bottom = int(clamp(py, top + self.min_size, monitor.height))
        return Rect(left, top, right - left, bottom - top)

    def _move_rect(self, pos: Point) -> Rect:
        monitor = self._require_monitor()
        rect = self._grab_rect
        x = int(clamp(round(pos[0] - self._grab_offset[0]), 0, monitor.width - rect.width))
        y = int(clamp(round(pos[1] - self._grab_offset[1]), 0, monitor.height - rect.height))
        return Rect(x, y, rect.width, rect.height)

    # -- operations -----------------------------------------------------

    def begin(self, origin: Point):
        """Start a new drag anchored at origin."""
        monitor = self._require_monitor()
        if self.state == SelectionState.CONFIRMED:
            raise SelectionError("Selection already confirmed")
        self._anchor = (clamp(origin[0], 0, monitor.width), clamp(origin[1], 0, monitor.height))
        self.handle = None
        self._set(self._drag_rect(self._anchor), SelectionState.DRAGGING)
        log.debug("Selection drag started at %s", origin)

    def grab_handle(self, handle: int):
        """Start resizing with the handle at index handle."""
        if self.selection is None:
            raise SelectionError("No selection to resize")
        if not 0 <= handle < len(HANDLES):
            raise SelectionError(f"Unknown handle {handle}")
        self._start_grab(SelectionState.RESIZING)
        self.handle = handle
        self.generation.bump()

    def _start_grab(self, state: SelectionState):
        origin = self._grab_origin_state if self.state in (
            SelectionState.RESIZING, SelectionState.MOVING
        ) else self.state
        if origin == SelectionState.DRAGGING:
            origin = SelectionState.IDLE
        self._grab_origin_state = origin
        self._grab_rect = self.rect
        self.state = state

    def press(self, pos: Point) -> bool:
        """Route a pointer press. Handles win over moving and dragging."""
        self._require_monitor()
        if self.selection is not None:
            handle = hit_handle(self.selection.rect, pos, self.handle_margin)
            if handle is not None:
                self.grab_handle(handle)
                return True
            if self.selection.rect.contains(pos) and self.state != SelectionState.DRAGGING:
                self._start_grab(SelectionState.MOVING)
                self._grab_offset = (pos[0] - self.selection.x, pos[1] - self.selection.y)
                self.generation.bump()
                return True
        if self.state == SelectionState.CONFIRMED:
            return False
        self.begin(pos)
        return True

    def update_pointer(self, pos: Point) -> bool:
        """Follow the pointer in the current drag state. Returns True on change."""
        if self.state == SelectionState.DRAGGING:
            return self._set(self._drag_rect(pos))
        if self.state == SelectionState.RESIZING:
            return self._set(self._resize_rect(pos))
        if self.state == SelectionState.MOVING:
            return self._set(self._move_rect(pos))
        return False

    def release(self) -> bool:
        """End the current drag, keeping the rectangle."""
        if self.state == SelectionState.DRAGGING:
            self._anchor = None
            return self._set(self.rect, SelectionState.IDLE)
        if self.state in (SelectionState.RESIZING, SelectionState.MOVING):
            self.handle = None
            self._grab_rect = None
            return self._set(self.rect, self._grab_origin_state)
        return False

    def confirm(self) -> Selection:
        """Lock the rectangle. Raises SelectionError if it is not usable."""
        if self.selection is None:
            raise SelectionError("Nothing selected")
        rect = self.selection.rect
        if rect.width < self.min_size or rect.height < self.min_size:
            raise SelectionError(
                f"Selection {rect.width}x{rect.height} is below minimum size {self.min_size}"
            )
        if not rect.within(self._require_monitor().rect):
            raise SelectionError("Selection is outside monitor bounds")
        self.handle = None
        self._anchor = None
        self._grab_rect = None
        self._set(rect, SelectionState.CONFIRMED)
        log.debug("Selection confirmed: %s", rect)
        return self.selection

    def cancel(self) -> bool:
        """Abandon the in-progress rectangle. No-op once confirmed."""
        if self.state == SelectionState.CONFIRMED:
            return False
        if self.state in (SelectionState.RESIZING, SelectionState.MOVING) and (
            self._grab_origin_state == SelectionState.CONFIRMED
        ):
            rect = self._grab_rect
            self.handle = None
            self._grab_rect = None
            return self._set(rect, SelectionState.CONFIRMED)
        self.handle = None
        self._anchor = None
        self._grab_rect = None
        return self._set(None, SelectionState.IDLE)

    def set_rect(self, x: int, y: int, width: int, height: int, confirm: bool = False) -> Selection:
        """Place the selection directly, e.g. for full-screen or --region captures."""
        self._require_monitor()
        rect = Rect(int(x), int(y), int(width), int(height))
        if not self._valid(rect):
            raise SelectionError(f"Invalid selection {rect} for monitor {self.monitor.name}")
        state = SelectionState.CONFIRMED if confirm else SelectionState.IDLE
        if self.state not in (SelectionState.IDLE, SelectionState.CONFIRMED):
            self.handle = None
            self._anchor = None
            self._grab_rect = None
        self._set(rect, state)
        return self.selection

    def nudge(self, dx: int, dy: int) -> bool:
        """Move the selection by a keyboard step, clamped to the monitor."""
        if self.selection is None or self.state not in (SelectionState.IDLE, SelectionState.CONFIRMED):
            return False
        monitor = self._require_monitor()
        rect = self.selection.rect
        x = int(clamp(rect.x + dx, 0, monitor.width - rect.width))
        y = int(clamp(rect.y + dy, 0, monitor.height - rect.height))
        return self._set(Rect(x, y, rect.width, rect.height))
