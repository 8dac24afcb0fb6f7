"""One capture-to-export lifecycle.

The Session holds every piece of mutable state: frame, selection, operation
stack, generation counter, tool settings and pending work. It is driven from
a single thread (the GTK main loop, the CLI, or a test); capture and export
encoding run on worker threads and only hand results back through futures
that the session collects on its own thread.

Entry points return Result values. Recoverable errors never escape as
exceptions; InvariantViolation always does.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import cairo

from .capture import CaptureProvider
from .compositor import CompositedImage, Compositor
from .config import Config, get_config
from .drawing import render_operation
from .emit import emit
from .errors import (
    CaptureError,
    CaptureErrorKind,
    ExportError,
    ExportErrorKind,
    FireshotError,
    InvariantViolation,
    SelectionError,
)
from .export import ExportCoordinator, ExportRequest, ExportTicket, FileTarget
from .frame import Frame, copy_surface
from .generation import GenerationCounter
from .geometry import Monitor, Point, clamp
from .operations import Operation, Text
from .result import Result
from .selection import SelectionController
from .tools import Tool, ToolEngine, ToolSettings, build_operation

log = logging.getLogger(__name__)


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_FRAME = "awaiting_frame"
    EDITING = "editing"
    CLOSED = "closed"


@dataclass(eq=False)
class PendingCapture:
    monitor: Monitor
    future: Future
    deadline: Optional[float]
    cancelled: Future = field(default_factory=Future)

    def cancel(self):
        if not self.cancelled.done():
            self.cancelled.set_result(True)

    @property
    def cancel_requested(self) -> bool:
        return self.cancelled.done()


class Session:
    """Engine state for one capture, threaded through every UI callback."""

    def __init__(
        self,
        provider: CaptureProvider,
        config: Optional[Config] = None,
        exporter: Optional[ExportCoordinator] = None,
    ):
        self.config = config or get_config()
        self.provider = provider
        self.generation = GenerationCounter()
        self.selection = SelectionController(
            self.generation,
            min_size=self.config.min_selection_size,
            handle_margin=self.config.handle_margin,
        )
        self.tools = ToolEngine(self.generation)
        self.compositor = Compositor()
        self.exporter = exporter or ExportCoordinator(self.config)
        self.settings = ToolSettings.from_config(self.config)
        self.tool = Tool.SELECT
        self.state = SessionState.UNINITIALIZED
        self.frame: Optional[Frame] = None
        self.monitor: Optional[Monitor] = None
        self.completed_exports: list[Result] = []

        self._capture: Optional[PendingCapture] = None
        self._capture_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fireshot-capture")
        self._lock = threading.Lock()
        self._waiting = False
        self._draft: list[Point] = []

    # -- helpers ----------------------------------------------------------

    def _fail(self, error: FireshotError, stage: str) -> Result:
        log.debug("%s failed: %s", stage, error)
        emit("error.handled", dict(error.to_dict(), stage=stage))
        return Result.fail(error)

    def _require_editing(self):
        if self.state != SessionState.EDITING or self.frame is None:
            raise InvariantViolation(f"Session is {self.state.value}, not editing")

    def _clamp(self, pos: Point) -> Point:
        return (clamp(pos[0], 0, self.monitor.width), clamp(pos[1], 0, self.monitor.height))

    def _reset(self):
        """Back to the pre-capture state. Caller holds the lock."""
        self._capture = None
        self._draft = []
        self.exporter.abandon()
        self.tools.clear()
        self.tools.monitor = None
        self.selection.unbind()
        self.compositor.invalidate()
        self.frame = None
        self.monitor = None
        self.tool = Tool.SELECT
        self.state = SessionState.UNINITIALIZED
        self.generation.bump()

    # -- capture ------------------------------------------------------------

    def _acquire(self, monitor: Monitor, delay_ms: int) -> Frame:
        if delay_ms > 0:
            time.sleep(delay_ms / 1000.0)
        return self.provider.request_frame(monitor)

    def begin_capture(self, monitor: Monitor, delay_ms: int = 0) -> Result:
        """Ask the provider for a frame without waiting for it."""
        if self.state != SessionState.UNINITIALIZED:
            raise InvariantViolation(f"Cannot start a capture while {self.state.value}")
        timeout_ms = self.config.capture_timeout_ms
        deadline = time.monotonic() + (delay_ms + timeout_ms) / 1000.0 if timeout_ms > 0 else None
        future = self._capture_executor.submit(self._acquire, monitor, delay_ms)
        self._capture = PendingCapture(monitor, future, deadline)
        self.state = SessionState.AWAITING_FRAME
        emit("session.started", {"mode": "capture", "monitor": monitor.name})
        return Result.ok(self.state)

    def _finish_capture(self, pending: PendingCapture) -> Result:
        """Deliver or discard a finished capture. Caller holds the lock."""
        if pending is not self._capture:
            return Result.fail(CaptureError(CaptureErrorKind.USER_CANCELLED, "Capture was abandoned"))

        if pending.cancel_requested:
            self._reset()
            return self._fail(CaptureError(CaptureErrorKind.USER_CANCELLED, "Capture cancelled"), "capture")

        if not pending.future.done():
            self._reset()
            return self._fail(CaptureError(CaptureErrorKind.TIMEOUT, "Timed out waiting for frame"), "capture")

        try:
            frame = pending.future.result()
        except CaptureError as e:
            self._reset()
            return self._fail(e, "capture")
        except BaseException:
            # Anything but CaptureError is a provider bug; reset before propagating
            self._reset()
            raise

        if frame.monitor != pending.monitor:
            self._reset()
            raise InvariantViolation(f"Provider returned a frame for {frame.monitor.name}, not {pending.monitor.name}")

        self._capture = None
        self.frame = frame
        self.monitor = frame.monitor
        self.selection.bind(frame.monitor)
        self.tools.monitor = frame.monitor
        self.compositor.invalidate()
        self.state = SessionState.EDITING
        self.generation.bump()
        emit("capture.completed", {
            "monitor": frame.monitor.name,
            "width": frame.width,
            "height": frame.height,
        })
        return Result.ok(frame)

    def await_frame(self) -> Result:
        """Block until the frame arrives, the capture fails, times out, or is cancelled."""
        pending = self._capture
        if pending is None or self.state != SessionState.AWAITING_FRAME:
            raise InvariantViolation("No capture in progress")
        timeout = None
        if pending.deadline is not None:
            timeout = max(0.0, pending.deadline - time.monotonic())
        self._waiting = True
        try:
            wait([pending.future, pending.cancelled], timeout=timeout, return_when=FIRST_COMPLETED)
        finally:
            with self._lock:
                self._waiting = False
                result = self._finish_capture(pending)
        return result

    def poll_capture(self) -> Optional[Result]:
        """Non-blocking check for the event loop. None while still waiting."""
        pending = self._capture
        if pending is None or self.state != SessionState.AWAITING_FRAME:
            return None
        expired = pending.deadline is not None and time.monotonic() >= pending.deadline
        if not (pending.future.done() or pending.cancel_requested or expired):
            return None
        with self._lock:
            return self._finish_capture(pending)

    # -- entry points ---------------------------------------------------------

    def start_gui_session(self, monitor: Monitor, delay_ms: int = 0) -> Result:
        """Capture monitor and enter editing. Result value is the Frame."""
        self.begin_capture(monitor, delay_ms)
        return self.await_frame()

    def start_full_capture(
        self,
        monitor: Monitor,
        path: Optional[Path] = None,
        edit_after: bool = False,
        delay_ms: int = 0,
        fmt: Optional[str] = None,
    ) -> Result:
        """Capture the whole monitor.

        With edit_after the session stays in editing with the full monitor
        selected and the Frame is returned; otherwise the capture is exported
        to path and the ExportResult is returned.
        """
        result = self.start_gui_session(monitor, delay_ms)
        if result.is_failure:
            return result
        self.selection.set_rect(0, 0, monitor.width, monitor.height, confirm=True)
        if edit_after:
            return result
        request = ExportRequest(
            FileTarget(Path(path) if path else None),
            fmt or self.config.default_format,
            self.config.default_quality,
        )
        return self.export_current(request)

    def cancel_session(self) -> Result:
        """Abandon the capture or the edit and return to the pre-capture state."""
        with self._lock:
            pending = self._capture
            if pending is not None:
                pending.cancel()
                if self._waiting:
                    # The blocked await_frame() resets the session when it wakes.
                    return Result.ok(SessionState.UNINITIALIZED)
            if self.state == SessionState.CLOSED:
                return Result.ok(self.state)
            self._reset()
        log.debug("Session cancelled")
        return Result.ok(self.state)

    def export_current(self, request: Optional[ExportRequest] = None, wait: bool = True) -> Result:
        """Export the current composite.

        With wait the result value is the ExportResult; otherwise it is the
        ExportTicket and poll_export() delivers the outcome later.
        """
        if self.state != SessionState.EDITING:
            return self._fail(ExportError(ExportErrorKind.NO_IMAGE, "Nothing captured"), "export")
        if request is None:
            request = ExportRequest(FileTarget(), self.config.default_format, self.config.default_quality)
        try:
            ticket = self.exporter.export(self.composite(), request)
        except ExportError as e:
            return self._fail(e, "export")
        if not wait:
            return Result.ok(ticket)
        return self.finish_export(ticket)

    def finish_export(self, ticket: ExportTicket) -> Result:
        """Complete ticket, first completing any exports queued ahead of it."""
        while self.exporter.pending and self.exporter.pending[0] is not ticket:
            self.completed_exports.append(self._complete(self.exporter.pending[0]))
        if not self.exporter.pending:
            raise InvariantViolation(f"{ticket.id} is not pending")
        result = self._complete(ticket)
        self.completed_exports.append(result)
        return result

    def _complete(self, ticket: ExportTicket) -> Result:
        try:
            return Result.ok(self.exporter.complete(ticket, self.generation.value))
        except ExportError as e:
            return self._fail(e, "export")

    def poll_export(self) -> Optional[Result]:
        """Complete the oldest export if its encoding finished."""
        ticket = self.exporter.ready()
        if ticket is None:
            return None
        result = self._complete(ticket)
        self.completed_exports.append(result)
        return result

    def close(self):
        with self._lock:
            if self._capture is not None:
                self._capture.cancel()
            self._capture = None
            self.exporter.shutdown()
            self._capture_executor.shutdown(wait=False)
            self.state = SessionState.CLOSED

    # -- editing ------------------------------------------------------------------

    @property
    def editing(self) -> bool:
        return self.state == SessionState.EDITING

    @property
    def drawing_enabled(self) -> bool:
        return self.editing and self.tool != Tool.SELECT and self.selection.is_confirmed

    def select_tool(self, tool: Tool):
        self._draft = []
        self.tool = tool

    def press(self, pos: Point) -> bool:
        """Pointer down. Returns True when something visible changed."""
        if not self.editing:
            return False
        pos = self._clamp(pos)
        if self.drawing_enabled:
            if self.tool == Tool.TEXT or not self._in_selection(pos):
                return False
            self._draft = [pos]
            return True
        try:
            return self.selection.press(pos)
        except SelectionError as e:
            self._fail(e, "selection")
            return False

    def motion(self, pos: Point) -> bool:
        if not self.editing:
            return False
        pos = self._clamp(pos)
        if self._draft:
            if self.tool in (Tool.PENCIL, Tool.MARKER):
                if pos != self._draft[-1]:
                    self._draft.append(pos)
            else:
                self._draft = [self._draft[0], pos]
            return True
        return self.selection.update_pointer(pos)

    def release(self) -> bool:
        if not self.editing:
            return False
        if self._draft:
            op = self.draft_operation()
            self._draft = []
            if op is None:
                return True
            self.tools.push(op)
            return True
        return self.selection.release()

    def draft_operation(self) -> Optional[Operation]:
        """The operation the current gesture would produce on release."""
        if not self._draft:
            return None
        return build_operation(
            self.tool,
            self._draft,
            self.settings,
            counter_number=self.tools.next_counter_number(),
        )

    def _in_selection(self, pos: Point) -> bool:
        """Drawing starts only inside a confirmed selection."""
        return not self.selection.is_confirmed or self.selection.rect.contains(pos)

    def add_text(self, pos: Point, content: str) -> bool:
        if not self.editing or not content.strip():
            return False
        if not self._in_selection(self._clamp(pos)):
            return False
        self.tools.push(Text(
            self._clamp(pos), content, self.settings.font, self.settings.font_size, self.settings.color
        ))
        return True

    def confirm_selection(self) -> Result:
        if not self.editing:
            return self._fail(SelectionError("Nothing captured"), "selection")
        try:
            return Result.ok(self.selection.confirm())
        except SelectionError as e:
            return self._fail(e, "selection")

    def push_operation(self, op: Operation) -> int:
        self._require_editing()
        return self.tools.push(op)

    def undo(self) -> bool:
        return self.editing and self.tools.undo()

    def redo(self) -> bool:
        return self.editing and self.tools.redo()

    def clear_operations(self) -> bool:
        return self.editing and self.tools.clear()

    # -- rendering ------------------------------------------------------------------

    def composite(self) -> CompositedImage:
        """Composite cropped to the selection (whole monitor if none)."""
        self._require_editing()
        return self.compositor.render(
            self.frame, self.selection.selection, self.tools.active, self.generation.value
        )

    def preview(self) -> cairo.ImageSurface:
        """Uncropped composite for the overlay, including the in-progress draft."""
        self._require_editing()
        surface = self.compositor.render_full(self.frame, self.tools.active)
        draft = self.draft_operation()
        if draft is None:
            return surface
        surface = copy_surface(surface)
        render_operation(surface, draft)
        return surface
