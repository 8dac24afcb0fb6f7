import threading

import cairo
import pytest

from fireshot.emit import recording
from fireshot.errors import CaptureError, CaptureErrorKind, ExportErrorKind, InvariantViolation
from fireshot.export import ClipboardTarget, ExportRequest, FileTarget
from fireshot.frame import Frame, read_pixel
from fireshot.geometry import Monitor, Rect
from fireshot.compositor import render_once
from fireshot.operations import BLACK, RED, Line, Pixelate, Rectangle
from fireshot.selection import SelectionState
from fireshot.session import Session, SessionState
from fireshot.tools import Tool


@pytest.fixture
def make_session(config):
    sessions = []

    def factory(provider, **overrides):
        for key, value in overrides.items():
            setattr(config, key, value)
        session = Session(provider, config)
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()


def _snapshot(session):
    return (
        session.state,
        session.frame,
        session.monitor,
        session.selection.selection,
        len(session.tools),
    )


def test_gui_session_enters_editing(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    result = session.start_gui_session(monitor)
    assert result.is_success
    assert result.value is frame
    assert session.state == SessionState.EDITING
    assert session.selection.monitor == monitor
    assert session.selection.selection is None


def test_collaborator_cancel_restores_pre_capture_state(make_session, fake_provider, monitor):
    session = make_session(fake_provider(error=CaptureError(CaptureErrorKind.USER_CANCELLED)))
    before = _snapshot(session)
    result = session.start_gui_session(monitor)
    assert result.is_failure
    assert result.error.kind == CaptureErrorKind.USER_CANCELLED
    assert _snapshot(session) == before
    assert session.frame is None
    assert session.selection.selection is None


def test_capture_failure_emits_event(make_session, fake_provider, monitor):
    session = make_session(fake_provider(error=CaptureError(CaptureErrorKind.BACKEND_MISSING)))
    with recording() as events:
        session.start_gui_session(monitor)
    handled = [e for e in events if e["event_type"] == "error.handled"]
    assert handled[0]["data"]["kind"] == "backend_missing"
    assert handled[0]["data"]["stage"] == "capture"


def test_user_cancel_while_waiting(make_session, fake_provider, frame, monitor, gate):
    session = make_session(fake_provider(frame, gate=gate))
    timer = threading.Timer(0.05, session.cancel_session)
    timer.start()
    result = session.start_gui_session(monitor)
    timer.join()
    assert result.error.kind == CaptureErrorKind.USER_CANCELLED
    assert session.state == SessionState.UNINITIALIZED
    assert session.frame is None


def test_late_frame_after_cancel_is_discarded(make_session, fake_provider, frame, monitor, gate):
    provider = fake_provider(frame, gate=gate)
    session = make_session(provider)
    session.begin_capture(monitor)
    assert session.state == SessionState.AWAITING_FRAME
    assert session.poll_capture() is None

    session.cancel_session()
    gate.set()
    assert session.poll_capture() is None
    assert session.state == SessionState.UNINITIALIZED
    assert session.frame is None


def test_capture_timeout(make_session, fake_provider, frame, monitor, gate):
    session = make_session(fake_provider(frame, gate=gate), capture_timeout_ms=50)
    result = session.start_gui_session(monitor)
    assert result.error.kind == CaptureErrorKind.TIMEOUT
    assert session.state == SessionState.UNINITIALIZED


def test_poll_capture_delivers_frame(make_session, fake_provider, frame, monitor, gate):
    session = make_session(fake_provider(frame, gate=gate))
    session.begin_capture(monitor)
    gate.set()
    session._capture.future.result(5)
    result = session.poll_capture()
    assert result.is_success
    assert session.editing


def test_pointer_ignored_while_awaiting(make_session, fake_provider, frame, monitor, gate):
    session = make_session(fake_provider(frame, gate=gate))
    session.begin_capture(monitor)
    assert session.press((5, 5)) is False
    assert session.motion((9, 9)) is False
    assert session.release() is False
    assert session.undo() is False


def test_second_capture_while_active_is_a_bug(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    session.start_gui_session(monitor)
    with pytest.raises(InvariantViolation):
        session.begin_capture(monitor)


def test_frame_for_wrong_monitor_is_a_bug(make_session, fake_provider, frame):
    session = make_session(fake_provider(frame))
    with pytest.raises(InvariantViolation):
        session.start_gui_session(Monitor("OTHER", frame.width, frame.height))


def test_rectangle_export_scenario(make_session, fake_provider, tmp_path):
    monitor = Monitor("HD", 1920, 1080)
    session = make_session(fake_provider(Frame.solid(monitor, (1, 1, 1))))
    assert session.start_gui_session(monitor).is_success

    session.press((100, 100))
    session.motion((500, 400))
    session.release()
    assert session.confirm_selection().value.rect == Rect(100, 100, 400, 300)

    session.push_operation(Rectangle((120, 120), (300, 250), stroke_width=2, color=RED))
    target = tmp_path / "scenario.png"
    result = session.export_current(ExportRequest(FileTarget(target)))
    assert result.is_success
    assert result.value.path == target

    surface = cairo.ImageSurface.create_from_png(str(target))
    assert (surface.get_width(), surface.get_height()) == (400, 300)
    assert read_pixel(surface, 20, 80) == (255, 0, 0, 255)
    assert read_pixel(surface, 200, 150) == (255, 0, 0, 255)
    assert read_pixel(surface, 100, 80) == (255, 255, 255, 255)


def test_drawing_with_tools(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    session.start_gui_session(monitor)
    session.select_tool(Tool.LINE)

    # Until the selection is confirmed, presses still select
    session.press((2, 2))
    session.motion((40, 30))
    session.release()
    assert len(session.tools) == 0
    session.confirm_selection()

    session.press((10, 10))
    session.motion((30, 20))
    assert isinstance(session.draft_operation(), Line)
    session.release()
    assert session.tools.active == (Line((10, 10), (30, 20), 3, session.settings.color),)
    assert session.draft_operation() is None

    assert session.undo() is True
    assert session.redo() is True
    assert session.clear_operations() is True


def test_preview_includes_draft(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    session.start_gui_session(monitor)
    session.selection.set_rect(0, 0, monitor.width, monitor.height, confirm=True)
    session.select_tool(Tool.RECTANGLE)
    session.settings.filled = True
    session.press((10, 10))
    session.motion((20, 20))
    assert read_pixel(session.preview(), 15, 15)[:3] == (255, 59, 48)
    # The committed composite does not include the draft yet
    assert read_pixel(session.composite().surface, 15, 15) == (255, 255, 255, 255)


def test_text_tool(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    session.start_gui_session(monitor)
    assert session.add_text((5, 5), "hello") is True
    assert session.add_text((5, 5), "   ") is False
    assert len(session.tools) == 1


def test_full_capture_saves_whole_monitor(make_session, fake_provider, frame, monitor, tmp_path):
    session = make_session(fake_provider(frame))
    target = tmp_path / "full.png"
    result = session.start_full_capture(monitor, target)
    assert result.is_success
    assert result.value.path == target
    surface = cairo.ImageSurface.create_from_png(str(target))
    assert (surface.get_width(), surface.get_height()) == (monitor.width, monitor.height)


def test_full_capture_edit_after(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    result = session.start_full_capture(monitor, edit_after=True)
    assert result.value is frame
    assert session.selection.state == SelectionState.CONFIRMED
    assert session.selection.rect == monitor.rect


def test_export_without_frame(make_session, fake_provider):
    session = make_session(fake_provider())
    result = session.export_current()
    assert result.error.kind == ExportErrorKind.NO_IMAGE


def test_edit_during_export_makes_it_stale(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    session.start_gui_session(monitor)
    ticket = session.export_current(ExportRequest(ClipboardTarget()), wait=False).value
    session.push_operation(Line((0, 0), (5, 5)))
    ticket.future.result(5)

    result = session.poll_export()
    assert result.error.kind == ExportErrorKind.STALE
    assert len(session.tools) == 1
    assert session.completed_exports == [result]


def test_busy_export_is_rejected(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    session.start_gui_session(monitor)
    session.export_current(ExportRequest(ClipboardTarget()), wait=False)
    result = session.export_current(ExportRequest(ClipboardTarget()), wait=False)
    assert result.error.kind == ExportErrorKind.BUSY


def test_queued_exports_complete_in_order(make_session, fake_provider, frame, monitor, tmp_path):
    session = make_session(fake_provider(frame), export_busy_policy="queue")
    session.start_gui_session(monitor)
    first = tmp_path / "a.png"
    second = tmp_path / "b.png"
    session.export_current(ExportRequest(FileTarget(first)), wait=False)
    result = session.export_current(ExportRequest(FileTarget(second)))
    assert result.value.path == second
    assert first.exists() and second.exists()
    assert [r.value.path for r in session.completed_exports] == [first, second]


def test_cancel_while_editing_resets(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    before = _snapshot(session)
    session.start_gui_session(monitor)
    session.selection.set_rect(0, 0, 10, 10, confirm=True)
    session.push_operation(Line((0, 0), (5, 5)))
    session.export_current(ExportRequest(ClipboardTarget()), wait=False)

    assert session.cancel_session().is_success
    assert _snapshot(session) == before
    assert not session.exporter.busy


def test_unexpected_provider_error_still_resets(make_session, fake_provider, frame, monitor):
    provider = fake_provider(error=OSError("No space left on device"))
    session = make_session(provider)
    before = _snapshot(session)
    with pytest.raises(OSError):
        session.start_gui_session(monitor)
    assert _snapshot(session) == before

    provider.error = None
    provider.frame = frame
    assert session.start_gui_session(monitor).is_success


def test_undo_redo_restore_identical_pixels(make_session, fake_provider, patterned_frame, monitor):
    frame = patterned_frame(monitor)
    session = make_session(fake_provider(frame))
    session.start_gui_session(monitor)
    session.selection.set_rect(4, 4, 40, 30, confirm=True)
    pixelate = Pixelate(Rect(8, 8, 24, 16), 4)
    line = Line((6, 20), (40, 20), 3, BLACK)

    base = session.composite().pixels()
    session.push_operation(pixelate)
    after_pixelate = session.composite().pixels()
    session.push_operation(line)
    after_line = session.composite().pixels()
    assert base != after_pixelate != after_line

    assert session.undo()
    assert session.composite().pixels() == after_pixelate
    assert session.undo()
    assert session.composite().pixels() == base
    assert session.redo()
    assert session.composite().pixels() == after_pixelate
    assert session.redo()
    assert session.composite().pixels() == after_line

    # Both replay paths were taken and agree with an uncached render
    assert session.compositor.full_replays >= 2
    assert session.compositor.incremental_replays >= 2
    fresh = render_once(frame, session.selection.selection, [pixelate, line])
    assert fresh.pixels() == after_line


def test_drawing_outside_selection_is_ignored(make_session, fake_provider, frame, monitor):
    session = make_session(fake_provider(frame))
    session.start_gui_session(monitor)
    session.selection.set_rect(10, 10, 20, 20, confirm=True)
    session.select_tool(Tool.RECTANGLE)

    assert session.press((2, 2)) is False
    session.motion((20, 20))
    assert session.draft_operation() is None
    session.release()
    assert session.add_text((50, 40), "outside") is False
    assert len(session.tools) == 0

    assert session.press((12, 12)) is True
    session.motion((20, 20))
    session.release()
    assert len(session.tools) == 1
