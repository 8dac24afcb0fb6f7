import pytest

from fireshot.errors import SelectionError
from fireshot.geometry import Monitor, Rect
from fireshot.selection import SelectionController, SelectionState


@pytest.fixture
def controller(generation, monitor):
    return SelectionController(generation, min_size=4, handle_margin=8, monitor=monitor)


def _assert_valid(controller):
    rect = controller.rect
    monitor = controller.monitor
    assert rect.x >= 0 and rect.y >= 0
    assert rect.right <= monitor.width
    assert rect.bottom <= monitor.height
    assert rect.width >= controller.min_size
    assert rect.height >= controller.min_size


def test_drag_stays_valid_at_every_step(controller):
    controller.begin((10, 10))
    for pos in [(12, 11), (-50, -50), (200, 300), (10, 10), (63.7, 47.9), (0, 47), (9, 12)]:
        controller.update_pointer(pos)
        _assert_valid(controller)
    assert controller.state == SelectionState.DRAGGING


def test_drag_towards_top_left(controller):
    controller.begin((30, 30))
    controller.update_pointer((10, 20))
    assert controller.rect == Rect(10, 20, 20, 10)


def test_begin_near_corner_is_shifted_inside(controller):
    controller.begin((62, 46))
    assert controller.rect == Rect(60, 44, 4, 4)


def test_begin_without_monitor(generation):
    controller = SelectionController(generation)
    with pytest.raises(SelectionError):
        controller.begin((1, 1))


def test_release_and_confirm(controller):
    controller.begin((5, 5))
    controller.update_pointer((25, 15))
    controller.release()
    assert controller.state == SelectionState.IDLE
    selection = controller.confirm()
    assert controller.is_confirmed
    assert selection.rect == Rect(5, 5, 20, 10)
    assert selection.monitor == controller.monitor


def test_confirm_without_selection_leaves_state(controller, generation):
    before = generation.value
    with pytest.raises(SelectionError):
        controller.confirm()
    assert controller.state == SelectionState.IDLE
    assert generation.value == before


def test_begin_after_confirm_is_rejected(controller):
    controller.set_rect(0, 0, 10, 10, confirm=True)
    with pytest.raises(SelectionError):
        controller.begin((30, 30))


def test_press_outside_confirmed_is_ignored(controller):
    controller.set_rect(0, 0, 10, 10, confirm=True)
    assert controller.press((40, 40)) is False
    assert controller.rect == Rect(0, 0, 10, 10)


def test_resize_moves_only_grabbed_edges(controller):
    controller.set_rect(10, 10, 20, 20)
    assert controller.press((30, 30)) is True
    assert controller.state == SelectionState.RESIZING
    assert controller.handle == 4

    controller.update_pointer((40, 35))
    assert controller.rect == Rect(10, 10, 30, 25)

    # Absorbed at the minimum size instead of flipping
    controller.update_pointer((0, 0))
    assert controller.rect == Rect(10, 10, 4, 4)

    # Stops at the monitor border
    controller.update_pointer((500, 500))
    assert controller.rect == Rect(10, 10, 54, 38)

    controller.release()
    assert controller.state == SelectionState.IDLE
    assert controller.handle is None


def test_top_edge_handle(controller):
    controller.set_rect(10, 10, 20, 20)
    controller.press((20, 10))
    assert controller.handle == 1
    controller.update_pointer((0, 2))
    assert controller.rect == Rect(10, 2, 20, 28)


def test_handle_wins_over_ongoing_drag(controller):
    controller.begin((10, 10))
    controller.update_pointer((30, 30))
    controller.press((30, 30))
    assert controller.state == SelectionState.RESIZING


def test_move_is_clamped(controller):
    controller.set_rect(10, 10, 20, 20)
    controller.press((20, 20))
    assert controller.state == SelectionState.MOVING
    controller.update_pointer((100, 100))
    assert controller.rect == Rect(44, 28, 20, 20)
    controller.update_pointer((-100, 5))
    assert controller.rect == Rect(0, 0, 20, 20)


def test_cancel_grab_from_confirmed_restores(controller):
    controller.set_rect(10, 10, 20, 20, confirm=True)
    controller.press((20, 20))
    controller.update_pointer((30, 30))
    assert controller.rect == Rect(20, 20, 20, 20)

    assert controller.cancel() is True
    assert controller.state == SelectionState.CONFIRMED
    assert controller.rect == Rect(10, 10, 20, 20)


def test_cancel_while_dragging_clears(controller):
    controller.begin((10, 10))
    controller.update_pointer((20, 20))
    controller.cancel()
    assert controller.state == SelectionState.IDLE
    assert controller.selection is None


def test_cancel_when_confirmed_is_noop(controller, generation):
    controller.set_rect(0, 0, 10, 10, confirm=True)
    before = generation.value
    assert controller.cancel() is False
    assert generation.value == before


def test_generation_bumps_only_on_change(controller, generation):
    controller.begin((10, 10))
    controller.update_pointer((20, 20))
    before = generation.value
    assert controller.update_pointer((20, 20)) is False
    assert generation.value == before
    controller.update_pointer((21, 20))
    assert generation.value > before


def test_update_pointer_when_idle(controller):
    assert controller.update_pointer((5, 5)) is False


@pytest.mark.parametrize("rect", [(-1, 0, 10, 10), (0, 0, 3, 10), (60, 0, 10, 10), (0, 40, 10, 10)])
def test_set_rect_rejects_invalid(controller, rect):
    with pytest.raises(SelectionError):
        controller.set_rect(*rect)
    assert controller.selection is None


def test_nudge_is_clamped(controller):
    controller.set_rect(0, 0, 10, 10)
    controller.nudge(-5, 3)
    assert controller.rect == Rect(0, 3, 10, 10)
    controller.nudge(100, 100)
    assert controller.rect == Rect(54, 38, 10, 10)


def test_bind_clears_previous_selection(controller):
    controller.set_rect(0, 0, 10, 10, confirm=True)
    controller.bind(Monitor("OTHER", 32, 32))
    assert controller.selection is None
    assert controller.state == SelectionState.IDLE
