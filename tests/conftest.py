"""Shared fixtures.

Nothing here needs a display: frames are built in memory with cairo and
captures come from a fake provider.
"""

import threading

import numpy as np
import pytest

from fireshot.config import Config
from fireshot.emit import configure
from fireshot.frame import Frame, new_surface, pixel_view
from fireshot.generation import GenerationCounter
from fireshot.geometry import Monitor


@pytest.fixture(autouse=True)
def quiet_events():
    """Keep structured events off stderr during tests."""
    configure("fireshot-test", stderr=False)
    yield
    configure("fireshot", stderr=True)


@pytest.fixture
def monitor():
    return Monitor("TEST-1", 64, 48)


@pytest.fixture
def frame(monitor):
    return Frame.solid(monitor, (1, 1, 1))


@pytest.fixture
def generation():
    return GenerationCounter()


@pytest.fixture
def config(tmp_path):
    return Config(
        output_dir=tmp_path / "out",
        hooks_dir=None,
        enable_clipboard=False,
        capture_timeout_ms=2000,
    )


def make_patterned_frame(monitor: Monitor) -> Frame:
    """Opaque frame whose pixels differ from their neighbours."""
    surface = new_surface(monitor.width, monitor.height)
    view = pixel_view(surface)
    ys, xs = np.mgrid[0:monitor.height, 0:monitor.width]
    view[:, :, 0] = (xs * 37 + ys * 11) % 256
    view[:, :, 1] = (xs * 13 + ys * 29) % 256
    view[:, :, 2] = (xs * 7 + ys * 53) % 256
    view[:, :, 3] = 255
    surface.mark_dirty()
    return Frame(surface, monitor)


@pytest.fixture
def patterned_frame():
    return make_patterned_frame


class FakeProvider:
    """CaptureProvider returning a fixed frame or raising a fixed error.

    With gate set, request_frame blocks until the gate is released.
    """

    def __init__(self, frame=None, error=None, gate=None):
        self.frame = frame
        self.error = error
        self.gate = gate
        self.calls = 0

    def request_frame(self, monitor):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return self.frame


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def gate():
    event = threading.Event()
    yield event
    event.set()
