"""Frame acquisition.

Providers turn a Monitor into a Frame or raise CaptureError. The session
calls them from a worker thread, so they must not touch session state.
"""

import json
import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import cairo

from .config import Config, get_config
from .errors import CaptureError, CaptureErrorKind
from .frame import Frame
from .geometry import Monitor

log = logging.getLogger(__name__)

CANCEL_MARKERS = ("cancel", "denied", "aborted")


class CaptureProvider(Protocol):
    def request_frame(self, monitor: Monitor) -> Frame:
        ...


class WaylandCaptureProvider:
    """Captures outputs with the wayland-capture binary."""

    def __init__(self, config: Optional[Config] = None, timeout: Optional[float] = None):
        self.config = config or get_config()
        if timeout is None and self.config.capture_timeout_ms > 0:
            timeout = self.config.capture_timeout_ms / 1000
        # None waits for the backend indefinitely
        self.timeout = timeout

    def _run(self, args: list[str], timeout: Optional[float]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                [self.config.wayland_capture] + args,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except FileNotFoundError:
            raise CaptureError(
                CaptureErrorKind.BACKEND_MISSING,
                f"wayland-capture not found: {self.config.wayland_capture}",
            )
        except subprocess.TimeoutExpired:
            raise CaptureError(CaptureErrorKind.TIMEOUT, "Screen capture timed out")
        except OSError as e:
            raise CaptureError(
                CaptureErrorKind.PORTAL_UNAVAILABLE,
                f"Could not run {self.config.wayland_capture}: {e}",
            )

    def list_monitors(self) -> list[Monitor]:
        """All outputs reported by wayland-capture, primary first."""
        result = self._run(["--list", "--json"], timeout=5)
        if result.returncode != 0:
            raise CaptureError(
                CaptureErrorKind.PORTAL_UNAVAILABLE,
                f"Could not list outputs: {result.stderr.strip()}",
            )
        try:
            outputs = json.loads(result.stdout).get("outputs", [])
            return [Monitor.from_output(output) for output in outputs]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CaptureError(CaptureErrorKind.PORTAL_UNAVAILABLE, f"Bad output list: {e}")

    def find_monitor(self, name: Optional[str] = None) -> Monitor:
        """Monitor called name, or the primary one when name is None."""
        monitors = self.list_monitors()
        if not monitors:
            raise CaptureError(CaptureErrorKind.PORTAL_UNAVAILABLE, "No outputs available")
        if name is None:
            return monitors[0]
        for monitor in monitors:
            if monitor.name == name:
                return monitor
        raise CaptureError(CaptureErrorKind.PORTAL_UNAVAILABLE, f"Unknown output: {name}")

    def request_frame(self, monitor: Monitor) -> Frame:
        try:
            frame = self._capture_to_file(monitor)
        except OSError as e:
            raise CaptureError(CaptureErrorKind.PORTAL_UNAVAILABLE, f"Capture scratch space failed: {e}")
        log.debug("Captured %s: %dx%d", monitor.name, frame.width, frame.height)
        return frame

    def _capture_to_file(self, monitor: Monitor) -> Frame:
        with tempfile.TemporaryDirectory(prefix="fireshot-") as tmp:
            temp_path = Path(tmp) / "capture.png"
            result = self._run(
                ["--output", monitor.name, "--output-file", str(temp_path)],
                timeout=self.timeout,
            )
            if result.returncode != 0:
                stderr = result.stderr.strip()
                if any(marker in stderr.lower() for marker in CANCEL_MARKERS):
                    raise CaptureError(CaptureErrorKind.USER_CANCELLED, stderr)
                raise CaptureError(CaptureErrorKind.PORTAL_UNAVAILABLE, f"Screen capture failed: {stderr}")
            return _load_frame(temp_path, monitor)


class ImageFileCaptureProvider:
    """Serves an existing PNG as the frame, for editing saved screenshots."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def monitor(self) -> Monitor:
        surface = _read_png(self.path)
        return Monitor(self.path.name, surface.get_width(), surface.get_height())

    def request_frame(self, monitor: Monitor) -> Frame:
        return _load_frame(self.path, monitor)


def _read_png(path: Path) -> cairo.ImageSurface:
    try:
        return cairo.ImageSurface.create_from_png(str(path))
    except (cairo.Error, OSError, MemoryError) as e:
        raise CaptureError(CaptureErrorKind.PORTAL_UNAVAILABLE, f"Could not read {path}: {e}")


def _load_frame(path: Path, monitor: Monitor) -> Frame:
    surface = _read_png(path)
    size = (surface.get_width(), surface.get_height())
    if size != (monitor.width, monitor.height):
        raise CaptureError(
            CaptureErrorKind.PORTAL_UNAVAILABLE,
            f"Captured image is {size[0]}x{size[1]}, expected {monitor.width}x{monitor.height}",
        )
    return Frame.from_surface(surface, monitor)
