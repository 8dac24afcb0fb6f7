"""Encoding and hand-off of finished composites.

Handles:
- Immutable snapshots of a CompositedImage for the encode worker
- PNG encoding through cairo, other formats through GdkPixbuf
- File sink with atomic replace
- Clipboard sink via wl-copy / xclip
- Busy and stale-generation policies

The worker only encodes. Generation checks and sink writes happen in
complete(), on the thread that owns the session.
"""

import io
import itertools
import json
import logging
import os
import subprocess
import tempfile
import uuid
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Collection, Optional, Protocol, Union

import cairo
import numpy as np

from .compositor import CompositedImage
from .config import Config, get_config
from .emit import emit
from .errors import ExportError, ExportErrorKind, InvariantViolation
from .frame import PIXEL_FORMAT
from .hooks import notify_export

log = logging.getLogger(__name__)

MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "webp": "image/webp",
    "bmp": "image/bmp",
}


@dataclass(frozen=True)
class FileTarget:
    """Write to path, or to a timestamped file in output_dir when None."""

    path: Optional[Path] = None


@dataclass(frozen=True)
class ClipboardTarget:
    pass


ExportTarget = Union[FileTarget, ClipboardTarget]


@dataclass(frozen=True)
class ExportRequest:
    target: ExportTarget = field(default_factory=FileTarget)
    format: str = "png"
    quality: int = 90

    def __post_init__(self):
        fmt = self.format.lower()
        if fmt not in MIME_TYPES:
            raise ValueError(f"Unsupported export format: {self.format}")
        object.__setattr__(self, "format", "jpeg" if fmt == "jpg" else fmt)

    @property
    def mime_type(self) -> str:
        return MIME_TYPES[self.format]


@dataclass(frozen=True)
class ExportSnapshot:
    """Pixels and generation copied out of the live engine at dispatch time."""

    data: bytes
    width: int
    height: int
    stride: int
    generation: int

    @classmethod
    def from_image(cls, image: CompositedImage) -> "ExportSnapshot":
        return cls(image.pixels(), image.width, image.height, image.stride, image.generation)

    def to_surface(self) -> cairo.ImageSurface:
        return cairo.ImageSurface.create_for_data(
            bytearray(self.data), PIXEL_FORMAT, self.width, self.height, self.stride
        )

    def straight_rgba(self) -> np.ndarray:
        """Un-premultiplied RGBA rows, as GdkPixbuf expects."""
        words = np.ndarray(
            shape=(self.height, self.width),
            dtype=np.uint32,
            buffer=self.data,
            strides=(self.stride, 4),
        )
        alpha = (words >> 24).astype(np.uint32)
        out = np.empty((self.height, self.width, 4), dtype=np.uint8)
        safe = np.where(alpha == 0, 1, alpha)
        for index, shift in enumerate((16, 8, 0)):
            channel = (words >> shift) & 0xFF
            out[:, :, index] = np.where(alpha == 0, 0, (channel * 255 + safe // 2) // safe)
        out[:, :, 3] = alpha
        return out


def _encode_with_pixbuf(snapshot: ExportSnapshot, fmt: str, quality: int) -> bytes:
    import gi
    gi.require_version("GdkPixbuf", "2.0")
    from gi.repository import GdkPixbuf, GLib

    rgba = snapshot.straight_rgba()
    pixbuf = GdkPixbuf.Pixbuf.new_from_bytes(
        GLib.Bytes.new(rgba.tobytes()),
        GdkPixbuf.Colorspace.RGB,
        True,
        8,
        snapshot.width,
        snapshot.height,
        snapshot.width * 4,
    )
    if fmt in ("jpeg", "webp"):
        ok, buffer = pixbuf.save_to_bufferv(fmt, ["quality"], [str(quality)])
    else:
        ok, buffer = pixbuf.save_to_bufferv(fmt, [], [])
    if not ok:
        raise ExportError(ExportErrorKind.ENCODE_FAILED, f"GdkPixbuf could not encode {fmt}")
    return bytes(buffer)


def encode(snapshot: ExportSnapshot, fmt: str = "png", quality: int = 90) -> bytes:
    """Encode snapshot to fmt. Raises ExportError(ENCODE_FAILED)."""
    try:
        if fmt == "png":
            buffer = io.BytesIO()
            snapshot.to_surface().write_to_png(buffer)
            return buffer.getvalue()
        return _encode_with_pixbuf(snapshot, fmt, quality)
    except ExportError:
        raise
    except Exception as exc:
        raise ExportError(ExportErrorKind.ENCODE_FAILED, f"Encoding {fmt} failed: {exc}") from exc


class Sink(Protocol):
    def write(self, data: bytes) -> None:
        ...


class FileSink:
    """Writes to a temporary file beside path, then renames it into place."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def write(self, data: bytes) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".part", dir=self.path.parent
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
            log.debug("Wrote %d bytes to %s", len(data), self.path)
        except OSError as exc:
            raise ExportError(ExportErrorKind.IO_FAILURE, f"Could not write {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)


class ClipboardSink:
    """Places bytes on the clipboard with wl-copy, falling back to xclip."""

    def __init__(self, mime_type: str = "image/png", timeout: float = 5.0):
        self.mime_type = mime_type
        self.timeout = timeout

    def commands(self) -> list[list[str]]:
        xclip = ["xclip", "-selection", "clipboard", "-t", self.mime_type, "-i"]
        if os.environ.get("WAYLAND_DISPLAY"):
            return [["wl-copy", "--type", self.mime_type], xclip]
        return [xclip]

    def write(self, data: bytes) -> None:
        failures = []
        for command in self.commands():
            try:
                result = subprocess.run(
                    command,
                    input=data,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=self.timeout,
                )
            except FileNotFoundError:
                failures.append(f"{command[0]} not found")
                continue
            except subprocess.TimeoutExpired:
                failures.append(f"{command[0]} timed out")
                continue
            if result.returncode == 0:
                log.debug("Copied to clipboard with %s", command[0])
                return
            failures.append(f"{command[0]} exited {result.returncode}")
        raise ExportError(ExportErrorKind.CLIPBOARD_UNAVAILABLE, "; ".join(failures) or "no clipboard tool")


@dataclass
class ExportResult:
    """Result of a completed export."""

    target: str
    width: int
    height: int
    format: str
    generation: int
    timestamp: str
    path: Optional[Path] = None
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "path": str(self.path) if self.path else None,
            "width": self.width,
            "height": self.height,
            "format": self.format,
            "generation": self.generation,
            "stale": self.stale,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(eq=False)
class ExportTicket:
    """One dispatched export awaiting completion."""

    id: str
    request: ExportRequest
    snapshot: ExportSnapshot
    sink: Sink
    future: Future
    path: Optional[Path] = None

    @property
    def generation(self) -> int:
        return self.snapshot.generation

    def done(self) -> bool:
        return self.future.done()


def default_output_path(config: Config, fmt: str, taken: Collection[Path] = ()) -> Path:
    """Timestamped path in output_dir, suffixed -2, -3... if it exists or is in taken."""
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    ext = "jpg" if fmt == "jpeg" else fmt
    path = config.output_dir / f"fireshot_{timestamp}.{ext}"
    for n in itertools.count(2):
        if path not in taken and not path.exists():
            return path
        path = config.output_dir / f"fireshot_{timestamp}-{n}.{ext}"


class ExportCoordinator:
    """Runs at most one export at a time for a session.

    export_busy_policy "reject" refuses a second export while one is pending;
    "queue" lines it up behind the pending one. stale_export_policy "cancel"
    skips the sink when edits happened during encoding; "report" writes and
    flags the result as stale.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        sink_factory: Optional[Callable[[ExportRequest, Optional[Path]], Sink]] = None,
    ):
        self.config = config or get_config()
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="fireshot-export")
        self._owns_executor = executor is None
        self._sink_factory = sink_factory or self._default_sink
        self._pending: deque[ExportTicket] = deque()
        self._ids = itertools.count(1)

    @property
    def busy(self) -> bool:
        return bool(self._pending)

    @property
    def pending(self) -> tuple[ExportTicket, ...]:
        return tuple(self._pending)

    def _default_sink(self, request: ExportRequest, path: Optional[Path]) -> Sink:
        if isinstance(request.target, ClipboardTarget):
            return ClipboardSink(request.mime_type)
        return FileSink(path)

    def export(self, image: CompositedImage, request: ExportRequest) -> ExportTicket:
        """Snapshot image and start encoding it in the background."""
        if self._pending and self.config.export_busy_policy != "queue":
            raise ExportError(ExportErrorKind.BUSY, "An export is already in progress")

        snapshot = ExportSnapshot.from_image(image)
        path = None
        if isinstance(request.target, FileTarget):
            path = Path(request.target.path) if request.target.path else default_output_path(
                self.config, request.format, {t.path for t in self._pending}
            )
        future = self._executor.submit(encode, snapshot, request.format, request.quality)
        ticket = ExportTicket(
            id=f"export-{next(self._ids)}-{uuid.uuid4().hex[:8]}",
            request=request,
            snapshot=snapshot,
            sink=self._sink_factory(request, path),
            future=future,
            path=path,
        )
        self._pending.append(ticket)
        emit("operation.started", {
            "operation_type": "fireshot.export",
            "operation_id": ticket.id,
            "target": _target_name(request.target),
            "generation": snapshot.generation,
        })
        return ticket

    def ready(self) -> Optional[ExportTicket]:
        """The oldest pending ticket if its encoding has finished."""
        if self._pending and self._pending[0].done():
            return self._pending[0]
        return None

    def complete(
        self,
        ticket: ExportTicket,
        current_generation: int,
    ) -> ExportResult:
        """Finish ticket: wait for encoding, apply the stale policy, write to the sink."""
        if not self._pending or self._pending[0] is not ticket:
            raise InvariantViolation(f"{ticket.id} is not the oldest pending export")
        try:
            try:
                data = ticket.future.result()
            except ExportError:
                raise
            except Exception as exc:
                raise ExportError(ExportErrorKind.ENCODE_FAILED, str(exc)) from exc

            stale = current_generation != ticket.generation
            if stale and self.config.stale_export_policy != "report":
                raise ExportError(
                    ExportErrorKind.STALE,
                    f"Image changed during export (generation {ticket.generation} -> {current_generation})",
                )

            ticket.sink.write(data)
        except ExportError as exc:
            self._pending.popleft()
            emit("operation.completed", {
                "operation_type": "fireshot.export",
                "operation_id": ticket.id,
                "success": False,
                "error_message": str(exc),
            })
            raise

        self._pending.popleft()
        result = ExportResult(
            target=_target_name(ticket.request.target),
            width=ticket.snapshot.width,
            height=ticket.snapshot.height,
            format=ticket.request.format,
            generation=ticket.generation,
            timestamp=datetime.now().isoformat(),
            path=ticket.path,
            stale=stale,
        )
        emit("operation.completed", {
            "operation_type": "fireshot.export",
            "operation_id": ticket.id,
            "success": True,
            "stale": stale,
        })
        if result.path is not None:
            emit("artifact.created", {
                "file_path": str(result.path),
                "file_type": "screenshot",
                "metadata": {
                    "width": result.width,
                    "height": result.height,
                    "format": result.format,
                    "timestamp": result.timestamp,
                },
            })
            notify_export(result, self.config)
        log.info("Export %s finished: %s", ticket.id, result.path or result.target)
        return result

    def abandon(self) -> int:
        """Drop every pending export without writing anything."""
        dropped = len(self._pending)
        while self._pending:
            self._pending.popleft().future.cancel()
        return dropped

    def shutdown(self):
        self.abandon()
        if self._owns_executor:
            self._executor.shutdown(wait=False)


def _target_name(target: ExportTarget) -> str:
    return "clipboard" if isinstance(target, ClipboardTarget) else "file"
