import io
import os
import subprocess
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import cairo
import pytest

import fireshot.export as export_mod
from fireshot.compositor import render_once
from fireshot.config import Config
from fireshot.emit import recording
from fireshot.errors import ExportError, ExportErrorKind, InvariantViolation
from fireshot.export import (
    ClipboardSink,
    ClipboardTarget,
    ExportCoordinator,
    ExportRequest,
    ExportSnapshot,
    FileSink,
    FileTarget,
    default_output_path,
    encode,
)
from fireshot.operations import RED, Line

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class RecordingSink:
    def __init__(self, error=None):
        self.writes = []
        self.error = error

    def write(self, data):
        if self.error:
            raise self.error
        self.writes.append(data)


@pytest.fixture
def image(frame):
    return render_once(frame, None, [Line((0, 0), (20, 20), 2, RED)], generation=5)


def _coordinator(config, sink=None, **overrides):
    for key, value in overrides.items():
        setattr(config, key, value)
    sink = sink or RecordingSink()
    coordinator = ExportCoordinator(
        config,
        executor=ThreadPoolExecutor(max_workers=1),
        sink_factory=lambda request, path: sink,
    )
    return coordinator, sink


def test_request_normalizes_jpg():
    request = ExportRequest(ClipboardTarget(), "JPG", 80)
    assert request.format == "jpeg"
    assert request.mime_type == "image/jpeg"


def test_request_rejects_unknown_format():
    with pytest.raises(ValueError):
        ExportRequest(FileTarget(), "tiff")


def test_encode_png_round_trip(image):
    data = encode(ExportSnapshot.from_image(image), "png")
    assert data.startswith(PNG_SIGNATURE)
    decoded = cairo.ImageSurface.create_from_png(io.BytesIO(data))
    assert (decoded.get_width(), decoded.get_height()) == (image.width, image.height)


def test_encode_failure_is_reported(image, monkeypatch):
    def broken(*args):
        raise RuntimeError("no loader")

    monkeypatch.setattr(export_mod, "_encode_with_pixbuf", broken)
    with pytest.raises(ExportError) as excinfo:
        encode(ExportSnapshot.from_image(image), "webp")
    assert excinfo.value.kind == ExportErrorKind.ENCODE_FAILED


def test_straight_rgba_unpremultiplies(image):
    rgba = ExportSnapshot.from_image(image).straight_rgba()
    assert rgba.shape == (image.height, image.width, 4)
    assert tuple(rgba[40, 60]) == (255, 255, 255, 255)


def test_file_sink_replaces_atomically(tmp_path):
    target = tmp_path / "nested" / "shot.png"
    FileSink(target).write(b"first")
    FileSink(target).write(b"second")
    assert target.read_bytes() == b"second"
    assert os.listdir(target.parent) == ["shot.png"]


def test_file_sink_failure_keeps_existing_file(tmp_path, monkeypatch):
    target = tmp_path / "shot.png"
    target.write_bytes(b"original")

    def fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(export_mod.os, "replace", fail_replace)
    with pytest.raises(ExportError) as excinfo:
        FileSink(target).write(b"new")
    assert excinfo.value.kind == ExportErrorKind.IO_FAILURE
    assert target.read_bytes() == b"original"
    assert os.listdir(tmp_path) == ["shot.png"]


def test_clipboard_falls_back_to_xclip(monkeypatch):
    calls = []

    def fake_run(command, **kwargs):
        calls.append((command[0], kwargs["input"]))
        if command[0] == "wl-copy":
            raise FileNotFoundError(command[0])
        return subprocess.CompletedProcess(command, 0)

    monkeypatch.setenv("WAYLAND_DISPLAY", "wayland-1")
    monkeypatch.setattr(export_mod.subprocess, "run", fake_run)
    ClipboardSink("image/png").write(b"payload")
    assert calls == [("wl-copy", b"payload"), ("xclip", b"payload")]


def test_clipboard_without_wayland_uses_xclip_only(monkeypatch):
    monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)
    assert [c[0] for c in ClipboardSink().commands()] == ["xclip"]


def test_clipboard_unavailable(monkeypatch):
    monkeypatch.setenv("WAYLAND_DISPLAY", "wayland-1")
    monkeypatch.setattr(
        export_mod.subprocess,
        "run",
        lambda command, **kwargs: subprocess.CompletedProcess(command, 1),
    )
    with pytest.raises(ExportError) as excinfo:
        ClipboardSink().write(b"payload")
    assert excinfo.value.kind == ExportErrorKind.CLIPBOARD_UNAVAILABLE


def test_export_writes_to_sink(config, image):
    coordinator, sink = _coordinator(config)
    ticket = coordinator.export(image, ExportRequest(ClipboardTarget()))
    result = coordinator.complete(ticket, current_generation=5)
    assert sink.writes[0].startswith(PNG_SIGNATURE)
    assert (result.width, result.height, result.generation) == (image.width, image.height, 5)
    assert result.stale is False
    assert result.target == "clipboard"
    assert not coordinator.busy


def test_file_export_default_path_and_events(config, image):
    coordinator = ExportCoordinator(config, executor=ThreadPoolExecutor(max_workers=1))
    with recording() as events:
        ticket = coordinator.export(image, ExportRequest(FileTarget(), "png"))
        result = coordinator.complete(ticket, 5)
    assert result.path.parent == config.output_dir
    assert result.path.name.startswith("fireshot_") and result.path.suffix == ".png"
    assert result.path.read_bytes().startswith(PNG_SIGNATURE)
    types = [e["event_type"] for e in events]
    assert types == ["operation.started", "operation.completed", "artifact.created"]


def test_busy_reject(config, image):
    coordinator, _ = _coordinator(config, export_busy_policy="reject")
    first = coordinator.export(image, ExportRequest(ClipboardTarget()))
    with pytest.raises(ExportError) as excinfo:
        coordinator.export(image, ExportRequest(ClipboardTarget()))
    assert excinfo.value.kind == ExportErrorKind.BUSY
    assert coordinator.pending == (first,)


def test_busy_queue_completes_in_order(config, image):
    coordinator, sink = _coordinator(config, export_busy_policy="queue")
    first = coordinator.export(image, ExportRequest(ClipboardTarget()))
    second = coordinator.export(image, ExportRequest(ClipboardTarget()))
    with pytest.raises(InvariantViolation):
        coordinator.complete(second, 5)
    coordinator.complete(first, 5)
    assert coordinator.pending == (second,)


def test_stale_export_is_cancelled(config, image):
    coordinator, sink = _coordinator(config, stale_export_policy="cancel")
    ticket = coordinator.export(image, ExportRequest(ClipboardTarget()))
    with pytest.raises(ExportError) as excinfo:
        coordinator.complete(ticket, current_generation=6)
    assert excinfo.value.kind == ExportErrorKind.STALE
    assert sink.writes == []
    assert not coordinator.busy


def test_stale_export_is_reported(config, image):
    coordinator, sink = _coordinator(config, stale_export_policy="report")
    ticket = coordinator.export(image, ExportRequest(ClipboardTarget()))
    result = coordinator.complete(ticket, current_generation=6)
    assert result.stale is True
    assert len(sink.writes) == 1


def test_sink_failure_surfaces(config, image):
    failing = RecordingSink(ExportError(ExportErrorKind.IO_FAILURE, "read-only"))
    coordinator, _ = _coordinator(config, sink=failing)
    ticket = coordinator.export(image, ExportRequest(FileTarget()))
    with pytest.raises(ExportError) as excinfo:
        coordinator.complete(ticket, 5)
    assert excinfo.value.kind == ExportErrorKind.IO_FAILURE
    assert not coordinator.busy


def test_abandon_drops_pending(config, image):
    coordinator, sink = _coordinator(config, export_busy_policy="queue")
    coordinator.export(image, ExportRequest(ClipboardTarget()))
    coordinator.export(image, ExportRequest(ClipboardTarget()))
    assert coordinator.abandon() == 2
    assert coordinator.ready() is None
    assert sink.writes == []


def test_on_export_hook_runs(tmp_path, image, monkeypatch):
    hooks = tmp_path / "hooks"
    (hooks / "on_export.d").mkdir(parents=True)
    marker = tmp_path / "hook-args"
    script = hooks / "on_export.d" / "10-record.sh"
    script.write_text(f'#!/bin/sh\necho "$@" > {marker}\n')
    script.chmod(0o755)
    (hooks / "on_export.d" / "20-disabled.sh").write_text("#!/bin/sh\nexit 1\n")

    started = []
    config = Config(output_dir=tmp_path / "out", hooks_dir=hooks)
    original = export_mod.notify_export

    def recording_notify(result, cfg):
        procs = original(result, cfg)
        started.extend(procs)
        return procs

    monkeypatch.setattr(export_mod, "notify_export", recording_notify)
    coordinator = ExportCoordinator(config, executor=ThreadPoolExecutor(max_workers=1))
    result = coordinator.complete(coordinator.export(image, ExportRequest(FileTarget())), 5)
    assert len(started) == 1
    started[0].wait(5)
    assert marker.read_text().split()[:3] == [str(result.path), str(image.width), str(image.height)]


class FrozenClock(datetime):
    @classmethod
    def now(cls, tz=None):
        return cls(2026, 3, 1, 12, 30, 45)


def test_default_path_never_reuses_a_name(config, image, monkeypatch):
    monkeypatch.setattr(export_mod, "datetime", FrozenClock)
    config.output_dir.mkdir(parents=True)
    first = default_output_path(config, "png")
    assert first.name == "fireshot_2026-03-01_12-30-45.png"
    first.write_bytes(b"")
    assert default_output_path(config, "png").name == "fireshot_2026-03-01_12-30-45-2.png"
    assert default_output_path(config, "jpeg", taken={config.output_dir / "fireshot_2026-03-01_12-30-45.jpg"}).name == (
        "fireshot_2026-03-01_12-30-45-2.jpg"
    )

    coordinator = ExportCoordinator(
        config, executor=ThreadPoolExecutor(max_workers=1), sink_factory=lambda request, path: RecordingSink()
    )
    config.export_busy_policy = "queue"
    queued = [coordinator.export(image, ExportRequest(FileTarget(), "png")) for _ in range(2)]
    assert [t.path.name for t in queued] == [
        "fireshot_2026-03-01_12-30-45-2.png",
        "fireshot_2026-03-01_12-30-45-3.png",
    ]
