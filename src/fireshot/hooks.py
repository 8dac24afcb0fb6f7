"""Hook scripts run after an export lands on disk.

Directory structure (hooks_dir from config, platformdirs default):
    <hooks_dir>/
    └── on_export.d/
        ├── 10-upload.sh
        └── 20-backup.sh

Scripts run in sorted order, in the background. Each receives:
    path width height timestamp
Non-executable files and dotfiles are skipped.
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import Config
    from .export import ExportResult

log = logging.getLogger(__name__)


def hook_scripts(hooks_dir: Optional[Path], event: str) -> list[Path]:
    """Executable scripts for event, sorted by name."""
    if not hooks_dir:
        return []
    event_dir = hooks_dir / f"{event}.d"
    if not event_dir.is_dir():
        return []
    scripts = []
    for path in sorted(event_dir.iterdir()):
        if not path.is_file() or path.name.startswith("."):
            continue
        if not path.stat().st_mode & 0o111:
            log.debug("Skipping non-executable: %s", path)
            continue
        scripts.append(path)
    return scripts


def run_hooks(hooks_dir: Optional[Path], event: str, *args) -> list[subprocess.Popen]:
    """Start every hook script for event without waiting for it."""
    started = []
    for script in hook_scripts(hooks_dir, event):
        try:
            started.append(subprocess.Popen(
                [str(script)] + [str(a) for a in args],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            ))
            log.debug("Hook executed: %s", script.name)
        except OSError as e:
            log.warning("Hook %s failed: %s", script.name, e)
    return started


def notify_export(result: "ExportResult", config: "Config") -> list[subprocess.Popen]:
    """Run on_export hooks for a file export."""
    if result.path is None:
        return []
    return run_hooks(
        config.hooks_dir,
        "on_export",
        result.path,
        result.width,
        result.height,
        result.timestamp,
    )
