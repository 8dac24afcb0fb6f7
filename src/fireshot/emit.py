"""Structured event emitter.

Each event is one JSON line on stderr, so it can be told apart from log
lines, and is handed to every handler registered with add_handler().

Event format:
    {"event_type": "...", "timestamp": "...", "source": {"tool": "..."}, "data": {...}}

EVENT_CATALOG maps every event type fireshot emits to its data fields.
"""

import json
import logging
import sys
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], None]

EVENT_CATALOG: Dict[str, List[str]] = {
    "session.started": ["mode", "monitor"],
    "capture.completed": ["monitor", "width", "height"],
    "operation.started": ["operation_type", "operation_id", "target", "generation"],
    "operation.completed": ["operation_type", "operation_id", "success", "stale", "error_message"],
    "artifact.created": ["file_path", "file_type", "metadata"],
    "error.handled": ["error_type", "kind", "message", "stage"],
    "shutdown": [],
}

_handlers: List[EventHandler] = []
_handlers_lock = threading.Lock()
_source: str = "fireshot"
_stderr_enabled: bool = True


def configure(source: str, stderr: bool = True) -> None:
    """Set the source name and whether events go to stderr.

    --json output turns stderr events off so stdout stays machine-readable.
    """
    global _source, _stderr_enabled
    _source = source
    _stderr_enabled = stderr


def add_handler(handler: EventHandler) -> None:
    with _handlers_lock:
        _handlers.append(handler)


def remove_handler(handler: EventHandler) -> None:
    with _handlers_lock:
        if handler in _handlers:
            _handlers.remove(handler)


@contextmanager
def recording() -> Iterator[List[dict]]:
    """Collect every event emitted inside the block into a list."""
    events: List[dict] = []
    add_handler(events.append)
    try:
        yield events
    finally:
        remove_handler(events.append)


def emit(event_type: str, data: Dict[str, Any], source: Optional[str] = None) -> None:
    """Emit a structured event.

    Args:
        event_type: One of the EVENT_CATALOG keys
        data: Event payload
        source: Override source name for this event
    """
    if event_type not in EVENT_CATALOG:
        logger.debug("Emitting uncatalogued event %s", event_type)

    event = {
        "event_type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": {"tool": source or _source},
        "data": data,
    }

    if _stderr_enabled:
        try:
            print(json.dumps(event, default=str), file=sys.stderr, flush=True)
        except (TypeError, ValueError, OSError) as exc:
            logger.debug("Could not write event %s: %s", event_type, exc)

    with _handlers_lock:
        handlers = list(_handlers)
    for handler in handlers:
        try:
            handler(event)
        except Exception as exc:
            logger.debug("Event handler error: %s", exc)
