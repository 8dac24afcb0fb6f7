"""Error taxonomy for the editing engine.

Recoverable failures derive from FireshotError and are turned into failed
Results by the session entry points. InvariantViolation derives from
AssertionError: it marks a bug in the caller and is never caught.
"""

from enum import Enum
from typing import Optional


class FireshotError(Exception):
    """Base class for recoverable errors."""

    kind: Optional[Enum] = None

    def to_dict(self) -> dict:
        return {
            "error_type": type(self).__name__,
            "kind": self.kind.value if self.kind else None,
            "message": str(self),
        }


class CaptureErrorKind(Enum):
    PORTAL_UNAVAILABLE = "portal_unavailable"
    BACKEND_MISSING = "backend_missing"
    USER_CANCELLED = "user_cancelled"
    TIMEOUT = "timeout"


class CaptureError(FireshotError):
    """Raised when a frame could not be acquired."""

    def __init__(self, kind: CaptureErrorKind, message: str = ""):
        super().__init__(message or kind.value.replace("_", " "))
        self.kind = kind


class SelectionError(FireshotError):
    """Raised when a selection request is rejected. State is left unchanged."""


class ExportErrorKind(Enum):
    IO_FAILURE = "io_failure"
    CLIPBOARD_UNAVAILABLE = "clipboard_unavailable"
    ENCODE_FAILED = "encode_failed"
    STALE = "stale"
    BUSY = "busy"
    NO_IMAGE = "no_image"


class ExportError(FireshotError):
    """Raised when an export could not be completed."""

    def __init__(self, kind: ExportErrorKind, message: str = ""):
        super().__init__(message or kind.value.replace("_", " "))
        self.kind = kind


class InvariantViolation(AssertionError):
    """A programming error: out-of-range operation, corrupt cursor, bad frame."""
