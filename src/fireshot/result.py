"""Result values returned by the session entry points."""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from .errors import FireshotError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a recoverable error, never both."""

    value: Optional[T] = None
    error: Optional[FireshotError] = None

    @classmethod
    def ok(cls, value: Any = None) -> "Result":
        return cls(value=value)

    @classmethod
    def fail(cls, error: FireshotError) -> "Result":
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T:
        """Return the value, raising the stored error on failure."""
        if self.error is not None:
            raise self.error
        return self.value
