"""Monotonic state token shared by the selection and the operation stack."""


class GenerationCounter:
    """Counter bumped on every change to Selection or OperationStack.

    The compositor cache and export staleness checks compare against it.
    """

    def __init__(self, start: int = 0):
        self._value = start

    @property
    def value(self) -> int:
        return self._value

    def bump(self) -> int:
        self._value += 1
        return self._value

    def __repr__(self) -> str:
        return f"GenerationCounter({self._value})"
