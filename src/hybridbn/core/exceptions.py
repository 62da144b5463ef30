from __future__ import annotations

from typing import Hashable, Iterable, Optional


class HybridError(Exception):
    """Base class for hybridbn-specific exceptions."""


class KeyNotFoundError(HybridError, KeyError):
    def __init__(
        self,
        message: str,
        *,
        keys: Optional[Iterable[Hashable]] = None,
    ):
        self.keys = tuple(keys) if keys is not None else ()
        detail = _format_keys(self.keys)
        super().__init__(f"{message}{detail}")
        self.message = f"{message}{detail}"

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return self.message


class AssignmentIncompleteError(KeyNotFoundError):
    pass


class DimensionMismatchError(HybridError, ValueError):
    def __init__(
        self,
        message: str,
        *,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
    ):
        detail = ""
        if expected is not None or actual is not None:
            detail = f" (expected {expected}, got {actual})"
        super().__init__(f"{message}{detail}")
        self.expected = expected
        self.actual = actual


class InvalidAssignmentError(HybridError, ValueError):
    pass


class OrderingError(HybridError, ValueError):
    def __init__(
        self,
        message: str,
        *,
        keys: Optional[Iterable[Hashable]] = None,
    ):
        self.keys = tuple(keys) if keys is not None else ()
        super().__init__(f"{message}{_format_keys(self.keys)}")


class SerializationError(HybridError, ValueError):
    pass


def _format_keys(keys: Iterable[Hashable]) -> str:
    keys = list(keys)
    if not keys:
        return ""
    joined = ", ".join(repr(key) for key in keys)
    return f": [{joined}]"
