"""Exceptions raised by lifecycle store backends."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for store failures."""


class RecordNotFound(StoreError):
    """No state record exists for the requested instance."""


class RecordExists(StoreError):
    """A state record with the requested id already exists."""


class PreconditionFailed(StoreError):
    """The stored current state differs from the expected one."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected state {expected!r} but found {actual!r}")


class StoreUnavailable(StoreError):
    """The backing database failed; the driver error is chained."""
