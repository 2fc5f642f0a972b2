"""Errors raised by the lifecycle engine."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Kind of failure reported by a :class:`LifecycleError`."""

    NOT_FOUND = "not_found"
    DUPLICATE_INSTANCE = "duplicate_instance"
    STALE_STATE = "stale_state"
    PERSISTENCE = "persistence"


class LifecycleError(RuntimeError):
    """Base class for lifecycle engine failures.

    Every error names the operation and lifecycle instance it concerns. The
    underlying store error, when there is one, is chained as ``__cause__``
    and exposed through :attr:`cause`.
    """

    kind: ErrorKind = ErrorKind.PERSISTENCE

    def __init__(
        self,
        operation: str,
        instance_id: Optional[str],
        detail: str,
    ) -> None:
        self.operation = operation
        self.instance_id = instance_id
        self.detail = detail
        super().__init__(
            f"{operation} failed for lifecycle instance {instance_id}: {detail}"
        )

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


class NotFoundError(LifecycleError):
    """The referenced lifecycle instance does not exist."""

    kind = ErrorKind.NOT_FOUND


class DuplicateInstanceError(LifecycleError):
    """A caller supplied instance id is already in use."""

    kind = ErrorKind.DUPLICATE_INSTANCE


class StaleStateError(LifecycleError):
    """The expected current state no longer matches the stored one."""

    kind = ErrorKind.STALE_STATE


class PersistenceError(LifecycleError):
    """The underlying store failed."""

    kind = ErrorKind.PERSISTENCE
