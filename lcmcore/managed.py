"""Interface for resources that carry a lifecycle."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .models import LifecycleHandle


@runtime_checkable
class ManagedLifecycle(Protocol):
    """Capabilities a resource (API, application, ...) implements to be tracked.

    The resource keeps the handle it is given, keyed by lifecycle name, so it
    can later find its instance id. The engine never calls these methods;
    :class:`~lcmcore.operations.LifecycleOperations` does.
    """

    async def associate_lifecycle(self, handle: LifecycleHandle) -> None:
        """Store ``handle`` on the resource."""

    async def dissociate_lifecycle(self, lifecycle_name: str) -> None:
        """Forget the handle for ``lifecycle_name`` and dissociate its instance."""

    async def set_lifecycle_state_info(self, handle: LifecycleHandle) -> None:
        """Replace the cached handle after a transition or checklist change."""
