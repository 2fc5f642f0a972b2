"""Lifecycle operations performed on behalf of managed resources."""

from __future__ import annotations

import logging

from .engine import LifecycleEngine
from .managed import ManagedLifecycle
from .models import LifecycleHandle

logger = logging.getLogger(__name__)


class LifecycleOperations:
    """Drive the engine and keep a resource's cached handle in sync."""

    def __init__(self, engine: LifecycleEngine) -> None:
        self._engine = engine

    async def attach(
        self,
        resource: ManagedLifecycle,
        lifecycle_name: str,
        initial_state: str,
        user: str,
    ) -> LifecycleHandle:
        instance_id = await self._engine.associate(lifecycle_name, initial_state, user)
        handle = LifecycleHandle(
            instance_id=instance_id, lifecycle_name=lifecycle_name, state=initial_state
        )
        await resource.associate_lifecycle(handle)
        return handle

    async def current_state(self, instance_id: str) -> LifecycleHandle:
        record = await self._engine.get_state(instance_id)
        return record.handle

    async def execute_transition(
        self,
        resource: ManagedLifecycle,
        handle: LifecycleHandle,
        target_state: str,
        user: str,
    ) -> LifecycleHandle:
        """Transition from the state the resource last saw to ``target_state``."""
        await self._engine.transition(handle.state, target_state, handle.instance_id, user)
        updated = await self.current_state(handle.instance_id)
        await resource.set_lifecycle_state_info(updated)
        return updated

    async def check_item(
        self,
        resource: ManagedLifecycle,
        handle: LifecycleHandle,
        item_name: str,
        value: bool,
        user: str,
    ) -> LifecycleHandle:
        await self._engine.set_checklist_item(
            handle.instance_id, handle.state, item_name, value, user
        )
        updated = await self.current_state(handle.instance_id)
        await resource.set_lifecycle_state_info(updated)
        return updated

    async def detach(self, resource: ManagedLifecycle, lifecycle_name: str) -> None:
        logger.debug("Detaching lifecycle %s from %r", lifecycle_name, resource)
        await resource.dissociate_lifecycle(lifecycle_name)
