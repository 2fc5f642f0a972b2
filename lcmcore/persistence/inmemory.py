"""In-memory implementation of the lifecycle store."""

from __future__ import annotations

from typing import Dict, List, Tuple

from ..models import ChecklistItemState, StateRecord, TransitionEvent
from .errors import PreconditionFailed, RecordExists, RecordNotFound
from .store import LifecycleStore, next_timestamp, utcnow


class InMemoryLifecycleStore(LifecycleStore):
    """Keep lifecycle data in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. None of the methods await between
    reading and writing, so each call is atomic on the event loop.
    """

    def __init__(self) -> None:
        self._states: Dict[str, StateRecord] = {}
        self._history: Dict[str, List[TransitionEvent]] = {}
        self._checklists: Dict[Tuple[str, str], Dict[str, ChecklistItemState]] = {}
        self._event_id = 0

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------
    async def create_state(
        self, instance_id: str, lifecycle_name: str, initial_state: str, user: str
    ) -> StateRecord:
        if instance_id in self._states:
            raise RecordExists(instance_id)
        now = utcnow()
        record = StateRecord(
            instance_id=instance_id,
            lifecycle_name=lifecycle_name,
            current_state=initial_state,
            created_by=user,
            created_at=now,
            updated_by=user,
            updated_at=now,
        )
        self._states[instance_id] = record
        return record.model_copy(deep=True)

    async def get_state(self, instance_id: str) -> StateRecord | None:
        record = self._states.get(instance_id)
        return record.model_copy(deep=True) if record else None

    async def transition(
        self, instance_id: str, previous_state: str, post_state: str, user: str
    ) -> TransitionEvent:
        record = self._states.get(instance_id)
        if record is None:
            raise RecordNotFound(instance_id)
        if record.current_state != previous_state:
            raise PreconditionFailed(previous_state, record.current_state)

        events = self._history.setdefault(instance_id, [])
        timestamp = next_timestamp(events[-1].timestamp if events else None)
        self._event_id += 1
        event = TransitionEvent(
            id=self._event_id,
            instance_id=instance_id,
            previous_state=previous_state,
            post_state=post_state,
            user=user,
            timestamp=timestamp,
        )
        record.current_state = post_state
        record.updated_by = user
        record.updated_at = timestamp
        events.append(event)
        return event.model_copy()

    async def delete_instance(self, instance_id: str, purge_history: bool = False) -> int:
        record = self._states.pop(instance_id, None)
        for key in [k for k in self._checklists if k[0] == instance_id]:
            del self._checklists[key]
        if purge_history:
            self._history.pop(instance_id, None)
        return 1 if record else 0

    async def list_instance_ids(self, state: str, lifecycle_name: str) -> set[str]:
        return {
            r.instance_id
            for r in self._states.values()
            if r.current_state == state and r.lifecycle_name == lifecycle_name
        }

    # ------------------------------------------------------------------
    async def history_page(
        self, instance_id: str, after_id: int | None, limit: int
    ) -> list[TransitionEvent]:
        events = self._history.get(instance_id, [])
        if after_id is not None:
            events = [e for e in events if e.id > after_id]
        return [e.model_copy() for e in events[:limit]]

    # ------------------------------------------------------------------
    async def set_checklist_item(
        self,
        instance_id: str,
        state: str,
        name: str,
        checked: bool,
        user: str,
        require_current_state: bool = False,
    ) -> ChecklistItemState:
        record = self._states.get(instance_id)
        if record is None:
            raise RecordNotFound(instance_id)
        if require_current_state and record.current_state != state:
            raise PreconditionFailed(state, record.current_state)
        item = ChecklistItemState(
            instance_id=instance_id,
            state=state,
            name=name,
            checked=checked,
            updated_by=user,
            updated_at=utcnow(),
        )
        self._checklists.setdefault((instance_id, state), {})[name] = item
        return item.model_copy()

    async def get_checklist(
        self, instance_id: str, state: str
    ) -> dict[str, ChecklistItemState]:
        items = self._checklists.get((instance_id, state), {})
        return {name: item.model_copy() for name, item in items.items()}
