"""Store abstraction for lifecycle state, history and checklist data."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncIterator, Protocol

from ..models import ChecklistItemState, StateRecord, TransitionEvent


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(last: datetime | None) -> datetime:
    """Return the current time, never earlier than ``last``."""
    now = utcnow()
    if last is not None and last > now:
        return last
    return now


class StateStore(Protocol):
    """Current-state records, one per lifecycle instance."""

    async def create_state(
        self, instance_id: str, lifecycle_name: str, initial_state: str, user: str
    ) -> StateRecord:
        """Insert a new state record. Raises ``RecordExists`` on id collision."""

    async def get_state(self, instance_id: str) -> StateRecord | None:
        """Return the state record or ``None``."""

    async def delete_instance(self, instance_id: str, purge_history: bool = False) -> int:
        """Delete the state record and its checklist rows.

        History rows are removed too when ``purge_history`` is set. Returns
        the number of state records deleted (0 or 1).
        """

    async def list_instance_ids(self, state: str, lifecycle_name: str) -> set[str]:
        """Return ids of instances of ``lifecycle_name`` currently in ``state``."""


class HistoryStore(Protocol):
    """Append-only log of transition events."""

    async def history_page(
        self, instance_id: str, after_id: int | None, limit: int
    ) -> list[TransitionEvent]:
        """Return up to ``limit`` events ordered by timestamp then id."""

    async def iter_history(
        self, instance_id: str, page_size: int = 100
    ) -> AsyncIterator[TransitionEvent]:
        """Yield all events of an instance, fetching one page at a time."""
        after_id: int | None = None
        while True:
            page = await self.history_page(instance_id, after_id, page_size)
            for event in page:
                yield event
            if len(page) < page_size:
                return
            after_id = page[-1].id


class ChecklistStore(Protocol):
    """Checklist completion keyed by (instance, state, item)."""

    async def set_checklist_item(
        self,
        instance_id: str,
        state: str,
        name: str,
        checked: bool,
        user: str,
        require_current_state: bool = False,
    ) -> ChecklistItemState:
        """Upsert one checklist row.

        Raises ``RecordNotFound`` when the instance is absent and
        ``PreconditionFailed`` when ``require_current_state`` is set and
        ``state`` is not the instance's current state.
        """

    async def get_checklist(
        self, instance_id: str, state: str
    ) -> dict[str, ChecklistItemState]:
        """Return checklist rows recorded under ``state``."""


class LifecycleStore(StateStore, HistoryStore, ChecklistStore, Protocol):
    """Transactional store combining state, history and checklist data."""

    async def init(self) -> None:
        """Create the schema if needed."""

    async def transition(
        self, instance_id: str, previous_state: str, post_state: str, user: str
    ) -> TransitionEvent:
        """Atomically move an instance from ``previous_state`` to ``post_state``.

        The state check, the update and the history append commit together.
        Raises ``RecordNotFound`` or ``PreconditionFailed``.
        """

    async def get_state_with_checklist(
        self, instance_id: str, state: str
    ) -> StateRecord | None:
        """Return the state record with the checklist of ``state`` attached."""
        record = await self.get_state(instance_id)
        if record is None:
            return None
        record.checklist = await self.get_checklist(instance_id, state)
        record.checklist_state = state
        return record

    async def close(self) -> None:
        """Release connections held by the store."""
