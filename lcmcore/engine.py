"""Lifecycle engine: association, transitions, checklists and history."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import AsyncIterator, Iterator, Optional

from .config import LcmConfig, load_config
from .exceptions import (
    DuplicateInstanceError,
    NotFoundError,
    PersistenceError,
    StaleStateError,
)
from .models import ChecklistItemState, StateRecord, TransitionEvent
from .persistence import get_store
from .persistence.errors import (
    PreconditionFailed,
    RecordExists,
    RecordNotFound,
    StoreError,
)
from .persistence.store import LifecycleStore

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors(operation: str, instance_id: Optional[str]) -> Iterator[None]:
    """Re-raise store errors as lifecycle errors naming the operation."""
    try:
        yield
    except RecordNotFound as exc:
        raise NotFoundError(operation, instance_id, "no such lifecycle instance") from exc
    except RecordExists as exc:
        raise DuplicateInstanceError(
            operation, instance_id, "instance id is already associated"
        ) from exc
    except PreconditionFailed as exc:
        logger.warning("%s rejected for %s: %s", operation, instance_id, exc)
        raise StaleStateError(operation, instance_id, str(exc)) from exc
    except StoreError as exc:
        logger.warning("%s failed for %s: %s", operation, instance_id, exc)
        raise PersistenceError(operation, instance_id, str(exc)) from exc


class LifecycleHistory:
    """Transition history of one instance, oldest first.

    Nothing is read until the history is iterated. Each ``async for`` starts
    a fresh read, so the same object can be iterated again to pick up newer
    events.
    """

    def __init__(self, store: LifecycleStore, instance_id: str, page_size: int) -> None:
        self._store = store
        self.instance_id = instance_id
        self._page_size = page_size

    async def __aiter__(self) -> AsyncIterator[TransitionEvent]:
        with _translate_errors("get_history", self.instance_id):
            async for event in self._store.iter_history(self.instance_id, self._page_size):
                yield event

    async def to_list(self) -> list[TransitionEvent]:
        return [event async for event in self]


class LifecycleEngine:
    """Tracks lifecycle instances on top of a :class:`LifecycleStore`.

    The engine keeps no state of its own: every operation is a single store
    transaction, and concurrent callers are isolated by the store. It does
    not check transitions against a lifecycle definition; callers decide
    which transitions are legal and the engine records them atomically,
    conditioned on the expected prior state. No operation is retried.
    """

    def __init__(
        self,
        store: LifecycleStore,
        *,
        enforce_checklist_state: bool = False,
        purge_history_on_dissociate: bool = False,
        history_page_size: int = 100,
    ) -> None:
        self._store = store
        self.enforce_checklist_state = enforce_checklist_state
        self.purge_history_on_dissociate = purge_history_on_dissociate
        self.history_page_size = history_page_size

    @classmethod
    def from_config(cls, config: LcmConfig | None = None) -> "LifecycleEngine":
        config = config or load_config()
        return cls(
            get_store(config=config),
            enforce_checklist_state=config.engine.enforce_checklist_state,
            purge_history_on_dissociate=config.engine.purge_history_on_dissociate,
            history_page_size=config.engine.history_page_size,
        )

    @property
    def store(self) -> LifecycleStore:
        return self._store

    # ------------------------------------------------------------------
    async def associate(
        self,
        lifecycle_name: str,
        initial_state: str,
        user: str,
        instance_id: Optional[str] = None,
    ) -> str:
        """Create a lifecycle instance in ``initial_state`` and return its id.

        When ``instance_id`` is given it is used as the id and a collision
        raises :class:`DuplicateInstanceError`. Otherwise a UUID is generated.
        """
        generated = instance_id is None
        if instance_id is None:
            instance_id = str(uuid.uuid4())
        try:
            with _translate_errors("associate", instance_id):
                await self._store.create_state(
                    instance_id, lifecycle_name, initial_state, user
                )
        except DuplicateInstanceError as exc:
            if not generated:
                raise
            raise PersistenceError(
                "associate", instance_id, "generated instance id already exists"
            ) from exc.cause
        logger.info(
            "Associated lifecycle %s instance %s in state %s (user=%s)",
            lifecycle_name,
            instance_id,
            initial_state,
            user,
        )
        return instance_id

    async def transition(
        self, previous_state: str, required_state: str, instance_id: str, user: str
    ) -> TransitionEvent:
        """Move ``instance_id`` from ``previous_state`` to ``required_state``.

        Raises :class:`StaleStateError` if the stored state is no longer
        ``previous_state``; the caller has to re-read and decide.
        """
        with _translate_errors("transition", instance_id):
            event = await self._store.transition(
                instance_id, previous_state, required_state, user
            )
        logger.info(
            "Lifecycle instance %s moved %s -> %s (user=%s)",
            instance_id,
            previous_state,
            required_state,
            user,
        )
        return event

    async def dissociate(self, instance_id: str) -> None:
        """Delete the instance and its checklist rows.

        History is kept unless ``purge_history_on_dissociate`` is set.
        Unknown ids are ignored.
        """
        with _translate_errors("dissociate", instance_id):
            deleted = await self._store.delete_instance(
                instance_id, purge_history=self.purge_history_on_dissociate
            )
        if deleted:
            logger.info("Dissociated lifecycle instance %s", instance_id)
        else:
            logger.debug("Dissociate of unknown lifecycle instance %s ignored", instance_id)

    async def get_state(self, instance_id: str) -> StateRecord:
        with _translate_errors("get_state", instance_id):
            record = await self._store.get_state(instance_id)
        if record is None:
            raise NotFoundError("get_state", instance_id, "no such lifecycle instance")
        return record

    async def get_checklist_state(self, instance_id: str, state: str) -> StateRecord:
        """Return the state record with the checklist recorded under ``state``."""
        with _translate_errors("get_checklist_state", instance_id):
            record = await self._store.get_state_with_checklist(instance_id, state)
        if record is None:
            raise NotFoundError(
                "get_checklist_state", instance_id, "no such lifecycle instance"
            )
        return record

    async def set_checklist_item(
        self, instance_id: str, state: str, item_name: str, value: bool, user: str
    ) -> ChecklistItemState:
        """Record whether ``item_name`` is done for ``state``.

        Items are keyed by (instance, state, item): setting an item again,
        including on a later visit to the same state, overwrites it.
        """
        with _translate_errors("set_checklist_item", instance_id):
            item = await self._store.set_checklist_item(
                instance_id,
                state,
                item_name,
                value,
                user,
                require_current_state=self.enforce_checklist_state,
            )
        logger.debug(
            "Checklist item %s of %s/%s set to %s (user=%s)",
            item_name,
            instance_id,
            state,
            value,
            user,
        )
        return item

    def get_history(self, instance_id: str) -> LifecycleHistory:
        return LifecycleHistory(self._store, instance_id, self.history_page_size)

    async def list_instance_ids(self, state: str, lifecycle_name: str) -> set[str]:
        with _translate_errors("list_instance_ids", None):
            return await self._store.list_instance_ids(state, lifecycle_name)
