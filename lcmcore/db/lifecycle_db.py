from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel

from ..models import ChecklistItemState, StateRecord, TransitionEvent
from ..persistence.errors import (
    PreconditionFailed,
    RecordExists,
    RecordNotFound,
    StoreUnavailable,
)
from ..persistence.store import LifecycleStore, next_timestamp, utcnow
from .models import ChecklistItemRow, LifecycleStateRow, TransitionEventRow


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: LifecycleStateRow) -> StateRecord:
    return StateRecord(
        instance_id=row.instance_id,
        lifecycle_name=row.lifecycle_name,
        current_state=row.current_state,
        created_by=row.created_by,
        created_at=_aware(row.created_at),
        updated_by=row.updated_by,
        updated_at=_aware(row.updated_at),
    )


def _to_event(row: TransitionEventRow) -> TransitionEvent:
    return TransitionEvent(
        id=row.id,
        instance_id=row.instance_id,
        previous_state=row.previous_state,
        post_state=row.post_state,
        user=row.username,
        timestamp=_aware(row.timestamp),
    )


def _to_item(row: ChecklistItemRow) -> ChecklistItemState:
    return ChecklistItemState(
        instance_id=row.instance_id,
        state=row.state,
        name=row.item_name,
        checked=row.checked,
        updated_by=row.updated_by,
        updated_at=_aware(row.updated_at),
    )


class LifecycleDB(LifecycleStore):
    """Lifecycle store backed by SQLModel tables over an async SQLAlchemy engine.

    Works with any async driver SQLAlchemy supports, e.g.
    ``sqlite+aiosqlite:///lcm.db`` or ``postgresql+asyncpg://host/db``.
    """

    def __init__(self, database_url: str, timeout: float = 30.0) -> None:
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": timeout}
        else:
            connect_args = {"timeout": timeout, "command_timeout": timeout}
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        try:
            if not self._initialized:
                await self.init_db()
            async with AsyncSession(self.engine, expire_on_commit=False) as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"database error: {exc}") from exc

    # ------------------------------------------------------------------
    async def init(self) -> None:
        async with self.session():
            pass

    async def close(self) -> None:
        await self.engine.dispose()

    async def create_state(
        self, instance_id: str, lifecycle_name: str, initial_state: str, user: str
    ) -> StateRecord:
        now = utcnow()
        row = LifecycleStateRow(
            instance_id=instance_id,
            lifecycle_name=lifecycle_name,
            current_state=initial_state,
            created_by=user,
            created_at=now,
            updated_by=user,
            updated_at=now,
        )
        async with self.session() as session:
            try:
                async with session.begin():
                    session.add(row)
            except IntegrityError as exc:
                raise RecordExists(instance_id) from exc
        return _to_record(row)

    async def get_state(self, instance_id: str) -> StateRecord | None:
        async with self.session() as session:
            row = await session.get(LifecycleStateRow, instance_id)
            return _to_record(row) if row else None

    async def get_state_with_checklist(
        self, instance_id: str, state: str
    ) -> StateRecord | None:
        async with self.session() as session:
            async with session.begin():
                row = await session.get(LifecycleStateRow, instance_id)
                if row is None:
                    return None
                items = await session.scalars(
                    select(ChecklistItemRow).where(
                        ChecklistItemRow.instance_id == instance_id,
                        ChecklistItemRow.state == state,
                    )
                )
                record = _to_record(row)
                record.checklist_state = state
                record.checklist = {i.item_name: _to_item(i) for i in items}
        return record

    async def transition(
        self, instance_id: str, previous_state: str, post_state: str, user: str
    ) -> TransitionEvent:
        async with self.session() as session:
            async with session.begin():
                current = await session.scalar(
                    select(LifecycleStateRow.current_state)
                    .where(LifecycleStateRow.instance_id == instance_id)
                    .with_for_update()
                )
                if current is None:
                    raise RecordNotFound(instance_id)
                if current != previous_state:
                    raise PreconditionFailed(previous_state, current)
                last = await session.scalar(
                    select(func.max(TransitionEventRow.timestamp)).where(
                        TransitionEventRow.instance_id == instance_id
                    )
                )
                timestamp = next_timestamp(_aware(last))
                result = await session.execute(
                    update(LifecycleStateRow)
                    .where(
                        LifecycleStateRow.instance_id == instance_id,
                        LifecycleStateRow.current_state == previous_state,
                    )
                    .values(current_state=post_state, updated_by=user, updated_at=timestamp)
                )
                if result.rowcount != 1:
                    # Another writer committed between our read and update.
                    current = await session.scalar(
                        select(LifecycleStateRow.current_state).where(
                            LifecycleStateRow.instance_id == instance_id
                        )
                    )
                    if current is None:
                        raise RecordNotFound(instance_id)
                    raise PreconditionFailed(previous_state, current)
                event = TransitionEventRow(
                    instance_id=instance_id,
                    previous_state=previous_state,
                    post_state=post_state,
                    username=user,
                    timestamp=timestamp,
                )
                session.add(event)
                await session.flush()
        return _to_event(event)

    async def delete_instance(self, instance_id: str, purge_history: bool = False) -> int:
        async with self.session() as session:
            async with session.begin():
                await session.execute(
                    delete(ChecklistItemRow).where(ChecklistItemRow.instance_id == instance_id)
                )
                if purge_history:
                    await session.execute(
                        delete(TransitionEventRow).where(
                            TransitionEventRow.instance_id == instance_id
                        )
                    )
                result = await session.execute(
                    delete(LifecycleStateRow).where(
                        LifecycleStateRow.instance_id == instance_id
                    )
                )
        return result.rowcount

    async def list_instance_ids(self, state: str, lifecycle_name: str) -> set[str]:
        async with self.session() as session:
            ids = await session.scalars(
                select(LifecycleStateRow.instance_id).where(
                    LifecycleStateRow.current_state == state,
                    LifecycleStateRow.lifecycle_name == lifecycle_name,
                )
            )
            return set(ids)

    async def history_page(
        self, instance_id: str, after_id: int | None, limit: int
    ) -> list[TransitionEvent]:
        async with self.session() as session:
            rows = await session.scalars(
                select(TransitionEventRow)
                .where(
                    TransitionEventRow.instance_id == instance_id,
                    TransitionEventRow.id > (after_id or 0),
                )
                .order_by(TransitionEventRow.timestamp, TransitionEventRow.id)
                .limit(limit)
            )
            return [_to_event(r) for r in rows]

    async def set_checklist_item(
        self,
        instance_id: str,
        state: str,
        name: str,
        checked: bool,
        user: str,
        require_current_state: bool = False,
    ) -> ChecklistItemState:
        item = ChecklistItemRow(
            instance_id=instance_id,
            state=state,
            item_name=name,
            checked=checked,
            updated_by=user,
            updated_at=utcnow(),
        )
        async with self.session() as session:
            async with session.begin():
                current = await session.scalar(
                    select(LifecycleStateRow.current_state)
                    .where(LifecycleStateRow.instance_id == instance_id)
                    .with_for_update(read=True)
                )
                if current is None:
                    raise RecordNotFound(instance_id)
                if require_current_state and current != state:
                    raise PreconditionFailed(state, current)
                await session.merge(item)
        return _to_item(item)

    async def get_checklist(
        self, instance_id: str, state: str
    ) -> dict[str, ChecklistItemState]:
        async with self.session() as session:
            rows = await session.scalars(
                select(ChecklistItemRow).where(
                    ChecklistItemRow.instance_id == instance_id,
                    ChecklistItemRow.state == state,
                )
            )
            return {r.item_name: _to_item(r) for r in rows}
