"""PostgreSQL implementation of the lifecycle store."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from ..models import ChecklistItemState, StateRecord, TransitionEvent
from .errors import PreconditionFailed, RecordExists, RecordNotFound, StoreUnavailable
from .store import LifecycleStore

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_STATE_COLUMNS = (
    "instance_id, lifecycle_name, current_state, created_by, created_at, "
    "updated_by, updated_at"
)


def _state_from_row(row: asyncpg.Record) -> StateRecord:
    return StateRecord(**dict(row))


class PostgresLifecycleStore(LifecycleStore):
    """Persist lifecycle data using PostgreSQL.

    A connection is opened per call. Transitions lock the state row with
    ``SELECT ... FOR UPDATE`` so concurrent writers on one instance are
    serialised by the database.
    """

    def __init__(self, dsn: str, timeout: float = 30.0):
        self._dsn = dsn
        self._timeout = timeout
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(
            self._dsn, timeout=self._timeout, command_timeout=self._timeout
        )
        if not self._initialized:
            try:
                await self._ensure_schema(conn)
            except BaseException:
                await conn.close()
                raise
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
        except _DRIVER_ERRORS as exc:
            raise StoreUnavailable(f"cannot connect to postgres: {exc}") from exc
        try:
            yield conn
        except _DRIVER_ERRORS as exc:
            raise StoreUnavailable(f"postgres error: {exc}") from exc
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS lifecycle_state (
                instance_id TEXT PRIMARY KEY,
                lifecycle_name TEXT NOT NULL,
                current_state TEXT NOT NULL,
                created_by TEXT,
                created_at TIMESTAMPTZ,
                updated_by TEXT,
                updated_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS ix_lifecycle_state_name_state
            ON lifecycle_state (lifecycle_name, current_state)
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS lifecycle_history (
                id BIGSERIAL PRIMARY KEY,
                instance_id TEXT NOT NULL,
                previous_state TEXT NOT NULL,
                post_state TEXT NOT NULL,
                username TEXT NOT NULL,
                timestamp TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS ix_lifecycle_history_instance
            ON lifecycle_history (instance_id, timestamp, id)
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS lifecycle_checklist (
                instance_id TEXT NOT NULL,
                state TEXT NOT NULL,
                item_name TEXT NOT NULL,
                checked BOOLEAN NOT NULL,
                updated_by TEXT,
                updated_at TIMESTAMPTZ,
                PRIMARY KEY (instance_id, state, item_name)
            )
            """
        )

    # ------------------------------------------------------------------
    async def init(self) -> None:
        async with self._connection():
            pass

    async def close(self) -> None:
        return None

    async def create_state(
        self, instance_id: str, lifecycle_name: str, initial_state: str, user: str
    ) -> StateRecord:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO lifecycle_state ({_STATE_COLUMNS})
                    VALUES ($1, $2, $3, $4, now(), $4, now())
                    RETURNING {_STATE_COLUMNS}
                    """,
                    instance_id,
                    lifecycle_name,
                    initial_state,
                    user,
                )
            except asyncpg.UniqueViolationError as exc:
                raise RecordExists(instance_id) from exc
        return _state_from_row(row)

    async def get_state(self, instance_id: str) -> StateRecord | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_STATE_COLUMNS} FROM lifecycle_state WHERE instance_id = $1",
                instance_id,
            )
        return _state_from_row(row) if row else None

    async def get_state_with_checklist(
        self, instance_id: str, state: str
    ) -> StateRecord | None:
        async with self._connection() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                row = await conn.fetchrow(
                    f"SELECT {_STATE_COLUMNS} FROM lifecycle_state WHERE instance_id = $1",
                    instance_id,
                )
                items = await conn.fetch(
                    """
                    SELECT instance_id, state, item_name AS name, checked, updated_by, updated_at
                    FROM lifecycle_checklist WHERE instance_id = $1 AND state = $2
                    """,
                    instance_id,
                    state,
                )
        if row is None:
            return None
        record = _state_from_row(row)
        record.checklist_state = state
        record.checklist = {r["name"]: ChecklistItemState(**dict(r)) for r in items}
        return record

    async def transition(
        self, instance_id: str, previous_state: str, post_state: str, user: str
    ) -> TransitionEvent:
        async with self._connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT current_state FROM lifecycle_state WHERE instance_id = $1 FOR UPDATE",
                    instance_id,
                )
                if row is None:
                    raise RecordNotFound(instance_id)
                if row["current_state"] != previous_state:
                    raise PreconditionFailed(previous_state, row["current_state"])
                timestamp = await conn.fetchval(
                    """
                    SELECT GREATEST(clock_timestamp(), COALESCE(MAX(timestamp), clock_timestamp()))
                    FROM lifecycle_history WHERE instance_id = $1
                    """,
                    instance_id,
                )
                await conn.execute(
                    """
                    UPDATE lifecycle_state
                    SET current_state = $1, updated_by = $2, updated_at = $3
                    WHERE instance_id = $4
                    """,
                    post_state,
                    user,
                    timestamp,
                    instance_id,
                )
                event_id = await conn.fetchval(
                    """
                    INSERT INTO lifecycle_history
                        (instance_id, previous_state, post_state, username, timestamp)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING id
                    """,
                    instance_id,
                    previous_state,
                    post_state,
                    user,
                    timestamp,
                )
        return TransitionEvent(
            id=event_id,
            instance_id=instance_id,
            previous_state=previous_state,
            post_state=post_state,
            user=user,
            timestamp=timestamp,
        )

    async def delete_instance(self, instance_id: str, purge_history: bool = False) -> int:
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM lifecycle_checklist WHERE instance_id = $1", instance_id
                )
                if purge_history:
                    await conn.execute(
                        "DELETE FROM lifecycle_history WHERE instance_id = $1", instance_id
                    )
                status = await conn.execute(
                    "DELETE FROM lifecycle_state WHERE instance_id = $1", instance_id
                )
        # status is the command tag, e.g. "DELETE 1"
        return int(status.split()[-1])

    async def list_instance_ids(self, state: str, lifecycle_name: str) -> set[str]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT instance_id FROM lifecycle_state WHERE current_state = $1 AND lifecycle_name = $2",
                state,
                lifecycle_name,
            )
        return {r["instance_id"] for r in rows}

    async def history_page(
        self, instance_id: str, after_id: int | None, limit: int
    ) -> list[TransitionEvent]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT id, instance_id, previous_state, post_state, username AS user, timestamp
                FROM lifecycle_history
                WHERE instance_id = $1 AND id > $2
                ORDER BY timestamp, id
                LIMIT $3
                """,
                instance_id,
                after_id or 0,
                limit,
            )
        return [TransitionEvent(**dict(r)) for r in rows]

    async def set_checklist_item(
        self,
        instance_id: str,
        state: str,
        name: str,
        checked: bool,
        user: str,
        require_current_state: bool = False,
    ) -> ChecklistItemState:
        async with self._connection() as conn:
            async with conn.transaction():
                # FOR SHARE keeps the instance from being deleted underneath us.
                row = await conn.fetchrow(
                    "SELECT current_state FROM lifecycle_state WHERE instance_id = $1 FOR SHARE",
                    instance_id,
                )
                if row is None:
                    raise RecordNotFound(instance_id)
                if require_current_state and row["current_state"] != state:
                    raise PreconditionFailed(state, row["current_state"])
                item = await conn.fetchrow(
                    """
                    INSERT INTO lifecycle_checklist
                        (instance_id, state, item_name, checked, updated_by, updated_at)
                    VALUES ($1, $2, $3, $4, $5, now())
                    ON CONFLICT (instance_id, state, item_name) DO UPDATE SET
                        checked = EXCLUDED.checked,
                        updated_by = EXCLUDED.updated_by,
                        updated_at = EXCLUDED.updated_at
                    RETURNING instance_id, state, item_name AS name, checked, updated_by, updated_at
                    """,
                    instance_id,
                    state,
                    name,
                    checked,
                    user,
                )
        return ChecklistItemState(**dict(item))

    async def get_checklist(
        self, instance_id: str, state: str
    ) -> dict[str, ChecklistItemState]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT instance_id, state, item_name AS name, checked, updated_by, updated_at
                FROM lifecycle_checklist WHERE instance_id = $1 AND state = $2
                """,
                instance_id,
                state,
            )
        return {r["name"]: ChecklistItemState(**dict(r)) for r in rows}
