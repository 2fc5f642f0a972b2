"""SQLite implementation of the lifecycle store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from ..models import ChecklistItemState, StateRecord, TransitionEvent
from .errors import PreconditionFailed, RecordExists, RecordNotFound, StoreUnavailable
from .store import LifecycleStore, next_timestamp, utcnow

T = TypeVar("T")

_STATE_COLUMNS = (
    "instance_id, lifecycle_name, current_state, created_by, created_at, "
    "updated_by, updated_at"
)


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _state_from_row(row: sqlite3.Row) -> StateRecord:
    return StateRecord(
        instance_id=row["instance_id"],
        lifecycle_name=row["lifecycle_name"],
        current_state=row["current_state"],
        created_by=row["created_by"],
        created_at=_parse_ts(row["created_at"]),
        updated_by=row["updated_by"],
        updated_at=_parse_ts(row["updated_at"]),
    )


def _checklist_from_row(row: sqlite3.Row) -> ChecklistItemState:
    return ChecklistItemState(
        instance_id=row["instance_id"],
        state=row["state"],
        name=row["item_name"],
        checked=bool(row["checked"]),
        updated_by=row["updated_by"],
        updated_at=_parse_ts(row["updated_at"]),
    )


class SQLiteLifecycleStore(LifecycleStore):
    """Persist lifecycle data using SQLite.

    Statements run on worker threads through :func:`asyncio.to_thread`. The
    single connection is guarded by a lock and every write opens a
    ``BEGIN IMMEDIATE`` transaction, so a transition's check, update and
    history insert commit together.
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(
                self.db_path,
                timeout=timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"cannot open sqlite database {self.db_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS lifecycle_state (
                    instance_id TEXT PRIMARY KEY,
                    lifecycle_name TEXT NOT NULL,
                    current_state TEXT NOT NULL,
                    created_by TEXT,
                    created_at TEXT,
                    updated_by TEXT,
                    updated_at TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS ix_lifecycle_state_name_state
                ON lifecycle_state (lifecycle_name, current_state)
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS lifecycle_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    instance_id TEXT NOT NULL,
                    previous_state TEXT NOT NULL,
                    post_state TEXT NOT NULL,
                    username TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS ix_lifecycle_history_instance
                ON lifecycle_history (instance_id, timestamp, id)
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS lifecycle_checklist (
                    instance_id TEXT NOT NULL,
                    state TEXT NOT NULL,
                    item_name TEXT NOT NULL,
                    checked INTEGER NOT NULL,
                    updated_by TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (instance_id, state, item_name)
                )
                """
            )

    # ------------------------------------------------------------------
    # Helper methods
    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                cur.execute("BEGIN IMMEDIATE")
                yield cur
                cur.execute("COMMIT")
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.rollback()
                raise
            finally:
                cur.close()

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"sqlite error on {self.db_path}: {exc}") from exc

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    # ------------------------------------------------------------------
    # Synchronous units of work
    def _create_state(
        self, instance_id: str, lifecycle_name: str, initial_state: str, user: str
    ) -> StateRecord:
        now = _ts(utcnow())
        try:
            with self._transaction() as cur:
                cur.execute(
                    f"INSERT INTO lifecycle_state ({_STATE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (instance_id, lifecycle_name, initial_state, user, now, user, now),
                )
                row = cur.execute(
                    f"SELECT {_STATE_COLUMNS} FROM lifecycle_state WHERE instance_id = ?",
                    (instance_id,),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            raise RecordExists(instance_id) from exc
        return _state_from_row(row)

    def _transition(
        self, instance_id: str, previous_state: str, post_state: str, user: str
    ) -> TransitionEvent:
        with self._transaction() as cur:
            row = cur.execute(
                "SELECT current_state FROM lifecycle_state WHERE instance_id = ?",
                (instance_id,),
            ).fetchone()
            if row is None:
                raise RecordNotFound(instance_id)
            if row["current_state"] != previous_state:
                raise PreconditionFailed(previous_state, row["current_state"])
            last = cur.execute(
                "SELECT MAX(timestamp) AS ts FROM lifecycle_history WHERE instance_id = ?",
                (instance_id,),
            ).fetchone()
            timestamp = next_timestamp(_parse_ts(last["ts"]))
            cur.execute(
                """
                UPDATE lifecycle_state
                SET current_state = ?, updated_by = ?, updated_at = ?
                WHERE instance_id = ? AND current_state = ?
                """,
                (post_state, user, _ts(timestamp), instance_id, previous_state),
            )
            cur.execute(
                """
                INSERT INTO lifecycle_history
                    (instance_id, previous_state, post_state, username, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (instance_id, previous_state, post_state, user, _ts(timestamp)),
            )
            event_id = cur.lastrowid
        return TransitionEvent(
            id=event_id,
            instance_id=instance_id,
            previous_state=previous_state,
            post_state=post_state,
            user=user,
            timestamp=timestamp,
        )

    def _delete_instance(self, instance_id: str, purge_history: bool) -> int:
        with self._transaction() as cur:
            cur.execute(
                "DELETE FROM lifecycle_checklist WHERE instance_id = ?", (instance_id,)
            )
            if purge_history:
                cur.execute(
                    "DELETE FROM lifecycle_history WHERE instance_id = ?", (instance_id,)
                )
            cur.execute(
                "DELETE FROM lifecycle_state WHERE instance_id = ?", (instance_id,)
            )
            return cur.rowcount

    def _set_checklist_item(
        self,
        instance_id: str,
        state: str,
        name: str,
        checked: bool,
        user: str,
        require_current_state: bool,
    ) -> ChecklistItemState:
        now = utcnow()
        with self._transaction() as cur:
            row = cur.execute(
                "SELECT current_state FROM lifecycle_state WHERE instance_id = ?",
                (instance_id,),
            ).fetchone()
            if row is None:
                raise RecordNotFound(instance_id)
            if require_current_state and row["current_state"] != state:
                raise PreconditionFailed(state, row["current_state"])
            cur.execute(
                """
                INSERT INTO lifecycle_checklist
                    (instance_id, state, item_name, checked, updated_by, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (instance_id, state, item_name) DO UPDATE SET
                    checked = excluded.checked,
                    updated_by = excluded.updated_by,
                    updated_at = excluded.updated_at
                """,
                (instance_id, state, name, int(checked), user, _ts(now)),
            )
        return ChecklistItemState(
            instance_id=instance_id,
            state=state,
            name=name,
            checked=checked,
            updated_by=user,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # Store API
    async def init(self) -> None:
        await self._run(self._ensure_schema)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)

    async def create_state(
        self, instance_id: str, lifecycle_name: str, initial_state: str, user: str
    ) -> StateRecord:
        return await self._run(
            self._create_state, instance_id, lifecycle_name, initial_state, user
        )

    async def get_state(self, instance_id: str) -> StateRecord | None:
        row = await self._run(
            self._fetchone,
            f"SELECT {_STATE_COLUMNS} FROM lifecycle_state WHERE instance_id = ?",
            instance_id,
        )
        return _state_from_row(row) if row else None

    async def transition(
        self, instance_id: str, previous_state: str, post_state: str, user: str
    ) -> TransitionEvent:
        return await self._run(
            self._transition, instance_id, previous_state, post_state, user
        )

    async def delete_instance(self, instance_id: str, purge_history: bool = False) -> int:
        return await self._run(self._delete_instance, instance_id, purge_history)

    async def list_instance_ids(self, state: str, lifecycle_name: str) -> set[str]:
        rows = await self._run(
            self._fetchall,
            "SELECT instance_id FROM lifecycle_state WHERE current_state = ? AND lifecycle_name = ?",
            state,
            lifecycle_name,
        )
        return {r["instance_id"] for r in rows}

    async def history_page(
        self, instance_id: str, after_id: int | None, limit: int
    ) -> list[TransitionEvent]:
        rows = await self._run(
            self._fetchall,
            """
            SELECT id, instance_id, previous_state, post_state, username, timestamp
            FROM lifecycle_history
            WHERE instance_id = ? AND id > ?
            ORDER BY timestamp, id
            LIMIT ?
            """,
            instance_id,
            after_id or 0,
            limit,
        )
        return [
            TransitionEvent(
                id=r["id"],
                instance_id=r["instance_id"],
                previous_state=r["previous_state"],
                post_state=r["post_state"],
                user=r["username"],
                timestamp=_parse_ts(r["timestamp"]),
            )
            for r in rows
        ]

    async def set_checklist_item(
        self,
        instance_id: str,
        state: str,
        name: str,
        checked: bool,
        user: str,
        require_current_state: bool = False,
    ) -> ChecklistItemState:
        return await self._run(
            self._set_checklist_item,
            instance_id,
            state,
            name,
            checked,
            user,
            require_current_state,
        )

    async def get_checklist(
        self, instance_id: str, state: str
    ) -> dict[str, ChecklistItemState]:
        rows = await self._run(
            self._fetchall,
            """
            SELECT instance_id, state, item_name, checked, updated_by, updated_at
            FROM lifecycle_checklist
            WHERE instance_id = ? AND state = ?
            """,
            instance_id,
            state,
        )
        return {r["item_name"]: _checklist_from_row(r) for r in rows}
