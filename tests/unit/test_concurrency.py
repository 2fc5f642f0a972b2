import asyncio

import pytest

from lcmcore import LifecycleEngine, StaleStateError
from lcmcore.db import LifecycleDB
from lcmcore.persistence import InMemoryLifecycleStore, SQLiteLifecycleStore


def _stores(tmp_path):
    return [
        InMemoryLifecycleStore(),
        SQLiteLifecycleStore(tmp_path / "race.db"),
        LifecycleDB(f"sqlite+aiosqlite:///{tmp_path / 'race_sqlmodel.db'}"),
    ]


@pytest.mark.asyncio
async def test_racing_transitions_from_same_state(tmp_path):
    for store in _stores(tmp_path):
        engine = LifecycleEngine(store)
        instance_id = await engine.associate("apiLifecycle", "A", "alice")

        results = await asyncio.gather(
            engine.transition("A", "B", instance_id, "bob"),
            engine.transition("A", "C", instance_id, "carol"),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], StaleStateError)

        winner = next(r for r in results if not isinstance(r, Exception))
        state = await engine.get_state(instance_id)
        assert state.current_state == winner.post_state
        assert state.current_state in ("B", "C")
        assert repr(state.current_state) in str(failures[0])

        events = await engine.get_history(instance_id).to_list()
        assert len(events) == 1
        assert events[0].post_state == state.current_state
        await store.close()


@pytest.mark.asyncio
async def test_many_racing_writers_one_winner(tmp_path):
    store = SQLiteLifecycleStore(tmp_path / "many.db")
    engine = LifecycleEngine(store)
    instance_id = await engine.associate("apiLifecycle", "Draft", "alice")

    results = await asyncio.gather(
        *(
            engine.transition("Draft", f"Review{n}", instance_id, f"user{n}")
            for n in range(10)
        ),
        return_exceptions=True,
    )

    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert all(
        isinstance(r, StaleStateError) for r in results if isinstance(r, Exception)
    )
    assert len(await engine.get_history(instance_id).to_list()) == 1
    await store.close()


@pytest.mark.asyncio
async def test_independent_instances_transition_concurrently(tmp_path):
    store = SQLiteLifecycleStore(tmp_path / "independent.db")
    engine = LifecycleEngine(store)
    ids = [await engine.associate("apiLifecycle", "A", "alice") for _ in range(5)]

    await asyncio.gather(*(engine.transition("A", "B", i, "bob") for i in ids))

    assert await engine.list_instance_ids("B", "apiLifecycle") == set(ids)
    await store.close()
