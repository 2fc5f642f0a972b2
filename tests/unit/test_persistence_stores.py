import uuid

import pytest

from lcmcore.persistence import PreconditionFailed, RecordExists, RecordNotFound


@pytest.mark.asyncio
async def test_store_create_and_get(store):
    instance_id = str(uuid.uuid4())
    created = await store.create_state(instance_id, "apiLifecycle", "Created", "alice")
    assert created.instance_id == instance_id
    assert created.current_state == "Created"

    record = await store.get_state(instance_id)
    assert record is not None
    assert record.lifecycle_name == "apiLifecycle"
    assert record.current_state == "Created"
    assert record.created_by == "alice"
    assert record.created_at is not None

    assert await store.get_state("missing") is None


@pytest.mark.asyncio
async def test_store_rejects_duplicate_id(store):
    await store.create_state("dup", "apiLifecycle", "Created", "alice")
    with pytest.raises(RecordExists):
        await store.create_state("dup", "apiLifecycle", "Created", "bob")

    record = await store.get_state("dup")
    assert record.created_by == "alice"


@pytest.mark.asyncio
async def test_store_transition_updates_state_and_history(store):
    await store.create_state("i1", "apiLifecycle", "Created", "alice")
    event = await store.transition("i1", "Created", "Testing", "bob")
    assert event.previous_state == "Created"
    assert event.post_state == "Testing"
    assert event.user == "bob"

    record = await store.get_state("i1")
    assert record.current_state == "Testing"
    assert record.updated_by == "bob"

    events = [e async for e in store.iter_history("i1")]
    assert [(e.previous_state, e.post_state) for e in events] == [("Created", "Testing")]


@pytest.mark.asyncio
async def test_store_transition_precondition(store):
    await store.create_state("i1", "apiLifecycle", "Created", "alice")
    await store.transition("i1", "Created", "Testing", "bob")

    with pytest.raises(PreconditionFailed) as excinfo:
        await store.transition("i1", "Created", "Published", "carol")
    assert excinfo.value.expected == "Created"
    assert excinfo.value.actual == "Testing"

    # A rejected transition leaves neither a state change nor a history row.
    record = await store.get_state("i1")
    assert record.current_state == "Testing"
    events = [e async for e in store.iter_history("i1")]
    assert len(events) == 1

    with pytest.raises(RecordNotFound):
        await store.transition("missing", "Created", "Testing", "bob")


@pytest.mark.asyncio
async def test_store_history_pages_in_order(store):
    states = ["s0", "s1", "s2", "s3", "s4", "s5"]
    await store.create_state("i1", "apiLifecycle", states[0], "alice")
    for prev, nxt in zip(states, states[1:]):
        await store.transition("i1", prev, nxt, "bob")

    events = [e async for e in store.iter_history("i1", page_size=2)]
    assert [(e.previous_state, e.post_state) for e in events] == list(
        zip(states, states[1:])
    )
    timestamps = [e.timestamp for e in events]
    assert timestamps == sorted(timestamps)

    first_page = await store.history_page("i1", None, 2)
    second_page = await store.history_page("i1", first_page[-1].id, 2)
    assert [e.post_state for e in second_page] == ["s3", "s4"]

    assert [e async for e in store.iter_history("missing")] == []


@pytest.mark.asyncio
async def test_store_checklist_upsert_is_scoped_by_state(store):
    await store.create_state("i1", "apiLifecycle", "Testing", "alice")

    await store.set_checklist_item("i1", "Testing", "reviewed", True, "bob")
    await store.set_checklist_item("i1", "Testing", "documented", False, "bob")
    await store.set_checklist_item("i1", "Published", "reviewed", False, "bob")

    testing = await store.get_checklist("i1", "Testing")
    assert set(testing) == {"reviewed", "documented"}
    assert testing["reviewed"].checked is True
    assert testing["documented"].checked is False
    assert testing["reviewed"].updated_by == "bob"

    await store.set_checklist_item("i1", "Testing", "reviewed", False, "carol")
    testing = await store.get_checklist("i1", "Testing")
    assert testing["reviewed"].checked is False
    assert testing["reviewed"].updated_by == "carol"

    published = await store.get_checklist("i1", "Published")
    assert list(published) == ["reviewed"]


@pytest.mark.asyncio
async def test_store_checklist_requires_instance(store):
    with pytest.raises(RecordNotFound):
        await store.set_checklist_item("missing", "Testing", "reviewed", True, "bob")


@pytest.mark.asyncio
async def test_store_checklist_current_state_check(store):
    await store.create_state("i1", "apiLifecycle", "Created", "alice")
    with pytest.raises(PreconditionFailed):
        await store.set_checklist_item(
            "i1", "Testing", "reviewed", True, "bob", require_current_state=True
        )
    assert await store.get_checklist("i1", "Testing") == {}

    item = await store.set_checklist_item(
        "i1", "Created", "reviewed", True, "bob", require_current_state=True
    )
    assert item.checked is True


@pytest.mark.asyncio
async def test_store_state_with_checklist(store):
    await store.create_state("i1", "apiLifecycle", "Testing", "alice")
    await store.set_checklist_item("i1", "Testing", "unitTestsPassed", True, "bob")

    record = await store.get_state_with_checklist("i1", "Testing")
    assert record.current_state == "Testing"
    assert record.checklist_state == "Testing"
    assert record.is_checked("unitTestsPassed")

    other = await store.get_state_with_checklist("i1", "Created")
    assert other.checklist == {}

    assert await store.get_state_with_checklist("missing", "Testing") is None


@pytest.mark.asyncio
async def test_store_delete_instance(store):
    await store.create_state("i1", "apiLifecycle", "Created", "alice")
    await store.transition("i1", "Created", "Testing", "bob")
    await store.set_checklist_item("i1", "Testing", "reviewed", True, "bob")

    assert await store.delete_instance("i1") == 1
    assert await store.get_state("i1") is None
    assert await store.get_checklist("i1", "Testing") == {}
    assert len([e async for e in store.iter_history("i1")]) == 1

    assert await store.delete_instance("i1") == 0


@pytest.mark.asyncio
async def test_store_delete_instance_purging_history(store):
    await store.create_state("i1", "apiLifecycle", "Created", "alice")
    await store.transition("i1", "Created", "Testing", "bob")

    assert await store.delete_instance("i1", purge_history=True) == 1
    assert [e async for e in store.iter_history("i1")] == []


@pytest.mark.asyncio
async def test_store_list_instance_ids(store):
    await store.create_state("a", "apiLifecycle", "Created", "alice")
    await store.create_state("b", "apiLifecycle", "Created", "alice")
    await store.create_state("c", "appLifecycle", "Created", "alice")
    await store.transition("b", "Created", "Testing", "bob")

    assert await store.list_instance_ids("Created", "apiLifecycle") == {"a"}
    assert await store.list_instance_ids("Testing", "apiLifecycle") == {"b"}
    assert await store.list_instance_ids("Created", "appLifecycle") == {"c"}
    assert await store.list_instance_ids("Retired", "apiLifecycle") == set()
