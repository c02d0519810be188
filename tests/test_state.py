import asyncio

import pytest

from app.core.state import ConversationRecord, ConversationStateStore, KeyedLock, TurnState


async def test_get_unknown_conversation_returns_fresh_record() -> None:
    store = ConversationStateStore()

    record = await store.get("never-seen")

    assert record == ConversationRecord(count=0, thread_id=None)
    assert "never-seen" in store


async def test_set_then_get_returns_saved_values() -> None:
    store = ConversationStateStore()

    await store.set("conv-1", ConversationRecord(count=3, thread_id="thread-9"))
    record = await store.get("conv-1")

    assert record.count == 3
    assert record.thread_id == "thread-9"


async def test_get_returns_copy_until_set() -> None:
    store = ConversationStateStore()

    record = await store.get("conv-1")
    record.count = 5

    assert (await store.get("conv-1")).count == 0


async def test_delete_then_get_returns_fresh_record() -> None:
    store = ConversationStateStore()
    await store.set("conv-1", ConversationRecord(count=7, thread_id="t"))

    await store.delete("conv-1")
    record = await store.get("conv-1")

    assert record.count == 0
    assert record.thread_id is None


async def test_delete_is_idempotent() -> None:
    store = ConversationStateStore()

    await store.delete("missing")
    await store.delete("missing")

    assert len(store) == 0


async def test_set_rejects_negative_count() -> None:
    store = ConversationStateStore()

    with pytest.raises(ValueError):
        await store.set("conv-1", ConversationRecord(count=-1))


def test_record_dict_round_trip_uses_thread_id_key() -> None:
    record = ConversationRecord(count=2, thread_id="thread-1")

    assert record.to_dict() == {"count": 2, "threadId": "thread-1"}
    assert ConversationRecord.from_dict({"count": 2, "threadId": "thread-1"}) == record
    assert ConversationRecord.from_dict({}) == ConversationRecord()


def test_turn_state_delete_resets_record() -> None:
    state = TurnState("conv-1", ConversationRecord(count=4, thread_id="t"))

    state.delete_conversation_state()

    assert state.is_deleted is True
    assert state.conversation == ConversationRecord()


async def test_keyed_lock_serializes_same_key() -> None:
    locks = KeyedLock()
    active = 0
    max_active = 0

    async def worker() -> None:
        nonlocal active, max_active
        async with locks.hold("conv-1"):
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(5)))

    assert max_active == 1
    assert len(locks) == 0


async def test_keyed_lock_allows_different_keys_concurrently() -> None:
    locks = KeyedLock()
    entered = asyncio.Event()
    release = asyncio.Event()

    async def holder() -> None:
        async with locks.hold("conv-1"):
            entered.set()
            await release.wait()

    task = asyncio.create_task(holder())
    await entered.wait()

    async with locks.hold("conv-2"):
        assert len(locks) == 2

    release.set()
    await task
    assert len(locks) == 0
