"""Tests for detached session and telemetry writes."""

from __future__ import annotations

import asyncio

from conftest import InMemorySessionStore, InMemoryTelemetryStore
from dataroom_rag.models.domain import ChatScope, MessageRole
from dataroom_rag.pipeline.session_tracker import SessionTracker

SCOPE = ChatScope(dataroom_id="dr1", link_id="l1", viewer_id="v1")


async def test_turn_writes_in_order():
    store = InMemorySessionStore()
    tracker = SessionTracker(store, InMemoryTelemetryStore())
    turn = tracker.start_turn(SCOPE, "What is the rent?")
    turn.record_assistant("It is 10k.", {"state": "completed"})
    await tracker.drain()
    session_id = turn.known_session_id
    assert session_id is not None
    assert store.roles(session_id) == [MessageRole.USER, MessageRole.ASSISTANT]
    assert store.messages[session_id][1][2] == {"state": "completed"}
    assert tracker.pending == 0


async def test_existing_session_is_reused_for_same_scope():
    store = InMemorySessionStore()
    tracker = SessionTracker(store)
    first = tracker.start_turn(SCOPE, "q1")
    first_id = await first.session_id(1.0)
    second = tracker.start_turn(SCOPE, "q2", first_id)
    assert await second.session_id(1.0) == first_id

    other_scope = ChatScope(dataroom_id="dr1", link_id="l1", viewer_id="someone-else")
    third = tracker.start_turn(other_scope, "q3", first_id)
    assert await third.session_id(1.0) != first_id


async def test_store_failures_are_swallowed():
    tracker = SessionTracker(InMemorySessionStore(fail=True))
    turn = tracker.start_turn(SCOPE, "q")
    turn.record_assistant("a")
    await tracker.drain()
    assert turn.known_session_id is None


async def test_session_id_wait_is_bounded():
    class SlowStore(InMemorySessionStore):
        async def get_or_create_session(self, scope, title, session_id=None):
            await asyncio.sleep(1.0)
            return await super().get_or_create_session(scope, title, session_id)

    tracker = SessionTracker(SlowStore())
    turn = tracker.start_turn(SCOPE, "q")
    assert await turn.session_id(0.05) is None
    await tracker.drain()
    assert turn.known_session_id is not None


async def test_telemetry_is_saved_with_session_id():
    telemetry = InMemoryTelemetryStore()
    tracker = SessionTracker(InMemorySessionStore(), telemetry)
    turn = tracker.start_turn(SCOPE, "q")
    turn.persist_telemetry({"trace_id": "t1", "state": "completed"})
    await tracker.drain()
    snapshot, session_id = telemetry.snapshots[0]
    assert snapshot["trace_id"] == "t1"
    assert session_id == turn.known_session_id


async def test_title_is_truncated():
    store = InMemorySessionStore()
    seen = {}

    async def spy(scope, title, session_id=None):
        seen["title"] = title
        return await InMemorySessionStore.get_or_create_session(store, scope, title, session_id)

    store.get_or_create_session = spy
    tracker = SessionTracker(store)
    tracker.start_turn(SCOPE, "x" * 100)
    await tracker.drain()
    assert len(seen["title"]) == 60


async def test_without_telemetry_store_nothing_is_spawned():
    tracker = SessionTracker(InMemorySessionStore())
    assert tracker.telemetry_store is None
    turn = tracker.start_turn(SCOPE, "q")
    await tracker.drain()
    turn.persist_telemetry({"trace_id": "t1"})
    assert tracker.pending == 0
