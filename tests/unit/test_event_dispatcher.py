"""
EVENT DISPATCHER TESTS

Publishing never blocks or raises; handler failures are retried with
backoff and end up as dead letters, never in the publisher.
"""
import uuid

import pytest

from events import (
    ConflictDetected,
    DomainEvent,
    EventDispatcher,
    MoratoriumAction,
    MoratoriumChanged,
    ProjectStateChanged,
)


def _state_changed() -> ProjectStateChanged:
    return ProjectStateChanged(
        project_id=uuid.uuid4(), old_state="draft", new_state="pending_approval", actor_id="u-1"
    )


@pytest.mark.asyncio(loop_scope="function")
class TestEventDispatcher:

    async def test_delivers_to_matching_handlers_only(self, dispatcher):
        seen = []

        async def on_state(event):
            seen.append(("state", event.event_id))

        async def on_conflict(event):
            seen.append(("conflict", event.event_id))

        dispatcher.subscribe(ProjectStateChanged, on_state)
        dispatcher.subscribe(ConflictDetected, on_conflict)

        event = _state_changed()
        dispatcher.publish(event)
        await dispatcher.drain()

        assert seen == [("state", event.event_id)]
        assert dispatcher.delivered == 1

    async def test_base_class_subscription_receives_every_event(self, dispatcher):
        seen = []

        async def on_any(event):
            seen.append(type(event).__name__)

        dispatcher.subscribe(DomainEvent, on_any)
        dispatcher.publish(_state_changed())
        dispatcher.publish(MoratoriumChanged(
            moratorium_id=uuid.uuid4(),
            action=MoratoriumAction.CREATED,
            municipality_code="CZ0100",
            actor_id="c-1",
        ))
        await dispatcher.drain()

        assert seen == ["ProjectStateChanged", "MoratoriumChanged"]

    async def test_publish_does_not_wait_for_handlers(self, dispatcher):
        async def handler(event):
            raise AssertionError("not reached before drain")

        dispatcher.subscribe(ProjectStateChanged, handler)
        dispatcher.publish(_state_changed())

        assert dispatcher.pending == 1
        assert dispatcher.delivered == 0

    async def test_failing_handler_is_retried_then_succeeds(self, dispatcher):
        attempts = []

        async def flaky(event):
            attempts.append(event.event_id)
            if len(attempts) < 3:
                raise ConnectionError("audit store unavailable")

        dispatcher.subscribe(ProjectStateChanged, flaky)
        dispatcher.publish(_state_changed())
        await dispatcher.drain()

        assert len(attempts) == 3
        assert dispatcher.delivered == 1
        assert dispatcher.dead_letters == []

    async def test_exhausted_retries_become_dead_letter(self):
        dispatcher = EventDispatcher(max_retries=2, base_delay_seconds=0.0)
        calls = []

        async def broken(event):
            calls.append(1)
            raise RuntimeError("boom")

        async def healthy(event):
            calls.append(2)

        dispatcher.subscribe(ProjectStateChanged, broken)
        dispatcher.subscribe(ProjectStateChanged, healthy)
        event = _state_changed()
        dispatcher.publish(event)
        await dispatcher.drain()
        await dispatcher.stop()

        assert calls == [1, 1, 1, 2]
        assert len(dispatcher.dead_letters) == 1
        assert dispatcher.dead_letters[0]["event_id"] == event.event_id
        assert dispatcher.dead_letters[0]["error"] == "boom"

    async def test_stop_is_idempotent(self, dispatcher):
        await dispatcher.start()
        assert dispatcher.running
        await dispatcher.stop()
        await dispatcher.stop()
        assert not dispatcher.running


def test_events_are_immutable():
    event = _state_changed()
    with pytest.raises(Exception):
        event.new_state = "approved"
