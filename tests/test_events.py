"""Tests for the in-process event bus."""

from __future__ import annotations

import asyncio

from sqlpilot.events.bus import AgentEvent, EventBus


class TestEventBus:
    def test_subscribe_and_publish(self):
        bus = EventBus()
        received = []
        bus.subscribe(AgentEvent.FINAL_ANSWER, lambda e, p: received.append((e, p)))
        bus.publish(AgentEvent.FINAL_ANSWER, {"answer": "42"})
        bus.publish(AgentEvent.SESSION_STARTED, {})
        assert received == [(AgentEvent.FINAL_ANSWER, {"answer": "42"})]

    def test_subscribe_all(self):
        bus = EventBus()
        received = []
        bus.subscribe_all(lambda e, p: received.append(e))
        bus.publish(AgentEvent.SESSION_STARTED, {})
        bus.publish(AgentEvent.SESSION_FAILED, {})
        assert received == [AgentEvent.SESSION_STARTED, AgentEvent.SESSION_FAILED]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []

        def handler(event, payload):
            received.append(event)

        bus.subscribe(AgentEvent.FINAL_ANSWER, handler)
        bus.unsubscribe(AgentEvent.FINAL_ANSWER, handler)
        bus.unsubscribe(AgentEvent.FINAL_ANSWER, handler)
        bus.publish(AgentEvent.FINAL_ANSWER, {})
        assert received == []

    def test_handler_errors_are_swallowed(self):
        bus = EventBus()
        received = []

        def broken(event, payload):
            raise RuntimeError("handler bug")

        bus.subscribe(AgentEvent.FINAL_ANSWER, broken)
        bus.subscribe(AgentEvent.FINAL_ANSWER, lambda e, p: received.append(p))
        bus.publish(AgentEvent.FINAL_ANSWER, {"answer": "ok"})
        assert received == [{"answer": "ok"}]

    async def test_async_handler_is_scheduled(self):
        bus = EventBus()
        received = []

        async def handler(event, payload):
            received.append(payload)

        bus.subscribe(AgentEvent.ITERATION_STARTED, handler)
        bus.publish(AgentEvent.ITERATION_STARTED, {"iteration": 1})
        assert received == []
        await asyncio.sleep(0)
        assert received == [{"iteration": 1}]

    async def test_drain_waits_for_async_handlers(self):
        bus = EventBus()
        received = []

        async def slow(event, payload):
            await asyncio.sleep(0.01)
            received.append(payload)

        bus.subscribe(AgentEvent.FINAL_ANSWER, slow)
        bus.publish(AgentEvent.FINAL_ANSWER, {"answer": "42"})
        assert bus.pending == 1
        await bus.drain()
        assert received == [{"answer": "42"}]
        assert bus.pending == 0

    async def test_drain_covers_events_published_by_handlers(self):
        bus = EventBus()
        received = []

        async def relay(event, payload):
            await asyncio.sleep(0)
            bus.publish(AgentEvent.SESSION_EXHAUSTED, payload)

        async def sink(event, payload):
            await asyncio.sleep(0.01)
            received.append(event)

        bus.subscribe(AgentEvent.ITERATION_STARTED, relay)
        bus.subscribe(AgentEvent.SESSION_EXHAUSTED, sink)
        bus.publish(AgentEvent.ITERATION_STARTED, {})
        await bus.drain()
        assert received == [AgentEvent.SESSION_EXHAUSTED]

    async def test_async_handler_failure_is_contained(self):
        bus = EventBus()
        received = []

        async def broken(event, payload):
            raise RuntimeError("handler bug")

        async def healthy(event, payload):
            received.append(payload)

        bus.subscribe(AgentEvent.FINAL_ANSWER, broken)
        bus.subscribe(AgentEvent.FINAL_ANSWER, healthy)
        bus.publish(AgentEvent.FINAL_ANSWER, {"answer": "ok"})
        await bus.drain()
        assert received == [{"answer": "ok"}]
        assert bus.pending == 0

    async def test_drain_with_nothing_pending(self):
        await EventBus().drain()

    def test_async_handler_without_loop_is_dropped(self):
        bus = EventBus()
        received = []

        async def handler(event, payload):
            received.append(payload)

        bus.subscribe(AgentEvent.ITERATION_STARTED, handler)
        bus.publish(AgentEvent.ITERATION_STARTED, {"iteration": 1})
        assert received == []
        assert bus.pending == 0

    def test_event_values_are_strings(self):
        assert AgentEvent.FINAL_ANSWER == "session.final_answer"
        assert str(AgentEvent.COMPRESSION_PROGRESS) == "compression.progress"
