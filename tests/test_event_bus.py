"""
Tests for the EventBus.

Covers priority ordering, listener isolation, once listeners,
re-entrant dispatch and its depth bound, the history ring buffer
and the async dispatch path.
"""

import asyncio
import logging
import threading

import pytest

from models.events import EventKind
from orchestrator.bus import EventBus


# =============================================================================
# Subscribe / Publish
# =============================================================================

class TestDispatchOrder:
    """Listeners run by descending priority, ties in registration order."""

    def test_priority_then_registration_order(self, bus):
        calls = []
        bus.subscribe(EventKind.EXPENSE_ADDED, lambda p: calls.append("low"), priority=0)
        bus.subscribe(EventKind.EXPENSE_ADDED, lambda p: calls.append("high-1"), priority=10)
        bus.subscribe(EventKind.EXPENSE_ADDED, lambda p: calls.append("high-2"), priority=10)
        bus.subscribe(EventKind.EXPENSE_ADDED, lambda p: calls.append("negative"), priority=-5)

        invoked = bus.publish(EventKind.EXPENSE_ADDED, {"userId": "u1"})

        assert invoked == 4
        assert calls == ["high-1", "high-2", "low", "negative"]

    def test_payload_is_passed_through(self, bus):
        received = []
        bus.subscribe(EventKind.INCOME_ADDED, received.append)

        payload = {"userId": "u1", "amount": 5000}
        bus.publish(EventKind.INCOME_ADDED, payload)

        assert received == [payload]

    def test_enum_and_string_kinds_are_equivalent(self, bus):
        received = []
        bus.subscribe(EventKind.EXPENSE_ADDED, received.append)

        bus.publish("EXPENSE_ADDED", {"n": 1})

        assert received == [{"n": 1}]

    def test_unknown_kind_is_a_no_op(self, bus):
        assert bus.publish("SOMETHING_CUSTOM", {"x": 1}) == 0

    def test_custom_kind_can_be_subscribed(self, bus):
        received = []
        bus.subscribe("SOMETHING_CUSTOM", received.append)

        bus.publish("SOMETHING_CUSTOM", {"x": 1})

        assert received == [{"x": 1}]


class TestListenerIsolation:
    """A failing listener never breaks the publisher or its siblings."""

    def test_exception_is_logged_and_next_listener_runs(self, bus, caplog):
        calls = []

        def broken(payload):
            raise RuntimeError("boom")

        bus.subscribe(EventKind.AGENT_ALERT, broken, priority=5)
        bus.subscribe(EventKind.AGENT_ALERT, lambda p: calls.append(p))

        with caplog.at_level(logging.ERROR, logger="finpulse.orchestrator.bus"):
            invoked = bus.publish(EventKind.AGENT_ALERT, {"message": "hi"})

        assert invoked == 2
        assert calls == [{"message": "hi"}]
        assert "boom" in caplog.text


class TestUnsubscribe:
    """Tests for listener removal."""

    def test_unsubscribe_removes_listener(self, bus):
        calls = []
        listener_id = bus.subscribe(EventKind.BUDGET_UPDATED, calls.append)

        bus.unsubscribe(EventKind.BUDGET_UPDATED, listener_id)
        bus.publish(EventKind.BUDGET_UPDATED, {})

        assert calls == []
        assert bus.listener_count(EventKind.BUDGET_UPDATED) == 0

    def test_unknown_id_is_a_no_op(self, bus):
        bus.subscribe(EventKind.BUDGET_UPDATED, lambda p: None)

        bus.unsubscribe(EventKind.BUDGET_UPDATED, "does-not-exist")
        bus.unsubscribe(EventKind.ANOMALY_DETECTED, "does-not-exist")

        assert bus.listener_count(EventKind.BUDGET_UPDATED) == 1

    def test_listener_ids_are_unique(self, bus):
        first = bus.subscribe(EventKind.AGENT_ACTION, lambda p: None)
        second = bus.subscribe(EventKind.AGENT_ACTION, lambda p: None)

        assert first != second
        assert first.startswith("AGENT_ACTION_")

    def test_clear_all(self, bus):
        bus.subscribe(EventKind.AGENT_ACTION, lambda p: None)
        bus.subscribe(EventKind.AGENT_ALERT, lambda p: None)

        bus.clear_all()

        assert bus.registered_kinds() == []


class TestOnceListeners:
    """Once listeners fire a single time, even under re-entrant publish."""

    def test_once_fires_once(self, bus):
        calls = []
        bus.once(EventKind.BUDGET_CREATED, calls.append)

        bus.publish(EventKind.BUDGET_CREATED, {"n": 1})
        bus.publish(EventKind.BUDGET_CREATED, {"n": 2})

        assert calls == [{"n": 1}]
        assert bus.listener_count(EventKind.BUDGET_CREATED) == 0

    def test_once_is_not_refired_by_nested_publish(self, bus):
        calls = []

        def once_listener(payload):
            calls.append("once")
            bus.publish(EventKind.BUDGET_CREATED, {"nested": True})

        bus.once(EventKind.BUDGET_CREATED, once_listener)
        bus.subscribe(EventKind.BUDGET_CREATED, lambda p: calls.append("always"))

        bus.publish(EventKind.BUDGET_CREATED, {})

        assert calls.count("once") == 1
        assert calls.count("always") == 2


# =============================================================================
# Re-entrancy
# =============================================================================

class TestReentrantDispatch:
    """Nested publishes complete depth-first, bounded by max depth."""

    def test_nested_publish_completes_before_outer_continues(self, bus):
        order = []

        def on_expense(payload):
            order.append("expense:start")
            bus.publish(EventKind.AGENT_ALERT, {})
            order.append("expense:end")

        bus.subscribe(EventKind.EXPENSE_ADDED, on_expense)
        bus.subscribe(EventKind.AGENT_ALERT, lambda p: order.append("alert"))

        bus.publish(EventKind.EXPENSE_ADDED, {})

        assert order == ["expense:start", "alert", "expense:end"]

    def test_feedback_loop_is_cut_at_max_depth(self, caplog):
        bus = EventBus(max_dispatch_depth=5)
        calls = []

        def loop(payload):
            calls.append(payload)
            bus.publish(EventKind.AGENT_ACTION, payload)

        bus.subscribe(EventKind.AGENT_ACTION, loop)

        with caplog.at_level(logging.ERROR, logger="finpulse.orchestrator.bus"):
            bus.publish(EventKind.AGENT_ACTION, {"n": 0})

        assert len(calls) == 5
        assert bus.dropped_count == 1
        assert "max 5" in caplog.text

    def test_dropped_count_is_exact_across_threads(self):
        bus = EventBus(max_dispatch_depth=3)

        def loop(payload):
            bus.publish(EventKind.AGENT_ACTION, payload)

        bus.subscribe(EventKind.AGENT_ACTION, loop)

        def worker():
            for _ in range(50):
                bus.publish(EventKind.AGENT_ACTION, None)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert bus.dropped_count == 8 * 50

    def test_depth_resets_after_dispatch(self):
        bus = EventBus(max_dispatch_depth=2)
        calls = []
        bus.subscribe(EventKind.AGENT_ALERT, calls.append)

        for i in range(5):
            bus.publish(EventKind.AGENT_ALERT, i)

        assert calls == [0, 1, 2, 3, 4]
        assert bus.dropped_count == 0

    def test_invalid_limits_are_rejected(self):
        with pytest.raises(ValueError):
            EventBus(history_size=0)
        with pytest.raises(ValueError):
            EventBus(max_dispatch_depth=0)


# =============================================================================
# History
# =============================================================================

class TestHistory:
    """The history is a bounded ring buffer, oldest dropped first."""

    def test_history_keeps_most_recent(self):
        bus = EventBus(history_size=3)

        for i in range(5):
            bus.publish(EventKind.EXPENSE_ADDED, {"n": i})

        history = bus.recent_history(10)
        assert len(history) == 3
        assert [e.payload["n"] for e in history] == [2, 3, 4]

    def test_events_without_listeners_are_recorded(self, bus):
        bus.publish(EventKind.INCOME_ADDED, {"userId": "u1"})

        history = bus.recent_history()
        assert len(history) == 1
        assert history[0].kind == "INCOME_ADDED"

    def test_recent_history_count(self, bus):
        for i in range(4):
            bus.publish(EventKind.AGENT_ACTION, i)

        assert [e.payload for e in bus.recent_history(2)] == [2, 3]
        assert bus.recent_history(0) == []

    def test_history_timestamps_are_ordered(self, bus):
        for i in range(3):
            bus.publish(EventKind.AGENT_ACTION, i)

        stamps = [e.timestamp for e in bus.recent_history()]
        assert stamps == sorted(stamps)


# =============================================================================
# Async
# =============================================================================

class TestAsyncDispatch:
    """publish_async awaits listeners in order and collects results."""

    @pytest.mark.asyncio
    async def test_collects_results_and_errors(self, bus):
        async def first(payload):
            await asyncio.sleep(0)
            return 1

        def second(payload):
            raise ValueError("bad listener")

        async def third(payload):
            return 3

        bus.subscribe(EventKind.INCOME_ADDED, first, priority=3)
        bus.subscribe(EventKind.INCOME_ADDED, second, priority=2)
        bus.subscribe(EventKind.INCOME_ADDED, third, priority=1)

        results = await bus.publish_async(EventKind.INCOME_ADDED, {})

        assert results[0] == 1
        assert isinstance(results[1]["error"], ValueError)
        assert results[2] == 3

    @pytest.mark.asyncio
    async def test_listeners_are_awaited_sequentially(self, bus):
        order = []

        async def slow(payload):
            order.append("slow:start")
            await asyncio.sleep(0.01)
            order.append("slow:end")

        async def fast(payload):
            order.append("fast")

        bus.subscribe(EventKind.INCOME_ADDED, slow, priority=1)
        bus.subscribe(EventKind.INCOME_ADDED, fast)

        await bus.publish_async(EventKind.INCOME_ADDED, {})

        assert order == ["slow:start", "slow:end", "fast"]

    @pytest.mark.asyncio
    async def test_no_listeners_returns_empty(self, bus):
        assert await bus.publish_async(EventKind.INCOME_ADDED, {}) == []

    @pytest.mark.asyncio
    async def test_sync_publish_schedules_async_listener_on_running_loop(self, bus):
        done = asyncio.Event()

        async def listener(payload):
            done.set()

        bus.subscribe(EventKind.INCOME_ADDED, listener)
        bus.publish(EventKind.INCOME_ADDED, {})

        await asyncio.wait_for(done.wait(), timeout=1)
        assert done.is_set()

    def test_sync_publish_without_loop_drops_async_listener(self, bus, caplog):
        ran = []

        async def listener(payload):
            ran.append(payload)

        bus.subscribe(EventKind.INCOME_ADDED, listener)

        with caplog.at_level(logging.WARNING, logger="finpulse.orchestrator.bus"):
            invoked = bus.publish(EventKind.INCOME_ADDED, {})

        assert invoked == 1
        assert ran == []
        assert "publish_async" in caplog.text
