"""
Unit tests for the event dispatcher.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List
from unittest.mock import MagicMock

import pytest

from cloud9trader.emitter import TIMEOUT, EventEmitter, ListenerHandle


@dataclass
class Recorder:
    """Callable dataclass; eq=True leaves it unhashable."""
    name: str
    calls: List[tuple] = field(default_factory=list)

    def __call__(self, *args):
        self.calls.append(args)


class Account:
    def __init__(self):
        self.updates = []

    def on_balance(self, balance):
        self.updates.append(balance)


class TestRegistration:
    """on / off / emit behaviour."""

    def test_emit_calls_handlers_in_registration_order(self):
        emitter = EventEmitter()
        calls = []
        emitter.on("balances", lambda *args: calls.append(("first", args)))
        emitter.on("balances", lambda *args: calls.append(("second", args)))

        emitter.emit("balances", {"equity": 100}, "extra")

        assert calls == [
            ("first", ({"equity": 100}, "extra")),
            ("second", ({"equity": 100}, "extra")),
        ]

    def test_duplicate_registration_is_noop(self):
        emitter = EventEmitter()
        handler = MagicMock()

        first = emitter.on("orders", handler)
        second = emitter.on("orders", handler)
        emitter.emit("orders", [])

        assert first is second
        assert emitter.listener_count("orders") == 1
        handler.assert_called_once_with([])

    def test_emit_unknown_event_is_noop(self):
        emitter = EventEmitter()
        emitter.emit("nothing-registered", 1, 2)
        assert emitter.listeners("nothing-registered") == []

    def test_off_by_handle(self):
        emitter = EventEmitter()
        handler = MagicMock()
        handle = emitter.on("positions", handler)

        assert isinstance(handle, ListenerHandle)
        assert emitter.off(handle) is True
        assert handle.active is False
        emitter.emit("positions", [])

        handler.assert_not_called()

    def test_off_by_event_and_handler(self):
        emitter = EventEmitter()
        handler = MagicMock()
        emitter.on("positions", handler)

        assert emitter.off("positions", handler) is True
        assert emitter.off("positions", handler) is False
        emitter.emit("positions", [])

        handler.assert_not_called()

    def test_unhashable_handler(self):
        emitter = EventEmitter()
        recorder = Recorder("balances")

        first = emitter.on("balances", recorder)
        second = emitter.on("balances", recorder)
        emitter.emit("balances", [{"equity": 5}])

        assert first is second
        assert recorder.calls == [([{"equity": 5}],)]
        assert emitter.off("balances", recorder) is True
        assert emitter.listener_count("balances") == 0

    def test_equal_handlers_are_separate_registrations(self):
        emitter = EventEmitter()
        first, second = Recorder("same"), Recorder("same")
        emitter.on("orders", first)
        emitter.on("orders", second)

        emitter.off("orders", first)
        emitter.emit("orders", [])

        assert first.calls == []
        assert second.calls == [([],)]

    def test_bound_method_matches_on_off(self):
        emitter = EventEmitter()
        account = Account()
        emitter.on("balances", account.on_balance)

        assert emitter.on("balances", account.on_balance).active
        assert emitter.listener_count("balances") == 1
        assert emitter.off("balances", account.on_balance) is True
        emitter.emit("balances", 10)

        assert account.updates == []

    def test_listen_adds_separate_registration(self):
        emitter = EventEmitter()
        handler = MagicMock()
        shared = emitter.on("orders", handler)
        separate = emitter.listen("orders", handler)

        emitter.off(separate)
        emitter.emit("orders", [])

        assert shared.active is True
        handler.assert_called_once_with([])

    def test_off_unknown_is_noop(self):
        emitter = EventEmitter()
        assert emitter.off("missing", MagicMock()) is False

    def test_handler_removing_itself_during_emit(self):
        emitter = EventEmitter()
        calls = []
        handles = {}

        def first():
            calls.append("first")
            emitter.off(handles["first"])

        handles["first"] = emitter.on("tick", first)
        emitter.on("tick", lambda: calls.append("second"))

        emitter.emit("tick")
        emitter.emit("tick")

        assert calls == ["first", "second", "second"]

    def test_handler_removed_by_earlier_handler_is_skipped(self):
        emitter = EventEmitter()
        later = MagicMock()
        handles = {}

        handles["early"] = emitter.on("tick", lambda: emitter.off(handles["late"]))
        handles["late"] = emitter.on("tick", later)

        emitter.emit("tick")

        later.assert_not_called()

    def test_handler_added_during_emit_runs_next_time(self):
        emitter = EventEmitter()
        added = MagicMock()
        emitter.once("tick", lambda: emitter.on("tick", added))

        emitter.emit("tick")
        added.assert_not_called()

        emitter.emit("tick")
        added.assert_called_once_with()

    def test_failing_handler_does_not_stop_fanout(self):
        emitter = EventEmitter()
        after = MagicMock()
        emitter.on("tick", MagicMock(side_effect=RuntimeError("boom")))
        emitter.on("tick", after)

        emitter.emit("tick", 1)

        after.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_async_handler_is_scheduled(self):
        emitter = EventEmitter()
        received = []

        async def handler(value):
            received.append(value)

        emitter.on("tick", handler)
        emitter.emit("tick", 42)
        await asyncio.sleep(0)

        assert received == [42]


class TestOnce:
    """One-shot registrations."""

    def test_once_fires_at_most_once(self):
        emitter = EventEmitter()
        handler = MagicMock()
        emitter.once("connected", handler)

        emitter.emit("connected")
        emitter.emit("connected")

        handler.assert_called_once_with()
        assert emitter.listener_count("connected") == 0

    def test_once_can_be_cancelled_by_handle(self):
        emitter = EventEmitter()
        handler = MagicMock()
        handle = emitter.once("connected", handler)

        emitter.off(handle)
        emitter.emit("connected")

        handler.assert_not_called()

    def test_once_removed_by_original_handler(self):
        emitter = EventEmitter()
        handler = MagicMock()
        emitter.once("connected", handler)

        assert emitter.off("connected", handler) is True
        emitter.emit("connected")

        handler.assert_not_called()

    def test_reentrant_emit_from_once_handler(self):
        emitter = EventEmitter()
        handler = MagicMock()

        def reemit():
            emitter.emit("connected")

        emitter.once("connected", reemit)
        emitter.once("connected", handler)
        emitter.emit("connected")

        handler.assert_called_once_with()


class TestWaitFor:
    """Timed one-shot registrations."""

    @pytest.mark.asyncio
    async def test_event_before_timeout(self):
        emitter = EventEmitter()
        handler = MagicMock()
        handle = emitter.wait_for("abc12/0", handler, 0.05)

        emitter.emit("abc12/0", None, {"balance": 10})
        await asyncio.sleep(0.1)

        handler.assert_called_once_with(None, {"balance": 10})
        assert handle._timer is None
        assert handle.active is False

    @pytest.mark.asyncio
    async def test_timeout_before_event(self):
        emitter = EventEmitter()
        handler = MagicMock()
        emitter.wait_for("abc12/1", handler, 0.05)

        await asyncio.sleep(0.1)
        emitter.emit("abc12/1", None, {"late": True})

        handler.assert_called_once_with(TIMEOUT)
        assert emitter.listener_count("abc12/1") == 0

    @pytest.mark.asyncio
    async def test_repeated_emit_only_first_delivered(self):
        emitter = EventEmitter()
        handler = MagicMock()
        emitter.wait_for("abc12/2", handler, 1.0)

        emitter.emit("abc12/2", None, "first")
        emitter.emit("abc12/2", None, "second")

        handler.assert_called_once_with(None, "first")

    @pytest.mark.asyncio
    async def test_cancel_wait_for_stops_timer(self):
        emitter = EventEmitter()
        handler = MagicMock()
        handle = emitter.wait_for("abc12/3", handler, 0.05)

        emitter.off(handle)
        await asyncio.sleep(0.1)

        handler.assert_not_called()
