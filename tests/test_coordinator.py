"""Tests for the worker gate and cancellation registry."""

from __future__ import annotations

import threading

import pytest

from bookshelf.exceptions import WorkerBusyError
from bookshelf.services.coordinator import CancellationToken, CoordinatorState


class TestWorkerGate:
    def test_acquire_until_release(self) -> None:
        state = CoordinatorState()

        assert state.try_acquire() is True
        assert state.is_busy
        assert state.try_acquire() is False
        assert state.try_acquire() is False

        state.release()
        assert not state.is_busy
        assert state.try_acquire() is True

    def test_concurrent_acquire_has_one_winner(self) -> None:
        state = CoordinatorState()
        threads_count = 16
        barrier = threading.Barrier(threads_count)
        results: list[bool] = []
        results_lock = threading.Lock()

        def contend() -> None:
            barrier.wait()
            acquired = state.try_acquire()
            with results_lock:
                results.append(acquired)

        threads = [threading.Thread(target=contend) for _ in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == threads_count - 1

    def test_worker_context_releases_on_error(self) -> None:
        state = CoordinatorState()

        with pytest.raises(RuntimeError):
            with state.worker():
                assert state.is_busy
                raise RuntimeError("job blew up")

        assert not state.is_busy

    def test_worker_context_refuses_when_held(self) -> None:
        state = CoordinatorState()
        assert state.try_acquire()

        with pytest.raises(WorkerBusyError):
            with state.worker():
                pass

        # The refused attempt must not release the holder's slot
        assert state.is_busy

    def test_fresh_states_are_isolated(self) -> None:
        first = CoordinatorState()
        second = CoordinatorState()

        assert first.try_acquire()
        assert second.try_acquire()
        first.register("f1")
        assert second.lookup("f1") is None


class TestCancellationRegistry:
    def test_cancel_unknown_returns_false(self) -> None:
        state = CoordinatorState()
        assert state.cancel("nope") is False

    def test_cancel_registered_token(self) -> None:
        state = CoordinatorState()
        token = state.register("f1")

        assert not token.cancelled
        assert state.cancel("f1") is True
        assert token.cancelled
        assert state.lookup("f1") is token

    def test_unregister(self) -> None:
        state = CoordinatorState()
        state.register("f1")
        state.unregister("f1")

        assert state.lookup("f1") is None
        assert state.cancel("f1") is False
        assert state.active_ids() == []

    def test_register_replaces_old_token(self) -> None:
        state = CoordinatorState()
        old = state.register("f1")
        old.cancel()

        new = state.register("f1")
        assert new is not old
        assert not new.cancelled
        assert state.active_ids() == ["f1"]

    def test_cancel_from_another_thread(self) -> None:
        state = CoordinatorState()
        token = state.register("f1")

        t = threading.Thread(target=state.cancel, args=("f1",))
        t.start()
        t.join()

        assert token.cancelled

    def test_finish_reports_cancellation_and_closes_window(self) -> None:
        state = CoordinatorState()
        state.register("f1")
        assert state.cancel("f1")

        assert state.finish("f1") is True
        assert state.cancel("f1") is False
        assert state.finish("f1") is False

    def test_finish_without_cancel(self) -> None:
        state = CoordinatorState()
        token = state.register("f1")

        assert state.finish("f1") is False
        assert state.lookup("f1") is None
        assert not token.cancelled

    def test_token_starts_clear(self) -> None:
        token = CancellationToken()
        assert not token.cancelled
        token.cancel()
        token.cancel()
        assert token.cancelled
