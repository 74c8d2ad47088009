"""Tests for the bounded-concurrency batch runner."""

from __future__ import annotations

import threading
import time

import pytest

from entityfinder.errors import BatchError, EmptyBatchError, StateError
from entityfinder.utils.batch import BatchRunner


class TestBatchRunner:
    """Test BatchRunner."""

    def test_results_in_input_order(self) -> None:
        """Should keep results in input order whatever the finishing order."""

        def task(delay: float) -> float:
            time.sleep(delay)
            return delay

        delays = [0.05, 0.01, 0.03, 0.0]
        result = BatchRunner(delays, task, concurrency=4).run()

        assert [item.result for item in result.items] == delays
        assert result.errors is False
        assert result.error is None

    def test_empty_batch(self) -> None:
        """Should refuse an empty batch."""
        with pytest.raises(EmptyBatchError):
            BatchRunner([], lambda item: item)

    def test_invalid_concurrency(self) -> None:
        """Should require at least one worker."""
        with pytest.raises(ValueError):
            BatchRunner([1], lambda item: item, concurrency=0)

    def test_concurrency_clamped(self) -> None:
        """Should not start more workers than items."""
        runner = BatchRunner([1, 2], lambda item: item, concurrency=10)

        assert runner.concurrency == 2

    def test_bounded_concurrency(self) -> None:
        """Should never run more tasks at once than allowed."""
        lock = threading.Lock()
        active = 0
        peak = 0

        def task(item: int) -> int:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with lock:
                active -= 1
            return item

        result = BatchRunner(list(range(12)), task, concurrency=3).run()

        assert [item.result for item in result.items] == list(range(12))
        assert 1 <= peak <= 3

    def test_errors_collected(self) -> None:
        """Should record failures per slot and attach a combined error."""

        def task(item: int) -> int:
            if item % 2:
                raise RuntimeError(f"bad {item}")
            return item

        result = BatchRunner([0, 1, 2, 3], task, concurrency=2).run()

        assert result.errors is True
        assert [item.failed for item in result.items] == [False, True, False, True]
        assert isinstance(result.error, BatchError)
        assert [str(error) for error in result.error.errors] == ["bad 1", "bad 3"]
        assert result.error.__cause__ is result.error.errors[0]

    def test_fail_fast(self) -> None:
        """Should raise the first failure and start no further tasks."""
        started = []

        def task(item: int) -> int:
            started.append(item)
            if item == 0:
                raise RuntimeError("boom")
            return item

        with pytest.raises(RuntimeError, match="boom"):
            BatchRunner([0, 1, 2, 3], task, concurrency=1, fail_fast=True).run()

        assert started == [0]

    def test_callback_called_once(self) -> None:
        """Should signal completion exactly once."""
        calls = []

        runner = BatchRunner([1, 2, 3], lambda item: item * 2, concurrency=2, on_complete=lambda r, e: calls.append((r, e)))
        result = runner.run()

        assert len(calls) == 1
        assert calls[0] == (result, None)

    def test_callback_on_fail_fast(self) -> None:
        """Should pass the failure to the callback in fail-fast mode."""
        calls = []

        def task(item: int) -> int:
            raise ValueError("nope")

        runner = BatchRunner([1, 2], task, concurrency=1, fail_fast=True, on_complete=lambda r, e: calls.append((r, e)))
        with pytest.raises(ValueError):
            runner.run()

        assert len(calls) == 1
        assert calls[0][0] is None
        assert isinstance(calls[0][1], ValueError)

    def test_runs_once(self) -> None:
        """Should refuse to run twice."""
        runner = BatchRunner([1], lambda item: item)
        runner.run()

        with pytest.raises(RuntimeError, match="only run once"):
            runner.run()

    def test_callback_error_propagates(self) -> None:
        """Should raise errors from the completion callback to the caller."""

        def callback(result, error) -> None:
            raise RuntimeError("callback failed")

        runner = BatchRunner([1, 2], lambda item: item, concurrency=2, on_complete=callback)

        with pytest.raises(RuntimeError, match="callback failed"):
            runner.run()

    def test_callback_runs_on_calling_thread(self) -> None:
        """Should invoke the completion callback from run()."""
        threads = []

        runner = BatchRunner([1, 2], lambda item: item, concurrency=2, on_complete=lambda r, e: threads.append(threading.current_thread()))
        runner.run()

        assert threads == [threading.current_thread()]

    def test_base_exception_fills_slot(self) -> None:
        """Should record failures outside the Exception hierarchy instead of hanging."""

        class Abort(BaseException):
            pass

        def task(item: int) -> int:
            if item == 1:
                raise Abort()
            return item

        result = BatchRunner([0, 1, 2], task, concurrency=2).run()

        assert [item.failed for item in result.items] == [False, True, False]
        assert isinstance(result.items[1].error, Abort)

    def test_missing_result_is_a_state_error(self) -> None:
        """Should raise StateError when completion is signalled without a result."""
        runner = BatchRunner([1], lambda item: item)
        runner._fill = lambda position, outcome: runner._done.set()

        with pytest.raises(StateError):
            runner.run()
