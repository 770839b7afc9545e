"""Tests for single-flight fetch coalescing."""
import asyncio
import threading
import time

import pytest

from vault_fetchkit.secrets.domains.coalescer import FetchCoalescer
from vault_fetchkit.secrets.domains.errors import AuthError, TransientError
from vault_fetchkit.secrets.domains.models import FetchKey

KEY = FetchKey("vault-a", "sa.json")


class GatedProducer:
    """Coroutine producer that blocks on an event and counts its runs."""

    def __init__(self, result="value", error=None):
        self.result = result
        self.error = error
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.runs = 0
        self.cancelled = False

    async def __call__(self):
        self.runs += 1
        self.started.set()
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.result


async def _settle():
    # Let freshly created tasks reach their first suspension point
    for _ in range(20):
        await asyncio.sleep(0)


class TestRunOnce:
    """Test suite for FetchCoalescer.run_once."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_run(self):
        """Only the first caller starts the producer; everyone gets its result."""
        coalescer = FetchCoalescer()
        producer = GatedProducer(result={"DB_PASS": b"s3cret"})

        tasks = [asyncio.create_task(coalescer.run_once(KEY, producer)) for _ in range(10)]
        await producer.started.wait()
        await _settle()
        assert coalescer.in_flight_count == 1

        producer.gate.set()
        results = await asyncio.gather(*tasks)

        assert producer.runs == 1
        assert all(result is results[0] for result in results)
        assert coalescer.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_failure_broadcast_to_all_waiters(self):
        """Every waiter of a failed attempt sees the same error instance."""
        coalescer = FetchCoalescer()
        error = AuthError("credential rejected", endpoint_key="vault-a")
        producer = GatedProducer(error=error)

        tasks = [asyncio.create_task(coalescer.run_once(KEY, producer)) for _ in range(3)]
        await producer.started.wait()
        await _settle()
        producer.gate.set()
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        assert producer.runs == 1
        assert all(outcome is error for outcome in outcomes)

    @pytest.mark.asyncio
    async def test_slot_cleared_after_failure(self):
        """A failed attempt is not remembered; the next call runs the producer again."""
        coalescer = FetchCoalescer()
        calls = []

        async def failing():
            calls.append(1)
            raise TransientError("network blip")

        with pytest.raises(TransientError):
            await coalescer.run_once(KEY, failing)
        with pytest.raises(TransientError):
            await coalescer.run_once(KEY, failing)

        assert len(calls) == 2
        assert not coalescer.is_in_flight(KEY)

    @pytest.mark.asyncio
    async def test_sequential_calls_run_fresh_attempts(self):
        """Results are not cached by the coalescer."""
        coalescer = FetchCoalescer()
        calls = []

        async def producer():
            calls.append(1)
            return len(calls)

        assert await coalescer.run_once(KEY, producer) == 1
        assert await coalescer.run_once(KEY, producer) == 2

    @pytest.mark.asyncio
    async def test_distinct_keys_run_in_parallel(self):
        """Different keys never wait on each other."""
        coalescer = FetchCoalescer()
        first = GatedProducer(result="a")
        second = GatedProducer(result="b")

        task_a = asyncio.create_task(coalescer.run_once(FetchKey("vault-a", None), first))
        task_b = asyncio.create_task(coalescer.run_once(FetchKey("vault-b", None), second))
        await asyncio.wait_for(asyncio.gather(first.started.wait(), second.started.wait()), 1)
        assert coalescer.in_flight_count == 2

        first.gate.set()
        second.gate.set()
        assert await asyncio.gather(task_a, task_b) == ["a", "b"]


class TestCancellation:
    """Reference-counted cancellation of waiters."""

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_abort_shared_fetch(self):
        """Cancelling caller A leaves the fetch running for caller B."""
        coalescer = FetchCoalescer()
        producer = GatedProducer(result="shared")

        caller_a = asyncio.create_task(coalescer.run_once(KEY, producer))
        caller_b = asyncio.create_task(coalescer.run_once(KEY, producer))
        await producer.started.wait()
        await _settle()

        caller_a.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller_a

        producer.gate.set()
        assert await caller_b == "shared"
        assert producer.runs == 1
        assert not producer.cancelled

    @pytest.mark.asyncio
    async def test_last_waiter_leaving_cancels_producer(self):
        """Once nobody needs the result the producer is cancelled and the slot freed."""
        coalescer = FetchCoalescer()
        producer = GatedProducer()

        caller = asyncio.create_task(coalescer.run_once(KEY, producer))
        await producer.started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await _settle()

        assert producer.cancelled
        assert coalescer.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_key_stays_busy_until_cancelled_producer_stops(self):
        """A caller arriving while an abandoned producer winds down waits, then runs fresh."""
        coalescer = FetchCoalescer()
        wound_down = asyncio.Event()
        state = {"runs": 0, "active": 0, "peak": 0}

        async def producer():
            state["runs"] += 1
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            try:
                if state["runs"] == 1:
                    try:
                        await asyncio.Event().wait()
                    except asyncio.CancelledError:
                        await wound_down.wait()
                        raise
                return "fresh"
            finally:
                state["active"] -= 1

        first = asyncio.create_task(coalescer.run_once(KEY, producer))
        await _settle()
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        await _settle()
        assert coalescer.is_in_flight(KEY)

        second = asyncio.create_task(coalescer.run_once(KEY, producer))
        await _settle()
        assert state["runs"] == 1

        wound_down.set()
        assert await second == "fresh"
        assert state["runs"] == 2
        assert state["peak"] == 1
        assert coalescer.in_flight_count == 0


class TestTimeout:
    """Per-attempt timeouts."""

    @pytest.mark.asyncio
    async def test_timeout_surfaces_transient_error_to_all_waiters(self):
        """A slow attempt fails every waiter with TransientError and frees the key."""
        coalescer = FetchCoalescer(timeout=0.05)
        producer = GatedProducer()

        outcomes = await asyncio.gather(
            coalescer.run_once(KEY, producer),
            coalescer.run_once(KEY, producer),
            return_exceptions=True,
        )

        assert producer.runs == 1
        assert all(isinstance(outcome, TransientError) for outcome in outcomes)
        assert outcomes[0] is outcomes[1]
        assert outcomes[0].endpoint_key == "vault-a"
        assert not coalescer.is_in_flight(KEY)


class TestCrossThread:
    """Callers on separate threads and event loops coalesce too."""

    def test_callers_on_other_threads_share_flight(self):
        coalescer = FetchCoalescer()
        release = threading.Event()
        runs = []
        results = []

        async def producer():
            runs.append(1)
            await asyncio.to_thread(release.wait, 5)
            return "shared"

        def caller():
            results.append(asyncio.run(coalescer.run_once(KEY, producer)))

        first = threading.Thread(target=caller)
        first.start()
        deadline = time.monotonic() + 5
        while not coalescer.is_in_flight(KEY) and time.monotonic() < deadline:
            time.sleep(0.01)

        second = threading.Thread(target=caller)
        second.start()
        time.sleep(0.2)
        release.set()
        first.join(5)
        second.join(5)

        assert results == ["shared", "shared"]
        assert len(runs) == 1
