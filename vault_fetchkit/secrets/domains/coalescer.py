"""
Single-flight fetch coalescer.

Concurrent callers presenting the same key share one producer run instead of
each starting their own. Flights complete through a concurrent.futures.Future,
so callers running on other threads or event loops attach to the same flight.
"""
import asyncio
import concurrent.futures
import logging
import threading
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

from .errors import TransientError

logger = logging.getLogger(__name__)

Producer = Callable[[], Awaitable[Any]]


def _label(key: Hashable) -> str:
    return str(getattr(key, "endpoint_key", key))


async def _stop(task: asyncio.Future) -> None:
    """Cancel ``task`` and wait until it has actually finished."""
    task.cancel()
    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            continue


class _FlightAbandoned(Exception):
    """The producer was cancelled while a waiter was still attached."""


class _Flight:
    """One producer run and the number of waiters still attached to it."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.future: concurrent.futures.Future = concurrent.futures.Future()
        self.task: Optional[asyncio.Task] = None
        self.waiters = 0
        self.abandoned = False


class FetchCoalescer:
    """
    Run at most one producer per key at a time.

    Registration is a check-and-set under a lock that is never held across
    the producer. Each waiter holds a reference on its flight; the producer
    is cancelled only when the last waiter detaches, and its key stays
    registered until it has stopped. Callers arriving meanwhile wait for it
    and then start a fresh attempt.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._lock = threading.Lock()
        self._in_flight: Dict[Hashable, _Flight] = {}

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def is_in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._in_flight

    async def run_once(self, key: Hashable, producer: Producer) -> Any:
        """
        Return the outcome of the flight for ``key``, starting one if needed.

        Args:
            key: Coalescing key (hashable)
            producer: Zero-argument coroutine function performing the fetch

        Returns:
            The producer's result, shared by every caller attached to the flight

        Raises:
            Whatever the producer raised, or TransientError on timeout
        """
        while True:
            flight = self._attach(key, producer)
            try:
                return await self._wait(flight)
            except _FlightAbandoned:
                logger.debug(f"Fetch for {_label(key)} was abandoned, starting a fresh attempt")
            finally:
                self._detach(key, flight)

    def _attach(self, key: Hashable, producer: Producer) -> _Flight:
        loop = asyncio.get_running_loop()
        with self._lock:
            flight = self._in_flight.get(key)
            if flight is None:
                flight = _Flight(loop)
                flight.task = loop.create_task(self._drive(key, flight, producer))
                flight.task.add_done_callback(partial(self._on_task_done, key, flight))
                self._in_flight[key] = flight
                logger.debug(f"Starting fetch for {_label(key)}")
            elif flight.abandoned:
                logger.debug(f"Waiting for abandoned fetch for {_label(key)} to stop")
            else:
                logger.debug(f"Joining in-flight fetch for {_label(key)}")
            flight.waiters += 1
        return flight

    def _detach(self, key: Hashable, flight: _Flight) -> None:
        with self._lock:
            flight.waiters -= 1
            orphaned = flight.waiters == 0 and not flight.future.done() and not flight.abandoned
            if orphaned:
                flight.abandoned = True
        # The slot stays registered until the producer has actually stopped
        if orphaned and flight.task is not None:
            logger.debug(f"No waiters left, cancelling fetch for {_label(key)}")
            try:
                flight.loop.call_soon_threadsafe(flight.task.cancel)
            except RuntimeError:
                # Loop already closed, nothing left to stop
                self._release(key, flight)
                flight.future.cancel()

    def _release(self, key: Hashable, flight: _Flight) -> None:
        with self._lock:
            if self._in_flight.get(key) is flight:
                del self._in_flight[key]

    def _on_task_done(self, key: Hashable, flight: _Flight, task: asyncio.Task) -> None:
        # A task cancelled before its first step never runs _drive's cleanup
        if not flight.future.done():
            self._release(key, flight)
            flight.future.cancel()

    async def _drive(self, key: Hashable, flight: _Flight, producer: Producer) -> None:
        # The slot is released before the outcome is published so that a
        # caller arriving after completion starts a fresh attempt.
        work = asyncio.ensure_future(producer())
        try:
            done, _ = await asyncio.wait({work}, timeout=self.timeout)
        except asyncio.CancelledError:
            await _stop(work)
            self._release(key, flight)
            flight.future.cancel()
            raise

        if not done:
            # Timed out: the slot is freed now, the stale attempt winds down alone
            work.cancel()
            work.add_done_callback(lambda stale: stale.cancelled() or stale.exception())
            self._release(key, flight)
            logger.warning(f"Fetch for {_label(key)} timed out after {self.timeout}s")
            flight.future.set_exception(TransientError(
                f"Fetch timed out after {self.timeout}s",
                endpoint_key=getattr(key, "endpoint_key", None),
            ))
            return

        self._release(key, flight)
        if work.cancelled():
            flight.future.cancel()
        elif work.exception() is not None:
            flight.future.set_exception(work.exception())
        else:
            flight.future.set_result(work.result())

    async def _wait(self, flight: _Flight) -> Any:
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()

        def _deliver(done: concurrent.futures.Future) -> None:
            if waiter.done():
                return
            if done.cancelled():
                waiter.set_exception(_FlightAbandoned())
            elif done.exception() is not None:
                waiter.set_exception(done.exception())
            else:
                waiter.set_result(done.result())

        def _on_done(done: concurrent.futures.Future) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_deliver, done)

        flight.future.add_done_callback(_on_done)
        return await waiter
