"""
Ticker - head change notification hub.

Many callers can wait for "the next head" at once. The ticker runs at most
one driver poll at a time and attaches every waiter to it. When the poll
sees a new head, all waiters resolve together with the same ``Head``
object. No poll runs while nobody is waiting.

Futures returned by ``next()`` never fail. Transport errors during a poll
are retried with backoff. The only other outcome is shutdown: after
``close()`` (or when the driver reports it is closed) every pending and
future waiter resolves to ``None``.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Optional

from loguru import logger

from .driver import Driver
from .errors import DriverClosedError
from .models import Head
from .utils import backoff_delay

# Called synchronously with (new_head, previous_head) before waiters resolve.
HeadListener = Callable[[Head, Head], None]


class Ticker:
    def __init__(self, driver: Driver, *, retry_base: float = 0.5, retry_max_delay: float = 10.0) -> None:
        self._driver = driver
        self._head = driver.head
        self._retry_base = retry_base
        self._retry_max_delay = retry_max_delay
        self._waiters: list[asyncio.Future] = []
        self._listeners: list[HeadListener] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._closed = False
        self.polls = 0

    @property
    def head(self) -> Head:
        return self._head

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def add_listener(self, listener: HeadListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: HeadListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def next(self, since: Optional[str] = None) -> "asyncio.Future[Optional[Head]]":
        """
        Return a future for the next head.

        Args:
            since: Head id the caller last saw. If the ticker already holds a
                different head, the future resolves with it at once.

        Returns:
            Future resolving with the new Head, or None after shutdown.
        """
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future = loop.create_future()
        if self._closed:
            waiter.set_result(None)
            return waiter

        known = self._driver.head
        if known.id != self._head.id:
            # Someone else already moved the driver forward.
            self._advance(known)
            waiter.set_result(self._head)
            return waiter
        if since is not None and since != self._head.id:
            waiter.set_result(self._head)
            return waiter

        self._waiters.append(waiter)
        if self._poll_task is None:
            logger.debug(f"Polling for head after #{self._head.number}")
            self._poll_task = loop.create_task(self._poll())
        return waiter

    async def __aiter__(self) -> AsyncIterator[Head]:
        last = self._head.id
        while True:
            head = await self.next(since=last)
            if head is None:
                return
            last = head.id
            yield head

    def close(self) -> None:
        if self._closed:
            return
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._shutdown()

    def _shutdown(self) -> None:
        self._closed = True
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
        logger.info(f"Ticker closed, released {len(waiters)} waiter(s)")

    def _advance(self, head: Head) -> None:
        previous, self._head = self._head, head
        logger.debug(f"Head advanced #{previous.number} -> #{head.number} ({head.id})")
        for listener in list(self._listeners):
            try:
                listener(head, previous)
            except Exception:  # noqa: BLE001
                logger.exception("Head listener failed")

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(head)

    async def _poll(self) -> None:
        attempt = 0
        try:
            while True:
                self._waiters = [w for w in self._waiters if not w.done()]
                if not self._waiters:
                    return
                try:
                    self.polls += 1
                    head = await self._driver.poll_head()
                except DriverClosedError:
                    logger.info("Driver closed while polling for head")
                    self._poll_task = None
                    self._shutdown()
                    return
                except Exception as exc:  # noqa: BLE001
                    attempt += 1
                    delay = backoff_delay(attempt, base=self._retry_base, max_delay=self._retry_max_delay)
                    logger.warning(f"Head poll failed (attempt {attempt}), retrying in {delay:.2f}s: {exc!r}")
                    await asyncio.sleep(delay)
                    continue

                attempt = 0
                if head.id != self._head.id:
                    self._poll_task = None
                    self._advance(head)
                    return
        finally:
            if self._poll_task is asyncio.current_task():
                self._poll_task = None


class TickerView:
    """
    Per-caller handle on a shared Ticker.

    Remembers the last head it handed out, so a caller that was busy while
    the chain moved gets the newest head immediately on its next ``next()``.
    """

    def __init__(self, ticker: Ticker) -> None:
        self._ticker = ticker
        self._last_id = ticker.head.id

    @property
    def head(self) -> Head:
        return self._ticker.head

    def next(self) -> "asyncio.Future[Optional[Head]]":
        waiter = self._ticker.next(since=self._last_id)
        if waiter.done():
            self._seen(waiter)
        else:
            waiter.add_done_callback(self._seen)
        return waiter

    def _seen(self, waiter: asyncio.Future) -> None:
        if waiter.cancelled():
            return
        head = waiter.result()
        if head is not None:
            self._last_id = head.id
