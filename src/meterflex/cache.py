"""
Query cache for read-only contract calls.

Results are keyed by the fully encoded call (``CallKey``) and tied to the
set of addresses the caller says the result depends on. Nothing expires by
time. Entries are dropped when the chain head moves:

- if the new head directly extends the last one and the driver reported
  which addresses it touched, only entries tied to one of those addresses
  (and entries with no ties at all) are dropped;
- otherwise the whole cache is dropped.

Invalidation runs synchronously inside the ticker's head notification, so
no lookup after a head change can see a value from before it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Union

from loguru import logger

from .driver import Driver
from .models import Head, VMOutput
from .ticker import Ticker
from .utils import normalize_address, normalize_hex, to_quantity

# Receives the head id to pin the call to.
CallExecutor = Callable[[str], Awaitable[VMOutput]]


@dataclass(frozen=True)
class CallKey:
    """Identity of a read-only call. ``data`` is the full encoded payload."""

    target: Optional[str]
    data: str
    caller: Optional[str] = None
    value: str = "0x0"
    token: int = 0
    gas: Optional[int] = None
    gas_price: Optional[str] = None

    @classmethod
    def build(
        cls,
        target: Optional[str],
        data: str,
        caller: Optional[str] = None,
        value: Union[int, str] = 0,
        token: int = 0,
        gas: Optional[int] = None,
        gas_price: Optional[str] = None,
    ) -> "CallKey":
        return cls(
            target=normalize_address(target, "to") if target is not None else None,
            data=normalize_hex(data),
            caller=normalize_address(caller, "caller") if caller is not None else None,
            value=to_quantity(value),
            token=token,
            gas=gas,
            gas_price=to_quantity(gas_price, "gasPrice") if gas_price is not None else None,
        )


@dataclass(frozen=True)
class CacheEntry:
    key: CallKey
    value: VMOutput
    ties: frozenset[str]
    created_at_head: str


class QueryCache:
    def __init__(self, driver: Driver, ticker: Ticker) -> None:
        self._driver = driver
        self._ticker = ticker
        self._entries: dict[CallKey, CacheEntry] = {}
        self._inflight: dict[tuple[CallKey, str], asyncio.Task] = {}
        self._head_id = ticker.head.id
        self._follower: Optional[asyncio.Task] = None
        self._closed = False
        self.hits = 0
        self.misses = 0
        self.invalidations = 0
        ticker.add_listener(self._on_head)

    @property
    def head_id(self) -> str:
        return self._head_id

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CallKey) -> bool:
        return key in self._entries

    async def call(
        self,
        key: CallKey,
        execute: CallExecutor,
        ties: Optional[Iterable[str]] = None,
    ) -> VMOutput:
        """
        Serve ``key`` from cache or run ``execute`` once for all concurrent callers.

        Args:
            key: Encoded call identity
            execute: Coroutine function running the call at a given head id
            ties: Addresses the result depends on. None disables storing.

        Returns:
            The VMOutput of the call
        """
        self._sync_head()
        store = ties is not None
        tie_set = frozenset(a.lower() for a in ties) if ties is not None else frozenset()

        entry = self._entries.get(key)
        if entry is not None:
            self.hits += 1
            logger.debug(f"Cache hit for call to {key.target}")
            return entry.value

        # In-flight calls are shared only within one head.
        flight = (key, self._head_id)
        task = self._inflight.get(flight)
        if task is None:
            self.misses += 1
            logger.debug(f"Cache miss for call to {key.target} at {self._head_id}")
            task = asyncio.get_running_loop().create_task(self._execute(flight, execute, tie_set, store))
            self._inflight[flight] = task
        return await asyncio.shield(task)

    async def _execute(
        self, flight: tuple[CallKey, str], execute: CallExecutor, ties: frozenset[str], store: bool
    ) -> VMOutput:
        key, head_id = flight
        try:
            value = await execute(head_id)
        finally:
            if self._inflight.get(flight) is asyncio.current_task():
                del self._inflight[flight]

        # A result computed against an older head must not outlive it.
        if store and not self._closed and head_id == self._head_id:
            self._entries[key] = CacheEntry(key=key, value=value, ties=ties, created_at_head=head_id)
            self._ensure_follower()
        return value

    def invalidate(self, addresses: Optional[Iterable[str]] = None) -> int:
        """Drop entries tied to any of ``addresses``, or everything when None."""
        if addresses is None:
            return self._drop(list(self._entries))
        targets = {a.lower() for a in addresses}
        return self._drop([k for k, e in self._entries.items() if e.ties & targets])

    def clear(self) -> None:
        self._drop(list(self._entries))

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "invalidations": self.invalidations,
            "inflight": len(self._inflight),
        }

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ticker.remove_listener(self._on_head)
        follower, self._follower = self._follower, None
        if follower is not None:
            follower.cancel()
        self._entries.clear()

    # --- invalidation -----------------------------------------------------

    def _drop(self, keys: list[CallKey]) -> int:
        for key in keys:
            del self._entries[key]
        if keys:
            self.invalidations += len(keys)
            logger.debug(f"Invalidated {len(keys)} cached call(s)")
        return len(keys)

    def _sync_head(self) -> None:
        current = self._driver.head
        if current.id != self._head_id:
            # The driver moved past heads this cache never saw.
            self._drop(list(self._entries))
            self._head_id = current.id

    def _on_head(self, head: Head, previous: Head) -> None:
        if head.id == self._head_id:
            return
        changed = head.changed_addresses
        if changed is None or head.parent_id != self._head_id:
            self._drop(list(self._entries))
        else:
            self._drop([k for k, e in self._entries.items() if not e.ties or e.ties & changed])
        self._head_id = head.id

    def _ensure_follower(self) -> None:
        if self._follower is None and not self._closed:
            self._follower = asyncio.get_running_loop().create_task(self._follow())

    async def _follow(self) -> None:
        # Keeps head notifications flowing only while there is something to invalidate.
        try:
            while self._entries and not self._closed:
                head = await self._ticker.next()
                if head is None:
                    self.clear()
                    return
        finally:
            if self._follower is asyncio.current_task():
                self._follower = None
