"""
Meter - application entry point.

One ``Meter`` owns one driver, one shared ``Ticker`` and one ``QueryCache``.
All visitors it hands out share them.

    async with await Meter.connect() as meter:
        block = await meter.block().get()
        async for head in meter.ticker():
            ...
"""

from __future__ import annotations

from typing import Any, Optional, Union

import httpx
from loguru import logger

from .cache import QueryCache
from .config import FlexConfig
from .driver import Driver
from .driver.http import HttpDriver
from .filter import Filter
from .models import Auction, AuctionSummary, Block, Bucket, Candidate, Delegate, Stakeholder, Status
from .ticker import Ticker, TickerView
from .vendor import Vendor
from .visitors import (
    AccountVisitor,
    BlockVisitor,
    BucketVisitor,
    CandidateVisitor,
    DelegateVisitor,
    Explainer,
    StakeholderVisitor,
    TransactionVisitor,
)


class Meter:
    def __init__(self, driver: Driver, config: Optional[FlexConfig] = None) -> None:
        config = config or FlexConfig()
        self._driver = driver
        self._ticker = Ticker(driver, retry_base=config.retry_base, retry_max_delay=config.retry_max_delay)
        self._cache = QueryCache(driver, self._ticker)
        self._vendor = Vendor(driver)
        self._closed = False

    @classmethod
    async def connect(
        cls,
        config: Optional[FlexConfig] = None,
        wallet: Any = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Meter":
        """Connect an ``HttpDriver`` to the configured node and wrap it."""
        config = config or FlexConfig.from_env()
        driver = await HttpDriver.connect(config, wallet=wallet, transport=transport)
        return cls(driver, config)

    async def __aenter__(self) -> "Meter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.close()

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @property
    def genesis(self) -> Block:
        return self._driver.genesis

    @property
    def status(self) -> Status:
        return Status.compute(self._driver.genesis.timestamp, self._ticker.head)

    @property
    def vendor(self) -> Vendor:
        return self._vendor

    def ticker(self) -> TickerView:
        return TickerView(self._ticker)

    def account(self, addr: str) -> AccountVisitor:
        return AccountVisitor(self._driver, self._cache, addr)

    def block(self, revision: Union[str, int, None] = None) -> BlockVisitor:
        return BlockVisitor(self._driver, revision)

    def transaction(self, tx_id: str) -> TransactionVisitor:
        return TransactionVisitor(self._driver, tx_id)

    def filter(self, kind: str) -> Filter:
        return Filter(self._driver, kind)

    def explain(self) -> Explainer:
        return Explainer(self._driver)

    async def candidates(self) -> list[Candidate]:
        return await self._driver.get_candidates()

    async def buckets(self) -> list[Bucket]:
        return await self._driver.get_buckets()

    async def stakeholders(self) -> list[Stakeholder]:
        return await self._driver.get_stakeholders()

    async def delegates(self) -> list[Delegate]:
        return await self._driver.get_delegates()

    async def auction(self) -> Auction:
        return await self._driver.get_auction()

    async def auction_summaries(self) -> list[AuctionSummary]:
        return await self._driver.get_auction_summaries()

    def bucket(self, bucket_id: str) -> BucketVisitor:
        return BucketVisitor(self._driver, bucket_id)

    def candidate(self, addr: str) -> CandidateVisitor:
        return CandidateVisitor(self._driver, addr)

    def stakeholder(self, addr: str) -> StakeholderVisitor:
        return StakeholderVisitor(self._driver, addr)

    def delegate(self, addr: str) -> DelegateVisitor:
        return DelegateVisitor(self._driver, addr)

    async def close(self) -> None:
        """Release every waiter, drop the cache and close the driver."""
        if self._closed:
            return
        self._closed = True
        self._cache.close()
        self._ticker.close()
        await self._driver.close()
        logger.debug("Meter closed")
