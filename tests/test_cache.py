"""Tests for the call cache and its head-driven invalidation."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from meterflex.cache import CallKey, QueryCache
from meterflex.driver import ExplainArg, ExplainClause
from meterflex.ticker import Ticker

from conftest import ALICE, BOB, TOKEN, FakeDriver, block_id, make_head

BALANCE_OF = "0x70a08231" + "00" * 12 + "a1" * 20


def executor(driver: FakeDriver, data: str = BALANCE_OF):
    async def execute(revision: str):
        arg = ExplainArg(clauses=(ExplainClause(to=TOKEN, value="0x0", data=data),))
        return (await driver.explain(arg, revision))[0]

    return execute


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture()
def ticker(driver: FakeDriver) -> Ticker:
    return Ticker(driver)


@pytest.fixture()
def cache(driver: FakeDriver, ticker: Ticker) -> QueryCache:
    return QueryCache(driver, ticker)


class TestCallKey:
    """Keys compare by normalized payload."""

    def test_case_insensitive_equality(self) -> None:
        a = CallKey.build(TOKEN.upper().replace("0X", "0x"), BALANCE_OF.upper().replace("0X", "0x"), caller=ALICE)
        b = CallKey.build(TOKEN, BALANCE_OF, caller=ALICE, value="0")
        assert a == b
        assert hash(a) == hash(b)

    def test_options_are_part_of_identity(self) -> None:
        base = CallKey.build(TOKEN, BALANCE_OF)
        assert base != CallKey.build(TOKEN, BALANCE_OF, caller=ALICE)
        assert base != CallKey.build(TOKEN, BALANCE_OF, value=1)
        assert base != CallKey.build(TOKEN, BALANCE_OF, gas=50000)


class TestHits:
    """Same key in the same head epoch is served from memory."""

    @pytest.mark.asyncio
    async def test_second_call_is_a_hit(self, driver: FakeDriver, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        first = await cache.call(key, executor(driver), ties=[TOKEN])
        second = await cache.call(key, executor(driver), ties=[TOKEN])

        assert first is second
        assert len(driver.explain_calls) == 1
        assert driver.explain_calls[0][1] == driver.head.id
        assert cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_without_ties_nothing_is_stored(self, driver: FakeDriver, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        await cache.call(key, executor(driver))
        await cache.call(key, executor(driver))
        assert len(driver.explain_calls) == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_call(self, driver: FakeDriver, cache: QueryCache) -> None:
        driver.explain_gate = asyncio.Event()
        key = CallKey.build(TOKEN, BALANCE_OF)
        tasks = [asyncio.create_task(cache.call(key, executor(driver), ties=[TOKEN])) for _ in range(5)]
        await _settle()
        assert len(driver.explain_calls) == 1

        driver.explain_gate.set()
        results = await asyncio.gather(*tasks)
        assert all(r is results[0] for r in results)
        assert len(driver.explain_calls) == 1


class TestInvalidation:
    """A head change never lets a stale value through."""

    @pytest.mark.asyncio
    async def test_tied_address_change_drops_entry(self, driver: FakeDriver, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        driver.call_results[BALANCE_OF] = "0x" + "00" * 31 + "01"
        before = await cache.call(key, executor(driver), ties=[TOKEN])

        driver.call_results[BALANCE_OF] = "0x" + "00" * 31 + "02"
        driver.push(make_head(101, changed={TOKEN}))
        await _settle()

        assert key not in cache
        after = await cache.call(key, executor(driver), ties=[TOKEN])
        assert before.data != after.data
        assert driver.explain_calls[-1][1] == block_id(101)

    @pytest.mark.asyncio
    async def test_untouched_tie_survives(self, driver: FakeDriver, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        await cache.call(key, executor(driver), ties=[TOKEN])

        driver.push(make_head(101, changed={BOB}))
        await _settle()

        assert key in cache
        await cache.call(key, executor(driver), ties=[TOKEN])
        assert len(driver.explain_calls) == 1

    @pytest.mark.asyncio
    async def test_empty_ties_drop_on_any_head(self, driver: FakeDriver, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        await cache.call(key, executor(driver), ties=[])

        driver.push(make_head(101, changed={BOB}))
        await _settle()
        assert key not in cache

    @pytest.mark.asyncio
    async def test_unknown_changes_drop_everything(self, driver: FakeDriver, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        await cache.call(key, executor(driver), ties=[TOKEN])

        driver.push(make_head(101))
        await _settle()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_fork_drops_everything(self, driver: FakeDriver, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        await cache.call(key, executor(driver), ties=[TOKEN])

        driver.push(make_head(101, fork=1, changed={BOB}, parent_fork=1))
        await _settle()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_head_moved_outside_ticker(self, driver: FakeDriver, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        await cache.call(key, executor(driver), ties=[TOKEN])

        driver.jump(make_head(101, changed={BOB}))
        await cache.call(key, executor(driver), ties=[TOKEN])

        assert len(driver.explain_calls) == 2
        assert cache.head_id == block_id(101)

    @pytest.mark.asyncio
    async def test_result_from_old_head_is_not_stored(
        self, driver: FakeDriver, ticker: Ticker, cache: QueryCache
    ) -> None:
        driver.explain_gate = asyncio.Event()
        key = CallKey.build(TOKEN, BALANCE_OF)
        task = asyncio.create_task(cache.call(key, executor(driver), ties=[TOKEN]))
        await _settle()

        waiter = ticker.next()
        driver.push(make_head(101, changed={BOB}))
        await waiter

        driver.explain_gate.set()
        await task
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_caller_after_head_change_does_not_join_old_call(
        self, driver: FakeDriver, ticker: Ticker, cache: QueryCache
    ) -> None:
        driver.explain_gate = asyncio.Event()
        key = CallKey.build(TOKEN, BALANCE_OF)
        run = executor(driver)

        async def pinned(revision: str):
            return replace(await run(revision), data=revision)

        early = asyncio.create_task(cache.call(key, pinned, ties=[TOKEN]))
        await _settle()

        waiter = ticker.next()
        driver.push(make_head(101, changed={TOKEN}))
        await waiter

        late = asyncio.create_task(cache.call(key, pinned, ties=[TOKEN]))
        await _settle()
        assert [revision for _, revision in driver.explain_calls] == [block_id(100), block_id(101)]

        driver.explain_gate.set()
        before, after = await asyncio.gather(early, late)
        assert before.data == block_id(100)
        assert after.data == block_id(101)
        assert cache.stats()["inflight"] == 0

    @pytest.mark.asyncio
    async def test_manual_invalidate(self, driver: FakeDriver, cache: QueryCache) -> None:
        tied = CallKey.build(TOKEN, BALANCE_OF)
        other = CallKey.build(BOB, BALANCE_OF)
        await cache.call(tied, executor(driver), ties=[TOKEN])
        await cache.call(other, executor(driver), ties=[BOB])

        assert cache.invalidate([TOKEN.upper().replace("0X", "0x")]) == 1
        assert tied not in cache
        assert other in cache

        cache.clear()
        assert len(cache) == 0
        assert cache.stats()["invalidations"] == 2


class TestClose:
    """Closing detaches from the ticker."""

    @pytest.mark.asyncio
    async def test_close_clears_and_detaches(self, driver: FakeDriver, ticker: Ticker, cache: QueryCache) -> None:
        key = CallKey.build(TOKEN, BALANCE_OF)
        await cache.call(key, executor(driver), ties=[TOKEN])

        cache.close()
        ticker.close()

        assert len(cache) == 0
        result = await cache.call(key, executor(driver), ties=[TOKEN])
        assert result.gas_used == 21000
        assert len(cache) == 0
