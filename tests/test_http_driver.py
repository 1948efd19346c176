"""Tests for the HTTP driver against a mocked node."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from meterflex.cache import CallKey, QueryCache
from meterflex.config import FlexConfig
from meterflex.driver import ExplainArg, ExplainClause, FilterArg
from meterflex.driver.http import HttpDriver
from meterflex.errors import BadParameterError, DriverClosedError, RejectedError, TransportError
from meterflex.meter import Meter
from meterflex.models import VMOutput
from meterflex.ticker import Ticker

from conftest import ALICE, BOB, TOKEN, ZERO32, block_id, block_payload

CONFIG = FlexConfig(node_url="http://node.test", poll_interval=0.001)

Handler = Callable[[httpx.Request], httpx.Response]


class FakeNode:
    """Routes requests to canned JSON. Records every request."""

    def __init__(self, best: int = 100) -> None:
        self.best = best
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Any] = {}
        self.fail_next = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_next:
            self.fail_next -= 1
            return httpx.Response(502, text="bad gateway")
        path = request.url.path
        if path == "/blocks/best":
            return httpx.Response(200, json=block_payload(self.best))
        if path == "/blocks/0":
            return httpx.Response(200, json=block_payload(0))
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture()
def node() -> FakeNode:
    return FakeNode()


async def _connect(node: FakeNode) -> HttpDriver:
    return await HttpDriver.connect(CONFIG, transport=node.transport())


class TestConnect:
    """Genesis and head are loaded on connect."""

    @pytest.mark.asyncio
    async def test_connect(self, node: FakeNode) -> None:
        driver = await _connect(node)
        assert driver.genesis.number == 0
        assert driver.head.id == block_id(100)
        await driver.close()
        assert driver.closed

    @pytest.mark.asyncio
    async def test_connect_failure(self, node: FakeNode) -> None:
        node.fail_next = 1
        with pytest.raises(TransportError):
            await _connect(node)

    @pytest.mark.asyncio
    async def test_meter_connect(self, node: FakeNode) -> None:
        async with await Meter.connect(CONFIG, transport=node.transport()) as meter:
            assert meter.genesis.id == block_id(0)


class TestErrors:
    """HTTP status codes map to typed errors."""

    @pytest.mark.asyncio
    async def test_not_found_is_none(self, node: FakeNode) -> None:
        driver = await _connect(node)
        assert await driver.get_transaction("0x" + "ab" * 32) is None
        assert await driver.get_block(12345) is None
        await driver.close()

    @pytest.mark.parametrize(
        "status,error",
        [(400, BadParameterError), (403, RejectedError), (500, TransportError)],
    )
    @pytest.mark.asyncio
    async def test_status_mapping(self, node: FakeNode, status: int, error: type) -> None:
        node.routes[("GET", f"/transactions/{ZERO32}")] = lambda r: httpx.Response(status, text="boom")
        driver = await _connect(node)
        with pytest.raises(error):
            await driver.get_transaction(ZERO32)
        await driver.close()

    @pytest.mark.asyncio
    async def test_network_error(self, node: FakeNode) -> None:
        def broken(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        node.routes[("GET", f"/transactions/{ZERO32}")] = broken
        driver = await _connect(node)
        with pytest.raises(TransportError):
            await driver.get_transaction(ZERO32)
        await driver.close()

    @pytest.mark.asyncio
    async def test_closed_driver(self, node: FakeNode) -> None:
        driver = await _connect(node)
        await driver.close()
        with pytest.raises(DriverClosedError):
            await driver.get_block(1)
        with pytest.raises(DriverClosedError):
            await driver.poll_head()


class TestHead:
    """Head polling. The REST API gives no change sets."""

    @pytest.mark.asyncio
    async def test_poll_returns_extending_head_without_change_set(self, node: FakeNode) -> None:
        driver = await _connect(node)
        node.best = 101

        head = await driver.poll_head()

        assert head.number == 101
        assert head.parent_id == block_id(100)
        assert head.changed_addresses is None
        assert driver.head is head
        assert all(r.url.path == "/blocks/best" for r in node.requests[2:])
        await driver.close()

    @pytest.mark.asyncio
    async def test_poll_after_gap(self, node: FakeNode) -> None:
        driver = await _connect(node)
        node.best = 105
        head = await driver.poll_head()
        assert head.number == 105
        assert head.changed_addresses is None
        await driver.close()

    @pytest.mark.asyncio
    async def test_new_head_clears_entries_tied_to_untargeted_contract(self, node: FakeNode) -> None:
        driver = await _connect(node)
        ticker = Ticker(driver)
        cache = QueryCache(driver, ticker)
        expanded = block_payload(101)
        expanded["transactions"] = [
            {
                "id": ZERO32,
                "origin": BOB,
                "clauses": [{"to": ALICE, "value": "0x0", "data": "0x"}],
                "outputs": [{"events": [], "transfers": []}],
            }
        ]
        node.routes[("GET", f"/blocks/{block_id(101)}")] = expanded

        async def execute(revision: str) -> VMOutput:
            return VMOutput(data=ZERO32, vm_error="", gas_used=0, reverted=False)

        key = CallKey.build(TOKEN, "0x70a08231")
        await cache.call(key, execute, ties=[TOKEN])
        assert key in cache

        node.best = 101
        head = await ticker.next()

        assert head is not None and head.number == 101
        assert key not in cache
        cache.close()
        ticker.close()
        await driver.close()


class TestRequests:
    """Request shapes sent to the node."""

    @pytest.mark.asyncio
    async def test_explain(self, node: FakeNode) -> None:
        seen: dict[str, Any] = {}

        def explain(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["revision"] = request.url.params["revision"]
            return httpx.Response(200, json=[{"data": "0x01", "gasUsed": 10, "reverted": False, "vmError": ""}])

        node.routes[("POST", "/accounts/*")] = explain
        driver = await _connect(node)
        arg = ExplainArg(clauses=(ExplainClause(to=TOKEN, value="0x0", data="0x"),), caller=ALICE, gas_price="0x1")

        outputs = await driver.explain(arg, driver.head.id)

        assert outputs[0].data == "0x01"
        assert seen["revision"] == driver.head.id
        assert seen["body"] == {
            "clauses": [{"to": TOKEN, "value": "0x0", "data": "0x", "token": 0}],
            "caller": ALICE,
            "gasPrice": "0x1",
        }
        await driver.close()

    @pytest.mark.asyncio
    async def test_explain_length_mismatch(self, node: FakeNode) -> None:
        node.routes[("POST", "/accounts/*")] = []
        driver = await _connect(node)
        arg = ExplainArg(clauses=(ExplainClause(to=TOKEN, value="0x0", data="0x"),))
        with pytest.raises(TransportError):
            await driver.explain(arg, driver.head.id)
        await driver.close()

    @pytest.mark.asyncio
    async def test_event_logs(self, node: FakeNode) -> None:
        seen: dict[str, Any] = {}

        def logs(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json=[{"address": TOKEN, "topics": [ZERO32], "data": "0x", "meta": {"blockNumber": 7, "logIndex": 2}}],
            )

        node.routes[("POST", "/logs/event")] = logs
        driver = await _connect(node)
        arg = FilterArg(range={"unit": "block", "from": 0, "to": 10}, offset=0, limit=5, criteria_set=(), order="desc")

        events = await driver.filter_event_logs(arg)

        assert events[0].meta.block_number == 7
        assert events[0].meta.log_index == 2
        assert seen["body"]["options"] == {"offset": 0, "limit": 5}
        assert seen["body"]["order"] == "desc"
        await driver.close()

    @pytest.mark.asyncio
    async def test_account_revision(self, node: FakeNode) -> None:
        node.routes[("GET", f"/accounts/{ALICE}")] = {"balance": "0x10", "energy": "0x20", "hasCode": False}
        driver = await _connect(node)
        account = await driver.get_account(ALICE, driver.head.id)
        assert account.balance == "0x10"
        assert node.requests[-1].url.params["revision"] == driver.head.id
        await driver.close()

    @pytest.mark.asyncio
    async def test_signing_without_wallet(self, node: FakeNode) -> None:
        driver = await _connect(node)
        with pytest.raises(RejectedError):
            await driver.sign_cert({}, None)
        assert not await driver.is_address_owned(ALICE)
        await driver.close()
