"""
HTTP driver for the Meter node REST API.

Uses httpx.AsyncClient for transport. Head changes are found by polling
/blocks/best. The REST API does not report which accounts a block wrote
(internal calls can change storage without leaving a trace in the block),
so heads from this driver carry no change set and every new head clears
the query cache.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx
from loguru import logger

from ..config import FlexConfig
from ..errors import BadParameterError, DriverClosedError, RejectedError, TransportError
from ..models import (
    Account,
    Auction,
    AuctionSummary,
    Block,
    Bucket,
    Candidate,
    Code,
    Delegate,
    Event,
    Head,
    Receipt,
    Stakeholder,
    Storage,
    Transaction,
    Transfer,
    VMOutput,
)
from . import ExplainArg, FilterArg, Revision, SignCertOptions, SignTxClause, SignTxOptions

USER_AGENT = "meterflex-python"


class HttpDriver:
    def __init__(
        self,
        config: FlexConfig,
        client: httpx.AsyncClient,
        wallet: Any = None,
    ) -> None:
        self._config = config
        self._client = client
        self._wallet = wallet
        self._closed = False
        self.genesis: Block
        self._head: Head

    @classmethod
    async def connect(
        cls,
        config: Optional[FlexConfig] = None,
        wallet: Any = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "HttpDriver":
        config = config or FlexConfig.from_env()
        client = httpx.AsyncClient(
            base_url=config.node_url,
            timeout=config.request_timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            transport=transport,
        )
        driver = cls(config, client, wallet=wallet)
        try:
            genesis = await driver._request("GET", "/blocks/0")
            best = await driver._request("GET", "/blocks/best")
            if genesis is None or best is None:
                raise TransportError("Node returned no genesis or best block")
        except BaseException:
            await client.aclose()
            raise
        driver.genesis = Block.from_dict(genesis)
        driver._head = Block.from_dict(best).head()
        logger.info(f"Connected to {config.node_url} at block #{driver._head.number}")
        return driver

    async def __aenter__(self) -> "HttpDriver":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.close()

    @property
    def head(self) -> Head:
        return self._head

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()
        logger.info(f"Driver for {self._config.node_url} closed")

    # --- transport --------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise DriverClosedError("Driver is closed")

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Any = None,
    ) -> Any:
        """Send one request. Returns the decoded body, or None for 404 / null."""
        self._ensure_open()
        try:
            response = await self._client.request(method, path, params=params, json=body)
        except httpx.HTTPError as exc:
            if self._closed:
                raise DriverClosedError("Driver is closed") from exc
            logger.warning(f"{method} {path} failed: {exc!r}")
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if status == 404:
            return None
        if status == 400:
            raise BadParameterError(response.text.strip() or f"{method} {path}: bad request")
        if status == 403:
            raise RejectedError(response.text.strip() or f"{method} {path}: rejected")
        if status >= 400:
            logger.warning(f"{method} {path} returned HTTP {status}")
            raise TransportError(f"{method} {path}: HTTP {status}", status_code=status)

        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path}: non-JSON response", status_code=status) from exc

    # --- head tracking ----------------------------------------------------

    async def poll_head(self) -> Head:
        while True:
            self._ensure_open()
            await asyncio.sleep(self._config.poll_interval)
            payload = await self._request("GET", "/blocks/best")
            if payload is None:
                continue
            best = Block.from_dict(payload).head()
            if best.id == self._head.id:
                continue
            self._head = best
            return best

    # --- entity reads -----------------------------------------------------

    async def get_block(self, revision: Revision) -> Optional[Block]:
        payload = await self._request("GET", f"/blocks/{revision}")
        return Block.from_dict(payload) if payload else None

    async def get_transaction(self, tx_id: str) -> Optional[Transaction]:
        payload = await self._request("GET", f"/transactions/{tx_id}")
        return Transaction.from_dict(payload) if payload else None

    async def get_receipt(self, tx_id: str) -> Optional[Receipt]:
        payload = await self._request("GET", f"/transactions/{tx_id}/receipt")
        return Receipt.from_dict(payload) if payload else None

    async def get_account(self, address: str, revision: str) -> Account:
        payload = await self._request("GET", f"/accounts/{address}", params={"revision": revision})
        return Account.from_dict(payload or {})

    async def get_code(self, address: str, revision: str) -> Code:
        payload = await self._request("GET", f"/accounts/{address}/code", params={"revision": revision})
        return Code.from_dict(payload or {})

    async def get_storage(self, address: str, key: str, revision: str) -> Storage:
        payload = await self._request(
            "GET", f"/accounts/{address}/storage/{key}", params={"revision": revision}
        )
        return Storage.from_dict(payload or {})

    async def get_candidates(self) -> list[Candidate]:
        payload = await self._request("GET", "/staking/candidates")
        return [Candidate.from_dict(c) for c in payload or []]

    async def get_buckets(self) -> list[Bucket]:
        payload = await self._request("GET", "/staking/buckets")
        return [Bucket.from_dict(b) for b in payload or []]

    async def get_stakeholders(self) -> list[Stakeholder]:
        payload = await self._request("GET", "/staking/stakeholders")
        return [Stakeholder.from_dict(s) for s in payload or []]

    async def get_delegates(self) -> list[Delegate]:
        payload = await self._request("GET", "/staking/delegates")
        return [Delegate.from_dict(d) for d in payload or []]

    async def get_auction(self) -> Auction:
        payload = await self._request("GET", "/auction/present")
        return Auction.from_dict(payload or {})

    async def get_auction_summaries(self) -> list[AuctionSummary]:
        payload = await self._request("GET", "/auction/summaries")
        return [AuctionSummary.from_dict(s) for s in payload or []]

    # --- simulation and logs ---------------------------------------------

    async def explain(self, arg: ExplainArg, revision: str) -> list[VMOutput]:
        payload = await self._request("POST", "/accounts/*", params={"revision": revision}, body=arg.to_dict())
        if not isinstance(payload, list) or len(payload) != len(arg.clauses):
            raise TransportError("Explain returned a malformed result")
        return [VMOutput.from_dict(o) for o in payload]

    async def filter_event_logs(self, arg: FilterArg) -> list[Event]:
        payload = await self._request("POST", "/logs/event", body=arg.to_dict())
        return [Event.from_dict(e) for e in payload or []]

    async def filter_transfer_logs(self, arg: FilterArg) -> list[Transfer]:
        payload = await self._request("POST", "/logs/transfer", body=arg.to_dict())
        return [Transfer.from_dict(t) for t in payload or []]

    # --- vendor -----------------------------------------------------------

    def _require_wallet(self) -> Any:
        self._ensure_open()
        if self._wallet is None:
            raise RejectedError("No wallet attached to this driver")
        return self._wallet

    async def sign_tx(self, clauses: list[SignTxClause], options: SignTxOptions) -> dict[str, str]:
        return await self._require_wallet().sign_tx(clauses, options)

    async def sign_cert(self, message: dict[str, Any], options: SignCertOptions) -> dict[str, Any]:
        return await self._require_wallet().sign_cert(message, options)

    async def is_address_owned(self, address: str) -> bool:
        self._ensure_open()
        if self._wallet is None:
            return False
        return await self._wallet.is_address_owned(address)


__all__ = ["HttpDriver"]
