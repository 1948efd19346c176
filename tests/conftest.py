"""Shared fixtures: an in-memory driver that tests drive by hand."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from meterflex.driver import ExplainArg, FilterArg, SignCertOptions, SignTxClause, SignTxOptions
from meterflex.errors import DriverClosedError
from meterflex.models import (
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
    LogMeta,
    Receipt,
    Stakeholder,
    Storage,
    Transaction,
    Transfer,
    VMOutput,
)

GENESIS_TS = 1_593_878_400
ZERO32 = "0x" + "00" * 32

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
TOKEN = "0x" + "70" * 20


def block_id(number: int, fork: int = 0) -> str:
    return "0x" + f"{fork:02x}{number:062x}"


def make_head(number: int, fork: int = 0, changed: Optional[set[str]] = None, parent_fork: Optional[int] = None) -> Head:
    parent_fork = fork if parent_fork is None else parent_fork
    return Head(
        id=block_id(number, fork),
        number=number,
        timestamp=GENESIS_TS + 10 * number,
        parent_id=block_id(number - 1, parent_fork) if number > 0 else ZERO32,
        changed_addresses=frozenset(changed) if changed is not None else None,
    )


def block_payload(number: int, fork: int = 0, txs: tuple[str, ...] = ()) -> dict[str, Any]:
    head = make_head(number, fork)
    return {
        "id": head.id,
        "number": number,
        "size": 300,
        "parentID": head.parent_id,
        "timestamp": head.timestamp,
        "gasLimit": 20000000,
        "beneficiary": ALICE,
        "gasUsed": 0,
        "totalScore": number,
        "txsRoot": ZERO32,
        "stateRoot": ZERO32,
        "receiptsRoot": ZERO32,
        "signer": ALICE,
        "transactions": list(txs),
        "isTrunk": True,
    }


def make_event(block: int, index: int, address: str = TOKEN, topics: tuple[str, ...] = (), data: str = "0x") -> Event:
    return Event(
        address=address,
        topics=topics,
        data=data,
        meta=LogMeta(
            block_id=block_id(block),
            block_number=block,
            block_timestamp=GENESIS_TS + 10 * block,
            tx_id=ZERO32,
            tx_origin=ALICE,
            log_index=index,
        ),
    )


def make_transfer(block: int, index: int, sender: str = ALICE, recipient: str = BOB, amount: str = "0x1") -> Transfer:
    return Transfer(
        sender=sender,
        recipient=recipient,
        amount=amount,
        meta=LogMeta(
            block_id=block_id(block),
            block_number=block,
            block_timestamp=GENESIS_TS + 10 * block,
            tx_id=ZERO32,
            tx_origin=sender,
            log_index=index,
        ),
    )


class FakeDriver:
    """
    Driver whose head only moves when a test pushes one.

    ``push(head)`` feeds the next ``poll_head`` result; pushing an exception
    makes that poll raise it.
    """

    def __init__(self, start: int = 100) -> None:
        self.genesis = Block.from_dict(block_payload(0))
        self._head = make_head(start)
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.poll_calls = 0
        self.explain_calls: list[tuple[ExplainArg, str]] = []
        self.filter_calls: list[FilterArg] = []
        self.call_results: dict[str, str] = {}
        self.reverted: set[str] = set()
        self.explain_gate: Optional[asyncio.Event] = None
        self.blocks: dict[Any, Block] = {}
        self.transactions: dict[str, Transaction] = {}
        self.receipts: dict[str, Receipt] = {}
        self.accounts: dict[str, Account] = {}
        self.events: list[Event] = []
        self.transfers: list[Transfer] = []
        self.candidates: list[Candidate] = []
        self.buckets: list[Bucket] = []
        self.stakeholders: list[Stakeholder] = []
        self.delegates: list[Delegate] = []
        self.signed: list[tuple[str, Any, Any]] = []
        self.owned: set[str] = set()

    @property
    def head(self) -> Head:
        return self._head

    def push(self, item: Any) -> None:
        self._queue.put_nowait(item)

    def jump(self, head: Head) -> None:
        """Move the head without going through poll_head."""
        self._head = head

    async def poll_head(self) -> Head:
        self.poll_calls += 1
        if self.closed:
            raise DriverClosedError("closed")
        item = await self._queue.get()
        if isinstance(item, BaseException):
            raise item
        self._head = item
        return item

    async def get_block(self, revision: Any) -> Optional[Block]:
        return self.blocks.get(revision)

    async def get_transaction(self, tx_id: str) -> Optional[Transaction]:
        return self.transactions.get(tx_id)

    async def get_receipt(self, tx_id: str) -> Optional[Receipt]:
        return self.receipts.get(tx_id)

    async def get_account(self, address: str, revision: str) -> Account:
        return self.accounts.get(address, Account.from_dict({}))

    async def get_code(self, address: str, revision: str) -> Code:
        return Code(code="0x6080")

    async def get_storage(self, address: str, key: str, revision: str) -> Storage:
        return Storage(value=key)

    async def get_candidates(self) -> list[Candidate]:
        return list(self.candidates)

    async def get_buckets(self) -> list[Bucket]:
        return list(self.buckets)

    async def get_stakeholders(self) -> list[Stakeholder]:
        return list(self.stakeholders)

    async def get_delegates(self) -> list[Delegate]:
        return list(self.delegates)

    async def get_auction(self) -> Auction:
        return Auction.from_dict({"auctionID": ZERO32, "startHeight": 1, "endHeight": 2})

    async def get_auction_summaries(self) -> list[AuctionSummary]:
        return [AuctionSummary.from_dict({"auctionID": ZERO32, "actualPrice": "5"})]

    async def explain(self, arg: ExplainArg, revision: str) -> list[VMOutput]:
        self.explain_calls.append((arg, revision))
        if self.explain_gate is not None:
            await self.explain_gate.wait()
        outputs = []
        for clause in arg.clauses:
            data = self.call_results.get(clause.data, ZERO32)
            reverted = clause.data in self.reverted
            outputs.append(
                VMOutput(
                    data=data,
                    vm_error="execution reverted" if reverted else "",
                    gas_used=21000,
                    reverted=reverted,
                )
            )
        return outputs

    async def filter_event_logs(self, arg: FilterArg) -> list[Event]:
        self.filter_calls.append(arg)
        return self.events[arg.offset : arg.offset + arg.limit]

    async def filter_transfer_logs(self, arg: FilterArg) -> list[Transfer]:
        self.filter_calls.append(arg)
        return self.transfers[arg.offset : arg.offset + arg.limit]

    async def sign_tx(self, clauses: list[SignTxClause], options: SignTxOptions) -> dict[str, str]:
        self.signed.append(("tx", clauses, options))
        return {"txid": ZERO32, "signer": options.signer or ALICE}

    async def sign_cert(self, message: dict[str, Any], options: SignCertOptions) -> dict[str, Any]:
        self.signed.append(("cert", message, options))
        return {"annex": {"signer": options.signer or ALICE}, "signature": "0x00"}

    async def is_address_owned(self, address: str) -> bool:
        return address in self.owned

    async def close(self) -> None:
        self.closed = True
        self.push(DriverClosedError("closed"))


@pytest.fixture()
def driver() -> FakeDriver:
    return FakeDriver()
