"""
Driver - the boundary between the SDK core and a node.

The core never speaks HTTP itself. It consumes anything that satisfies the
``Driver`` protocol. ``HttpDriver`` (driver.http) is the shipped
implementation over the node REST API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

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

Revision = Union[str, int]

# Receives {"raw": unsigned tx hex, "origin": address}, returns {"signature": hex}.
DelegationHandler = Callable[[dict[str, str]], Awaitable[dict[str, str]]]


@dataclass(frozen=True)
class ExplainClause:
    to: Optional[str]
    value: str
    data: str
    token: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"to": self.to, "value": self.value, "data": self.data, "token": self.token}


@dataclass(frozen=True)
class ExplainArg:
    clauses: tuple[ExplainClause, ...]
    caller: Optional[str] = None
    gas: Optional[int] = None
    gas_price: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"clauses": [c.to_dict() for c in self.clauses]}
        if self.caller is not None:
            body["caller"] = self.caller
        if self.gas is not None:
            body["gas"] = self.gas
        if self.gas_price is not None:
            body["gasPrice"] = self.gas_price
        return body


@dataclass(frozen=True)
class FilterArg:
    """One log query: a criteria set, a range and a page window."""

    range: dict[str, Any]
    offset: int
    limit: int
    criteria_set: tuple[dict[str, str], ...]
    order: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "range": dict(self.range),
            "options": {"offset": self.offset, "limit": self.limit},
            "criteriaSet": [dict(c) for c in self.criteria_set],
            "order": self.order,
        }


@dataclass(frozen=True)
class SignTxClause:
    to: Optional[str]
    value: str
    data: str
    token: int = 0
    comment: Optional[str] = None
    abi: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"to": self.to, "value": self.value, "data": self.data, "token": self.token}
        if self.comment is not None:
            body["comment"] = self.comment
        if self.abi is not None:
            body["abi"] = self.abi
        return body


@dataclass(frozen=True)
class SignTxOptions:
    signer: Optional[str] = None
    gas: Optional[int] = None
    depends_on: Optional[str] = None
    link: Optional[str] = None
    comment: Optional[str] = None
    delegation_handler: Optional[DelegationHandler] = field(default=None, compare=False)


@dataclass(frozen=True)
class SignCertOptions:
    signer: Optional[str] = None
    link: Optional[str] = None


class Driver(Protocol):
    genesis: Block

    @property
    def head(self) -> Head:
        ...

    async def poll_head(self) -> Head:
        """Resolve once the chain head differs from ``head``.

        Raises DriverClosedError only when the driver is closed.
        """
        ...

    async def get_block(self, revision: Revision) -> Optional[Block]:
        ...

    async def get_transaction(self, tx_id: str) -> Optional[Transaction]:
        ...

    async def get_receipt(self, tx_id: str) -> Optional[Receipt]:
        ...

    async def get_account(self, address: str, revision: str) -> Account:
        ...

    async def get_code(self, address: str, revision: str) -> Code:
        ...

    async def get_storage(self, address: str, key: str, revision: str) -> Storage:
        ...

    async def get_candidates(self) -> list[Candidate]:
        ...

    async def get_buckets(self) -> list[Bucket]:
        ...

    async def get_stakeholders(self) -> list[Stakeholder]:
        ...

    async def get_delegates(self) -> list[Delegate]:
        ...

    async def get_auction(self) -> Auction:
        ...

    async def get_auction_summaries(self) -> list[AuctionSummary]:
        ...

    async def explain(self, arg: ExplainArg, revision: str) -> list[VMOutput]:
        ...

    async def filter_event_logs(self, arg: FilterArg) -> list[Event]:
        ...

    async def filter_transfer_logs(self, arg: FilterArg) -> list[Transfer]:
        ...

    async def sign_tx(self, clauses: list[SignTxClause], options: SignTxOptions) -> dict[str, str]:
        ...

    async def sign_cert(self, message: dict[str, Any], options: SignCertOptions) -> dict[str, Any]:
        ...

    async def is_address_owned(self, address: str) -> bool:
        ...

    async def close(self) -> None:
        ...


__all__ = [
    "Driver",
    "DelegationHandler",
    "ExplainArg",
    "ExplainClause",
    "FilterArg",
    "Revision",
    "SignCertOptions",
    "SignTxClause",
    "SignTxOptions",
]
