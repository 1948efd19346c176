"""
Chain data shapes.

Each model is an immutable snapshot of what the node returned. ``from_dict``
maps the node's camelCase JSON to snake_case fields. Models sent back to
the node also have ``to_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .utils import now_seconds

Json = dict[str, Any]


def _int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


@dataclass(frozen=True)
class Head:
    id: str
    number: int
    timestamp: int
    parent_id: str
    # Every lower-cased address whose state this block changed. None when the
    # driver cannot report a complete set.
    changed_addresses: Optional[frozenset[str]] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, payload: Json) -> "Head":
        return cls(
            id=payload["id"],
            number=_int(payload["number"]),
            timestamp=_int(payload["timestamp"]),
            parent_id=payload["parentID"],
        )

    def to_dict(self) -> Json:
        return {
            "id": self.id,
            "number": self.number,
            "timestamp": self.timestamp,
            "parentID": self.parent_id,
        }


@dataclass(frozen=True)
class Status:
    progress: float
    head: Head

    @classmethod
    def compute(cls, genesis_timestamp: int, head: Head, now: Optional[int] = None) -> "Status":
        now = now_seconds() if now is None else now
        # Within three block intervals of wall clock counts as synced.
        if now - head.timestamp <= 30:
            return cls(progress=1.0, head=head)
        span = now - genesis_timestamp
        if span <= 0:
            return cls(progress=1.0, head=head)
        progress = (head.timestamp - genesis_timestamp) / span
        return cls(progress=max(0.0, min(1.0, progress)), head=head)


@dataclass(frozen=True)
class CommitteeMember:
    index: int
    pub_key: str
    net_addr: str

    @classmethod
    def from_dict(cls, payload: Json) -> "CommitteeMember":
        return cls(
            index=_int(payload.get("index")),
            pub_key=payload.get("pubKey", ""),
            net_addr=payload.get("netAddr", ""),
        )


@dataclass(frozen=True)
class QuorumCert:
    qc_height: int
    qc_round: int
    voter_bit_array_str: str
    epoch_id: int

    @classmethod
    def from_dict(cls, payload: Json) -> "QuorumCert":
        return cls(
            qc_height=_int(payload.get("qcHeight")),
            qc_round=_int(payload.get("qcRound")),
            voter_bit_array_str=payload.get("voterBitArrayStr", ""),
            epoch_id=_int(payload.get("epochID")),
        )


@dataclass(frozen=True)
class Block:
    id: str
    number: int
    size: int
    parent_id: str
    timestamp: int
    gas_limit: int
    beneficiary: str
    gas_used: int
    total_score: int
    txs_root: str
    state_root: str
    receipts_root: str
    signer: str
    transactions: tuple[str, ...]
    is_trunk: Optional[bool] = None
    last_kblock_height: int = 0
    committee: tuple[CommitteeMember, ...] = ()
    qc: Optional[QuorumCert] = None
    nonce: int = 0

    @classmethod
    def from_dict(cls, payload: Json) -> "Block":
        txs = payload.get("transactions") or []
        qc = payload.get("qc")
        return cls(
            id=payload["id"],
            number=_int(payload["number"]),
            size=_int(payload.get("size")),
            parent_id=payload["parentID"],
            timestamp=_int(payload["timestamp"]),
            gas_limit=_int(payload.get("gasLimit")),
            beneficiary=payload.get("beneficiary", ""),
            gas_used=_int(payload.get("gasUsed")),
            total_score=_int(payload.get("totalScore")),
            txs_root=payload.get("txsRoot", ""),
            state_root=payload.get("stateRoot", ""),
            receipts_root=payload.get("receiptsRoot", ""),
            signer=payload.get("signer", ""),
            # Expanded blocks carry tx objects instead of ids.
            transactions=tuple(t["id"] if isinstance(t, dict) else t for t in txs),
            is_trunk=payload.get("isTrunk"),
            last_kblock_height=_int(payload.get("lastKBlockHeight")),
            committee=tuple(CommitteeMember.from_dict(m) for m in payload.get("committee") or []),
            qc=QuorumCert.from_dict(qc) if qc else None,
            nonce=_int(payload.get("nonce")),
        )

    def head(self) -> Head:
        return Head(id=self.id, number=self.number, timestamp=self.timestamp, parent_id=self.parent_id)


@dataclass(frozen=True)
class Clause:
    to: Optional[str]
    value: str
    data: str = "0x"
    token: int = 0

    @classmethod
    def from_dict(cls, payload: Json) -> "Clause":
        value = payload.get("value", 0)
        return cls(
            to=payload.get("to"),
            value=value if isinstance(value, str) else hex(int(value)),
            data=payload.get("data") or "0x",
            token=_int(payload.get("token")),
        )

    def to_dict(self) -> Json:
        return {"to": self.to, "value": self.value, "data": self.data, "token": self.token}


@dataclass(frozen=True)
class TxMeta:
    block_id: str
    block_number: int
    block_timestamp: int

    @classmethod
    def from_dict(cls, payload: Json) -> "TxMeta":
        return cls(
            block_id=payload["blockID"],
            block_number=_int(payload["blockNumber"]),
            block_timestamp=_int(payload["blockTimestamp"]),
        )


@dataclass(frozen=True)
class Transaction:
    id: str
    chain_tag: int
    block_ref: str
    expiration: int
    clauses: tuple[Clause, ...]
    gas_price_coef: int
    gas: int
    origin: str
    nonce: str
    depends_on: Optional[str]
    size: int
    meta: Optional[TxMeta]

    @classmethod
    def from_dict(cls, payload: Json) -> "Transaction":
        meta = payload.get("meta")
        return cls(
            id=payload["id"],
            chain_tag=_int(payload.get("chainTag")),
            block_ref=payload.get("blockRef", ""),
            expiration=_int(payload.get("expiration")),
            clauses=tuple(Clause.from_dict(c) for c in payload.get("clauses") or []),
            gas_price_coef=_int(payload.get("gasPriceCoef")),
            gas=_int(payload.get("gas")),
            origin=payload.get("origin", ""),
            nonce=str(payload.get("nonce", "")),
            depends_on=payload.get("dependsOn"),
            size=_int(payload.get("size")),
            meta=TxMeta.from_dict(meta) if meta else None,
        )


@dataclass(frozen=True)
class LogMeta:
    block_id: str
    block_number: int
    block_timestamp: int
    tx_id: str
    tx_origin: str
    clause_index: Optional[int] = None
    log_index: Optional[int] = None

    @classmethod
    def from_dict(cls, payload: Json) -> "LogMeta":
        clause_index = payload.get("clauseIndex")
        log_index = payload.get("logIndex")
        return cls(
            block_id=payload.get("blockID", ""),
            block_number=_int(payload.get("blockNumber")),
            block_timestamp=_int(payload.get("blockTimestamp")),
            tx_id=payload.get("txID", ""),
            tx_origin=payload.get("txOrigin", ""),
            clause_index=None if clause_index is None else _int(clause_index),
            log_index=None if log_index is None else _int(log_index),
        )


@dataclass(frozen=True)
class Event:
    address: str
    topics: tuple[str, ...]
    data: str
    meta: Optional[LogMeta] = None
    decoded: Optional[dict[Any, Any]] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, payload: Json) -> "Event":
        meta = payload.get("meta")
        return cls(
            address=payload["address"],
            topics=tuple(payload.get("topics") or ()),
            data=payload.get("data") or "0x",
            meta=LogMeta.from_dict(meta) if meta else None,
        )


@dataclass(frozen=True)
class Transfer:
    sender: str
    recipient: str
    amount: str
    token: int = 0
    meta: Optional[LogMeta] = None

    @classmethod
    def from_dict(cls, payload: Json) -> "Transfer":
        meta = payload.get("meta")
        return cls(
            sender=payload["sender"],
            recipient=payload["recipient"],
            amount=payload.get("amount", "0x0"),
            token=_int(payload.get("token")),
            meta=LogMeta.from_dict(meta) if meta else None,
        )


@dataclass(frozen=True)
class ReceiptOutput:
    contract_address: Optional[str]
    events: tuple[Event, ...]
    transfers: tuple[Transfer, ...]

    @classmethod
    def from_dict(cls, payload: Json) -> "ReceiptOutput":
        return cls(
            contract_address=payload.get("contractAddress"),
            events=tuple(Event.from_dict(e) for e in payload.get("events") or []),
            transfers=tuple(Transfer.from_dict(t) for t in payload.get("transfers") or []),
        )


@dataclass(frozen=True)
class Receipt:
    gas_used: int
    gas_payer: str
    paid: str
    reward: str
    reverted: bool
    outputs: tuple[ReceiptOutput, ...]
    meta: Optional[LogMeta]

    @classmethod
    def from_dict(cls, payload: Json) -> "Receipt":
        meta = payload.get("meta")
        return cls(
            gas_used=_int(payload.get("gasUsed")),
            gas_payer=payload.get("gasPayer", ""),
            paid=payload.get("paid", "0x0"),
            reward=payload.get("reward", "0x0"),
            reverted=bool(payload.get("reverted", False)),
            outputs=tuple(ReceiptOutput.from_dict(o) for o in payload.get("outputs") or []),
            meta=LogMeta.from_dict(meta) if meta else None,
        )


@dataclass(frozen=True)
class Account:
    balance: str
    energy: str
    bound_balance: str
    bound_energy: str
    has_code: bool

    @classmethod
    def from_dict(cls, payload: Json) -> "Account":
        return cls(
            balance=payload.get("balance", "0x0"),
            energy=payload.get("energy", "0x0"),
            bound_balance=payload.get("boundbalance", "0x0"),
            bound_energy=payload.get("boundenergy", "0x0"),
            has_code=bool(payload.get("hasCode", False)),
        )


@dataclass(frozen=True)
class Code:
    code: str

    @classmethod
    def from_dict(cls, payload: Json) -> "Code":
        return cls(code=payload.get("code") or "0x")


@dataclass(frozen=True)
class Storage:
    value: str

    @classmethod
    def from_dict(cls, payload: Json) -> "Storage":
        return cls(value=payload.get("value") or "0x" + "00" * 32)


@dataclass(frozen=True)
class VMOutput:
    data: str
    vm_error: str
    gas_used: int
    reverted: bool
    events: tuple[Event, ...] = ()
    transfers: tuple[Transfer, ...] = ()
    decoded: Optional[dict[Any, Any]] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, payload: Json) -> "VMOutput":
        return cls(
            data=payload.get("data") or "0x",
            vm_error=payload.get("vmError") or "",
            gas_used=_int(payload.get("gasUsed")),
            reverted=bool(payload.get("reverted", False)),
            events=tuple(Event.from_dict(e) for e in payload.get("events") or []),
            transfers=tuple(Transfer.from_dict(t) for t in payload.get("transfers") or []),
        )


@dataclass(frozen=True)
class Candidate:
    name: str
    address: str
    pub_key: str
    ip_addr: str
    port: int
    total_votes: str
    buckets: tuple[str, ...]

    @classmethod
    def from_dict(cls, payload: Json) -> "Candidate":
        return cls(
            name=payload.get("name", ""),
            address=payload.get("addr", payload.get("address", "")),
            pub_key=payload.get("pubKey", ""),
            ip_addr=payload.get("ipAddr", ""),
            port=_int(payload.get("port")),
            total_votes=str(payload.get("totalVotes", "0")),
            buckets=tuple(payload.get("buckets") or ()),
        )


@dataclass(frozen=True)
class Bucket:
    id: str
    owner: str
    value: str
    token: int
    create_time: str
    unbounded: bool
    candidate: str
    rate: int
    option: int
    bonus_votes: str
    total_votes: str

    @classmethod
    def from_dict(cls, payload: Json) -> "Bucket":
        return cls(
            id=payload["id"],
            owner=payload.get("owner", ""),
            value=str(payload.get("value", "0")),
            token=_int(payload.get("token")),
            create_time=str(payload.get("createTime", "")),
            unbounded=bool(payload.get("unbounded", False)),
            candidate=payload.get("candidate", ""),
            rate=_int(payload.get("rate")),
            option=_int(payload.get("option")),
            bonus_votes=str(payload.get("bonusVotes", "0")),
            total_votes=str(payload.get("totalVotes", "0")),
        )


@dataclass(frozen=True)
class Stakeholder:
    holder: str
    total_stake: str
    buckets: tuple[str, ...]

    @classmethod
    def from_dict(cls, payload: Json) -> "Stakeholder":
        return cls(
            holder=payload.get("holder", ""),
            total_stake=str(payload.get("totalStake", "0")),
            buckets=tuple(payload.get("buckets") or ()),
        )


@dataclass(frozen=True)
class Delegate:
    name: str
    address: str
    pub_key: str
    voting_power: str
    ip_addr: str
    port: int

    @classmethod
    def from_dict(cls, payload: Json) -> "Delegate":
        return cls(
            name=payload.get("name", ""),
            address=payload.get("address", ""),
            pub_key=payload.get("pubKey", ""),
            voting_power=str(payload.get("votingPower", "0")),
            ip_addr=payload.get("ipAddr", ""),
            port=_int(payload.get("port")),
        )


@dataclass(frozen=True)
class AuctionTx:
    address: str
    amount: str
    count: int
    nonce: int
    last_time: int

    @classmethod
    def from_dict(cls, payload: Json) -> "AuctionTx":
        return cls(
            address=payload.get("addr", ""),
            amount=str(payload.get("amount", "0")),
            count=_int(payload.get("count")),
            nonce=_int(payload.get("nonce")),
            last_time=_int(payload.get("lastTime")),
        )


@dataclass(frozen=True)
class AuctionSummary:
    auction_id: str
    start_height: int
    end_height: int
    released_mtrg: str
    reserved_price: str
    create_time: int
    received_mtr: str
    actual_price: str
    leftover_mtrg: str

    @classmethod
    def from_dict(cls, payload: Json) -> "AuctionSummary":
        return cls(
            auction_id=payload.get("auctionID", ""),
            start_height=_int(payload.get("startHeight")),
            end_height=_int(payload.get("endHeight")),
            released_mtrg=str(payload.get("releasedMTRG", "0")),
            reserved_price=str(payload.get("reservedPrice", "0")),
            create_time=_int(payload.get("createTime")),
            received_mtr=str(payload.get("receivedMTR", "0")),
            actual_price=str(payload.get("actualPrice", "0")),
            leftover_mtrg=str(payload.get("leftoverMTRG", "0")),
        )


@dataclass(frozen=True)
class Auction:
    auction_id: str
    start_height: int
    end_height: int
    released_mtrg: str
    reserved_price: str
    create_time: int
    received_mtr: str
    auction_txs: tuple[AuctionTx, ...]

    @classmethod
    def from_dict(cls, payload: Json) -> "Auction":
        return cls(
            auction_id=payload.get("auctionID", ""),
            start_height=_int(payload.get("startHeight")),
            end_height=_int(payload.get("endHeight")),
            released_mtrg=str(payload.get("releasedMTRG", "0")),
            reserved_price=str(payload.get("reservedPrice", "0")),
            create_time=_int(payload.get("createTime")),
            received_mtr=str(payload.get("receivedMTR", "0")),
            auction_txs=tuple(AuctionTx.from_dict(t) for t in payload.get("auctionTxs") or []),
        )


__all__ = [
    "Head",
    "Status",
    "CommitteeMember",
    "QuorumCert",
    "Block",
    "Clause",
    "TxMeta",
    "Transaction",
    "LogMeta",
    "Event",
    "Transfer",
    "ReceiptOutput",
    "Receipt",
    "Account",
    "Code",
    "Storage",
    "VMOutput",
    "Candidate",
    "Bucket",
    "Stakeholder",
    "Delegate",
    "AuctionTx",
    "AuctionSummary",
    "Auction",
]
