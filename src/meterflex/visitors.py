"""
Per-entity query objects.

A visitor only remembers what it identifies (an address, a revision, an id).
Building one does no I/O. Identifiers are checked up front so a bad
address fails at the call site rather than at the node. Every ``get()``
returns ``None`` when the entity does not exist.

``Method`` and ``Explainer`` are immutable: ``caller()``, ``gas()`` and the
other option setters return a new object, so a configured method can be
shared freely between tasks.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from loguru import logger

from .abi import EventCoder, MethodCoder, decode_revert_reason
from .cache import CallKey, QueryCache
from .driver import Driver, ExplainArg, ExplainClause
from .errors import BadParameterError
from .filter import Filter
from .models import Account, Block, Bucket, Candidate, Clause, Code, Delegate, Receipt, Stakeholder, Storage, Transaction, VMOutput
from .utils import (
    ensure_uint,
    is_address,
    normalize_address,
    normalize_bytes32,
    normalize_hex,
    normalize_revision,
    to_quantity,
)


def _tie_set(ties: Iterable[str]) -> frozenset[str]:
    if isinstance(ties, (str, bytes)) or not isinstance(ties, Iterable):
        raise BadParameterError("'ties' expected a list of addresses")
    return frozenset(normalize_address(t, "ties") for t in ties)


def coerce_clause(value: Union[Clause, Mapping[str, Any]], index: int = 0) -> Clause:
    """Validate a clause given as a Clause or as a {to, value, data, token} mapping."""
    if isinstance(value, Clause):
        payload: Mapping[str, Any] = value.to_dict()
    elif isinstance(value, Mapping):
        payload = value
    else:
        raise BadParameterError(f"'clauses[{index}]' expected a clause, got {value!r}")
    to = payload.get("to")
    return Clause(
        to=normalize_address(to, f"clauses[{index}].to") if to is not None else None,
        value=to_quantity(payload.get("value", 0), f"clauses[{index}].value"),
        data=normalize_hex(payload.get("data") or "0x", f"clauses[{index}].data"),
        token=ensure_uint(payload.get("token", 0), f"clauses[{index}].token"),
    )


@dataclass(frozen=True)
class CallOptions:
    value: str = "0x0"
    token: int = 0
    caller: Optional[str] = None
    gas: Optional[int] = None
    gas_price: Optional[str] = None
    ties: Optional[frozenset[str]] = None


class Method:
    def __init__(
        self,
        driver: Driver,
        cache: QueryCache,
        address: str,
        coder: MethodCoder,
        options: Optional[CallOptions] = None,
    ) -> None:
        self._driver = driver
        self._cache = cache
        self._address = address
        self._coder = coder
        self.options = options or CallOptions()

    @property
    def address(self) -> str:
        return self._address

    @property
    def signature(self) -> str:
        return self._coder.signature

    def _with(self, **changes: Any) -> "Method":
        return Method(self._driver, self._cache, self._address, self._coder, replace(self.options, **changes))

    def value(self, val: Union[int, str]) -> "Method":
        return self._with(value=to_quantity(val))

    def token(self, tkn: int) -> "Method":
        return self._with(token=ensure_uint(tkn, "token"))

    def caller(self, addr: str) -> "Method":
        return self._with(caller=normalize_address(addr, "caller"))

    def gas(self, gas: int) -> "Method":
        return self._with(gas=ensure_uint(gas, "gas"))

    def gas_price(self, gp: Union[int, str]) -> "Method":
        return self._with(gas_price=to_quantity(gp, "gasPrice"))

    def cache(self, ties: Iterable[str]) -> "Method":
        """Cache results of this call, dropped whenever one of ``ties`` may have changed."""
        return self._with(ties=_tie_set(ties))

    def as_clause(self, *args: Any) -> Clause:
        return Clause(
            to=self._address,
            value=self.options.value,
            data=self._coder.encode(*args),
            token=self.options.token,
        )

    async def call(self, *args: Any) -> VMOutput:
        clause = self.as_clause(*args)
        opts = self.options
        arg = ExplainArg(
            clauses=(ExplainClause(to=clause.to, value=clause.value, data=clause.data, token=clause.token),),
            caller=opts.caller,
            gas=opts.gas,
            gas_price=opts.gas_price,
        )

        async def execute(revision: str) -> VMOutput:
            outputs = await self._driver.explain(arg, revision)
            return outputs[0]

        key = CallKey.build(
            clause.to,
            clause.data,
            caller=opts.caller,
            value=clause.value,
            token=clause.token,
            gas=opts.gas,
            gas_price=opts.gas_price,
        )
        # Without ties the result is shared with concurrent callers, never stored.
        output = await self._cache.call(key, execute, opts.ties)
        return self._decode(output)

    def _decode(self, output: VMOutput) -> VMOutput:
        if output.reverted:
            reason = decode_revert_reason(output.data)
            if reason is not None:
                return replace(output, decoded={"revertReason": reason})
            return output
        return replace(output, decoded=self._coder.decode(output.data))


class EventVisitor:
    def __init__(self, driver: Driver, address: str, coder: EventCoder) -> None:
        self._driver = driver
        self._address = address
        self._coder = coder

    @property
    def address(self) -> str:
        return self._address

    def as_criteria(self, indexed: Optional[Mapping[str, Any]] = None) -> dict[str, str]:
        criteria = {"address": self._address}
        criteria.update(self._coder.encode_criteria(dict(indexed or {})))
        return criteria

    def filter(self, indexed_set: Optional[Sequence[Mapping[str, Any]]] = None) -> Filter:
        indexed_set = list(indexed_set or [])
        criteria = [self.as_criteria(i) for i in indexed_set] or [self.as_criteria()]
        return Filter(self._driver, "event", decoder=self._coder).criteria(criteria)


class AccountVisitor:
    def __init__(self, driver: Driver, cache: QueryCache, address: str) -> None:
        self._driver = driver
        self._cache = cache
        self._address = normalize_address(address)

    @property
    def address(self) -> str:
        return self._address

    async def get(self) -> Account:
        return await self._driver.get_account(self._address, self._driver.head.id)

    async def get_code(self) -> Code:
        return await self._driver.get_code(self._address, self._driver.head.id)

    async def get_storage(self, key: str) -> Storage:
        key = normalize_bytes32(key, "key")
        return await self._driver.get_storage(self._address, key, self._driver.head.id)

    def method(self, abi: dict[str, Any]) -> Method:
        return Method(self._driver, self._cache, self._address, MethodCoder(abi))

    def event(self, abi: dict[str, Any]) -> EventVisitor:
        return EventVisitor(self._driver, self._address, EventCoder(abi))


class BlockVisitor:
    def __init__(self, driver: Driver, revision: Union[str, int, None] = None) -> None:
        self._driver = driver
        revision = normalize_revision(revision)
        self._revision = driver.head.id if revision is None else revision

    @property
    def revision(self) -> Union[str, int]:
        return self._revision

    async def get(self) -> Optional[Block]:
        return await self._driver.get_block(self._revision)


class TransactionVisitor:
    def __init__(self, driver: Driver, tx_id: str) -> None:
        self._driver = driver
        self._id = normalize_bytes32(tx_id, "id")

    @property
    def id(self) -> str:
        return self._id

    async def get(self) -> Optional[Transaction]:
        return await self._driver.get_transaction(self._id)

    async def get_receipt(self) -> Optional[Receipt]:
        return await self._driver.get_receipt(self._id)


@dataclass(frozen=True)
class ExplainOptions:
    caller: Optional[str] = None
    gas: Optional[int] = None
    gas_price: Optional[str] = None


class Explainer:
    """Simulates a batch of clauses in one round trip."""

    def __init__(self, driver: Driver, options: Optional[ExplainOptions] = None) -> None:
        self._driver = driver
        self.options = options or ExplainOptions()

    def caller(self, addr: str) -> "Explainer":
        return Explainer(self._driver, replace(self.options, caller=normalize_address(addr, "caller")))

    def gas(self, gas: int) -> "Explainer":
        return Explainer(self._driver, replace(self.options, gas=ensure_uint(gas, "gas")))

    def gas_price(self, gp: Union[int, str]) -> "Explainer":
        return Explainer(self._driver, replace(self.options, gas_price=to_quantity(gp, "gasPrice")))

    async def execute(self, clauses: Sequence[Union[Clause, Mapping[str, Any]]]) -> list[VMOutput]:
        if isinstance(clauses, Mapping) or not isinstance(clauses, Sequence):
            raise BadParameterError("'clauses' expected a list of clauses")
        checked = [coerce_clause(c, i) for i, c in enumerate(clauses)]
        if not checked:
            return []
        arg = ExplainArg(
            clauses=tuple(ExplainClause(to=c.to, value=c.value, data=c.data, token=c.token) for c in checked),
            caller=self.options.caller,
            gas=self.options.gas,
            gas_price=self.options.gas_price,
        )
        outputs = await self._driver.explain(arg, self._driver.head.id)
        logger.debug(f"Explained {len(checked)} clause(s)")
        return list(outputs)


class BucketVisitor:
    def __init__(self, driver: Driver, bucket_id: str) -> None:
        self._driver = driver
        if not isinstance(bucket_id, str) or not bucket_id:
            raise BadParameterError(f"'id' expected bucket id, got {bucket_id!r}")
        self._id = bucket_id.lower()

    @property
    def id(self) -> str:
        return self._id

    async def get(self) -> Optional[Bucket]:
        for bucket in await self._driver.get_buckets():
            if bucket.id.lower() == self._id:
                return bucket
        return None


class _AddressLookup:
    def __init__(self, driver: Driver, address: str) -> None:
        self._driver = driver
        self._address = normalize_address(address)

    @property
    def address(self) -> str:
        return self._address

    def _match(self, value: str) -> bool:
        return is_address(value) and value.lower() == self._address


class CandidateVisitor(_AddressLookup):
    async def get(self) -> Optional[Candidate]:
        return next((c for c in await self._driver.get_candidates() if self._match(c.address)), None)


class StakeholderVisitor(_AddressLookup):
    async def get(self) -> Optional[Stakeholder]:
        return next((s for s in await self._driver.get_stakeholders() if self._match(s.holder)), None)


class DelegateVisitor(_AddressLookup):
    async def get(self) -> Optional[Delegate]:
        return next((d for d in await self._driver.get_delegates() if self._match(d.address)), None)
