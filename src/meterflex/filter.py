"""
Log filters for events and transfers.

A ``Filter`` is an immutable query: ``criteria``, ``range`` and ``order``
return a new filter and leave the old one untouched, so one filter can be
shared between concurrent tasks. ``apply(offset, limit)`` sends exactly one
request to the driver.

Paging is offset/limit, not a cursor. Two windows fetched while the chain
advances may overlap or skip rows. There is no snapshot across calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Sequence, Union

from loguru import logger

from .abi import EventCoder
from .driver import Driver, FilterArg
from .errors import BadParameterError
from .models import Event, Transfer
from .utils import MAX_BLOCK_NUMBER, ensure_uint, normalize_address, normalize_bytes32

MAX_LIMIT = 256

KINDS = ("event", "transfer")
UNITS = ("block", "time")
ORDERS = ("asc", "desc")

EVENT_CRITERIA_KEYS = ("address", "topic0", "topic1", "topic2", "topic3", "topic4")
TRANSFER_CRITERIA_KEYS = ("txOrigin", "sender", "recipient")

LogRecord = Union[Event, Transfer]


@dataclass(frozen=True)
class FilterRange:
    """Inclusive range of block numbers (unit 'block') or unix seconds (unit 'time')."""

    unit: str = "block"
    start: int = 0
    end: int = MAX_BLOCK_NUMBER

    def __post_init__(self) -> None:
        if self.unit not in UNITS:
            raise BadParameterError(f"'range.unit' expected 'block' or 'time', got {self.unit!r}")
        ensure_uint(self.start, "range.from")
        ensure_uint(self.end, "range.to")
        if self.start > self.end:
            raise BadParameterError(f"'range.from' must not exceed 'range.to' ({self.start} > {self.end})")

    @classmethod
    def coerce(cls, value: Union["FilterRange", Mapping[str, Any]]) -> "FilterRange":
        if isinstance(value, FilterRange):
            return value
        if not isinstance(value, Mapping):
            raise BadParameterError(f"'range' expected a mapping, got {value!r}")
        unknown = set(value) - {"unit", "from", "to"}
        if unknown:
            raise BadParameterError(f"'range' has unknown keys: {sorted(unknown)}")
        return cls(
            unit=value.get("unit", "block"),
            start=value.get("from", 0),
            end=value.get("to", MAX_BLOCK_NUMBER),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"unit": self.unit, "from": self.start, "to": self.end}


def normalize_criteria(kind: str, criteria: Mapping[str, Any]) -> dict[str, str]:
    if not isinstance(criteria, Mapping):
        raise BadParameterError(f"criteria expected a mapping, got {criteria!r}")
    allowed = EVENT_CRITERIA_KEYS if kind == "event" else TRANSFER_CRITERIA_KEYS
    out: dict[str, str] = {}
    for name, value in criteria.items():
        if name not in allowed:
            raise BadParameterError(f"'{name}' is not a valid {kind} criteria key")
        if value is None:
            continue
        if kind == "event" and name != "address":
            out[name] = normalize_bytes32(value, name)
        else:
            out[name] = normalize_address(value, name)
    return out


def sort_page(items: Sequence[LogRecord], order: str) -> list[LogRecord]:
    """
    Order a page by block number in the requested direction.

    Inside one block rows always run by ascending log index. Rows without a
    log index keep the driver's relative order, read as ascending for
    'asc' and as fully reversed for 'desc'.
    """
    desc = order == "desc"

    def position(pair: tuple[int, LogRecord]) -> tuple[int, int]:
        pos, item = pair
        meta = item.meta
        number = meta.block_number if meta is not None else 0
        if meta is not None and meta.log_index is not None:
            within = meta.log_index
        else:
            within = -pos if desc else pos
        return (-number if desc else number, within)

    return [item for _, item in sorted(enumerate(items), key=position)]


@dataclass(frozen=True)
class FilterQuery:
    kind: str
    criteria_set: tuple[dict[str, str], ...] = ()
    range: FilterRange = field(default_factory=FilterRange)
    order: str = "asc"

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise BadParameterError(f"'kind' expected 'event' or 'transfer', got {self.kind!r}")
        if self.order not in ORDERS:
            raise BadParameterError(f"'order' expected 'asc' or 'desc', got {self.order!r}")

    def to_arg(self, offset: int, limit: int) -> FilterArg:
        return FilterArg(
            range=self.range.to_dict(),
            offset=offset,
            limit=limit,
            criteria_set=self.criteria_set,
            order=self.order,
        )


class Filter:
    def __init__(
        self,
        driver: Driver,
        kind: str,
        query: Optional[FilterQuery] = None,
        decoder: Optional[EventCoder] = None,
    ) -> None:
        self._driver = driver
        self._query = query or FilterQuery(kind=kind)
        self._decoder = decoder
        if self._query.kind != kind:
            raise BadParameterError(f"query kind {self._query.kind!r} does not match {kind!r}")

    @property
    def kind(self) -> str:
        return self._query.kind

    @property
    def query(self) -> FilterQuery:
        return self._query

    def _with(self, **changes: Any) -> "Filter":
        return Filter(self._driver, self.kind, replace(self._query, **changes), self._decoder)

    def criteria(self, criteria_set: Iterable[Mapping[str, Any]]) -> "Filter":
        if isinstance(criteria_set, Mapping) or not isinstance(criteria_set, Iterable):
            raise BadParameterError("'criteria' expected a list of criteria")
        return self._with(criteria_set=tuple(normalize_criteria(self.kind, c) for c in criteria_set))

    def range(self, value: Union[FilterRange, Mapping[str, Any]]) -> "Filter":
        return self._with(range=FilterRange.coerce(value))

    def order(self, value: str) -> "Filter":
        return self._with(order=value)

    async def apply(self, offset: int, limit: int) -> list[LogRecord]:
        ensure_uint(offset, "offset")
        ensure_uint(limit, "limit", upper=MAX_LIMIT)
        arg = self._query.to_arg(offset, limit)

        if self.kind == "event":
            rows: list[LogRecord] = list(await self._driver.filter_event_logs(arg))
        else:
            rows = list(await self._driver.filter_transfer_logs(arg))
        logger.debug(f"{self.kind} filter [{offset}:{offset + limit}] returned {len(rows)} row(s)")

        rows = sort_page(rows, self._query.order)
        if self._decoder is not None:
            rows = [replace(e, decoded=self._decoder.decode(e.data, e.topics)) for e in rows]
        return rows

    async def pages(self, page_size: int = MAX_LIMIT) -> AsyncIterator[list[LogRecord]]:
        """Walk successive windows until a short page comes back."""
        ensure_uint(page_size, "page_size", upper=MAX_LIMIT)
        if page_size == 0:
            raise BadParameterError("'page_size' must be positive")
        offset = 0
        while True:
            page = await self.apply(offset, page_size)
            if page:
                yield page
            if len(page) < page_size:
                return
            offset += page_size
