"""
ABI coding for contract methods and events.

Works from a single JSON ABI entry (one function or one event), the way
visitors receive them. eth-abi does the encoding, eth-hash gives Keccak-256.
"""

from __future__ import annotations

from typing import Any, Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_hash.auto import keccak

from .errors import BadParameterError, FlexError
from .utils import normalize_hex

_DYNAMIC_INDEXED = ("string", "bytes")


def keccak256(data: bytes) -> bytes:
    # NOTE: Keccak-256 != SHA3-256 (NIST). Never use hashlib.sha3_256 here.
    return keccak(data)


def _canonical_type(param: dict[str, Any]) -> str:
    """Expand tuple params into the '(t1,t2)[]' form eth-abi understands."""
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, tuple):
        return tuple(_jsonable(v) for v in value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _named(params: list[dict[str, Any]], values: list[Any]) -> dict[Any, Any]:
    out: dict[Any, Any] = {}
    for i, (param, value) in enumerate(zip(params, values)):
        out[i] = value
        if param.get("name"):
            out[param["name"]] = value
    return out


def _hex_bytes(data: str) -> bytes:
    data = normalize_hex(data)
    return bytes.fromhex(data[2:])


class MethodCoder:
    """Encodes calls to, and decodes outputs of, one contract function."""

    def __init__(self, abi: dict[str, Any]) -> None:
        if not isinstance(abi, dict) or abi.get("type", "function") != "function" or not abi.get("name"):
            raise BadParameterError("'abi' expected a function ABI entry")
        self.abi = abi
        self.inputs: list[dict[str, Any]] = list(abi.get("inputs", []))
        self.outputs: list[dict[str, Any]] = list(abi.get("outputs", []))
        self.input_types = [_canonical_type(p) for p in self.inputs]
        self.output_types = [_canonical_type(p) for p in self.outputs]
        self.signature = f"{abi['name']}({','.join(self.input_types)})"
        self.selector = "0x" + keccak256(self.signature.encode("utf-8"))[:4].hex()

    @property
    def name(self) -> str:
        return self.abi["name"]

    def encode(self, *args: Any) -> str:
        if len(args) != len(self.input_types):
            raise BadParameterError(
                f"'{self.name}' expects {len(self.input_types)} arguments, got {len(args)}"
            )
        try:
            encoded = encode(self.input_types, list(args)) if args else b""
        except (EncodingError, TypeError, ValueError, OverflowError) as exc:
            raise BadParameterError(f"Invalid arguments for {self.signature}: {exc}") from exc
        return self.selector + encoded.hex()

    def decode(self, data: str) -> dict[Any, Any]:
        if not self.output_types:
            return {}
        try:
            values = decode(self.output_types, _hex_bytes(data))
        except (DecodingError, ValueError) as exc:
            raise FlexError(f"Unable to decode output of {self.signature}: {exc}") from exc
        return _named(self.outputs, [_jsonable(v) for v in values])


class EventCoder:
    """Builds topic criteria for, and decodes logs of, one contract event."""

    def __init__(self, abi: dict[str, Any]) -> None:
        if not isinstance(abi, dict) or abi.get("type") != "event" or not abi.get("name"):
            raise BadParameterError("'abi' expected an event ABI entry")
        self.abi = abi
        self.inputs: list[dict[str, Any]] = list(abi.get("inputs", []))
        self.anonymous = bool(abi.get("anonymous", False))
        types = ",".join(_canonical_type(p) for p in self.inputs)
        self.signature = f"{abi['name']}({types})"
        self.topic0: Optional[str] = None
        if not self.anonymous:
            self.topic0 = "0x" + keccak256(self.signature.encode("utf-8")).hex()

    @property
    def name(self) -> str:
        return self.abi["name"]

    def _indexed(self) -> list[dict[str, Any]]:
        return [p for p in self.inputs if p.get("indexed")]

    def _encode_topic(self, param: dict[str, Any], value: Any) -> str:
        typ = _canonical_type(param)
        try:
            if typ in _DYNAMIC_INDEXED:
                raw = value.encode("utf-8") if isinstance(value, str) and typ == "string" else _hex_bytes(value)
                return "0x" + keccak256(raw).hex()
            if typ.endswith("]") or typ.startswith("("):
                raise BadParameterError(f"Indexed '{typ}' values can not be used as criteria")
            return "0x" + encode([typ], [value]).hex()
        except (EncodingError, TypeError, ValueError, OverflowError, AttributeError) as exc:
            raise BadParameterError(f"Invalid indexed value for '{param.get('name')}': {exc}") from exc

    def encode_criteria(self, indexed: dict[str, Any]) -> dict[str, str]:
        """Map named indexed arguments to topic criteria (topic0..topic4)."""
        topics: dict[str, str] = {}
        offset = 0
        if self.topic0 is not None:
            topics["topic0"] = self.topic0
            offset = 1
        for i, param in enumerate(self._indexed()):
            value = indexed.get(param.get("name", ""))
            if value is None:
                continue
            topics[f"topic{i + offset}"] = self._encode_topic(param, value)
        return topics

    def decode(self, data: str, topics: list[str] | tuple[str, ...]) -> dict[Any, Any]:
        topics = list(topics)
        if self.topic0 is not None:
            if not topics or topics[0].lower() != self.topic0:
                raise BadParameterError(f"Log does not belong to {self.signature}")
            topics = topics[1:]

        indexed = self._indexed()
        if len(topics) != len(indexed):
            raise BadParameterError(f"Invalid topics count for {self.signature}")

        plain = [p for p in self.inputs if not p.get("indexed")]
        try:
            plain_values = list(decode([_canonical_type(p) for p in plain], _hex_bytes(data))) if plain else []
        except (DecodingError, ValueError) as exc:
            raise FlexError(f"Unable to decode data of {self.signature}: {exc}") from exc

        indexed_values = []
        for param, topic in zip(indexed, topics):
            typ = _canonical_type(param)
            if typ in _DYNAMIC_INDEXED or typ.endswith("]") or typ.startswith("("):
                # Only the hash is recorded on chain.
                indexed_values.append(topic.lower())
            else:
                indexed_values.append(decode([typ], _hex_bytes(topic))[0])

        values = []
        for param in self.inputs:
            source = indexed_values if param.get("indexed") else plain_values
            values.append(_jsonable(source.pop(0)))
        return _named(self.inputs, values)


ERROR_SELECTOR = "0x08c379a0"


def decode_revert_reason(data: str) -> Optional[str]:
    """Extract the message of a reverted ``Error(string)`` output, if any."""
    if not isinstance(data, str) or not data.lower().startswith(ERROR_SELECTOR):
        return None
    try:
        return decode(["string"], bytes.fromhex(data[len(ERROR_SELECTOR):]))[0]
    except (DecodingError, ValueError):
        return None
