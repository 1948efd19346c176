from __future__ import annotations

import random
import re
import time
from typing import Any, Union

from .errors import BadParameterError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_HEX_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")
_QUANTITY_RE = re.compile(r"^0x[0-9a-fA-F]+$")

# Block numbers fit in 32 bits.
MAX_BLOCK_NUMBER = 2**32 - 1


def now_seconds() -> int:
    return int(time.time())


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def is_bytes32(value: Any) -> bool:
    return isinstance(value, str) and bool(_BYTES32_RE.match(value))


def is_hex(value: Any) -> bool:
    return isinstance(value, str) and bool(_HEX_RE.match(value))


def normalize_address(value: Any, name: str = "address") -> str:
    if not is_address(value):
        raise BadParameterError(f"'{name}' expected address type, got {value!r}")
    return value.lower()


def normalize_bytes32(value: Any, name: str = "id") -> str:
    if not is_bytes32(value):
        raise BadParameterError(f"'{name}' expected bytes32 in hex string, got {value!r}")
    return value.lower()


def normalize_hex(value: Any, name: str = "data") -> str:
    if not is_hex(value):
        raise BadParameterError(f"'{name}' expected hex string, got {value!r}")
    return value.lower()


def normalize_revision(value: Union[str, int, None], name: str = "revision") -> Union[str, int, None]:
    """Accept a block number, a block id, or None (current head)."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise BadParameterError(f"'{name}' expected block id or number, got {value!r}")
    if isinstance(value, int):
        if 0 <= value <= MAX_BLOCK_NUMBER:
            return value
        raise BadParameterError(f"'{name}' block number out of range: {value}")
    if is_bytes32(value):
        return value.lower()
    raise BadParameterError(f"'{name}' expected block id or number, got {value!r}")


def ensure_uint(value: Any, name: str, upper: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise BadParameterError(f"'{name}' expected non-negative integer, got {value!r}")
    if upper is not None and value > upper:
        raise BadParameterError(f"'{name}' expected <= {upper}, got {value}")
    return value


def to_quantity(value: Union[str, int], name: str = "value") -> str:
    """Canonical 0x-hex form of an amount given as int, decimal string or hex string."""
    if isinstance(value, bool):
        raise BadParameterError(f"'{name}' expected integer or numeric string, got {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _QUANTITY_RE.match(value):
        number = int(value, 16)
    elif isinstance(value, str) and value.isdigit():
        number = int(value, 10)
    else:
        raise BadParameterError(f"'{name}' expected integer or numeric string, got {value!r}")
    if number < 0:
        raise BadParameterError(f"'{name}' must not be negative, got {value!r}")
    return hex(number)


def backoff_delay(attempt: int, *, base: float, max_delay: float) -> float:
    """Exponential backoff with equal jitter for the given 1-based attempt."""
    if attempt < 1:
        attempt = 1
    cap = min(base * (2 ** (attempt - 1)), max_delay)
    return (cap * 0.5) + random.uniform(0.0, cap * 0.5)
