"""
SDK configuration.

Values come from ~/.meterflex/.env (if present) and then from the process
environment, so exported variables win over the file:

    METER_NODE_URL          node REST endpoint
    METER_POLL_INTERVAL     seconds between head polls
    METER_REQUEST_TIMEOUT   HTTP timeout in seconds
    METER_RETRY_BASE        first retry delay for head polling
    METER_RETRY_MAX_DELAY   retry delay cap for head polling
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import BadParameterError

METERFLEX_DIR = Path.home() / ".meterflex"
METERFLEX_ENV = METERFLEX_DIR / ".env"

DEFAULT_NODE_URL = "https://mainnet.meter.io"


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise BadParameterError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise BadParameterError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class FlexConfig:
    node_url: str = DEFAULT_NODE_URL
    poll_interval: float = 2.0
    request_timeout: float = 30.0
    retry_base: float = 0.5
    retry_max_delay: float = 10.0
    env_path: Path = field(default=METERFLEX_ENV)

    def __post_init__(self) -> None:
        lower = self.node_url.lower()
        if not (lower.startswith("http://") or lower.startswith("https://")):
            raise BadParameterError(f"node_url must be http(s), got {self.node_url!r}")

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None, **overrides) -> "FlexConfig":
        env_path = env_path or METERFLEX_ENV
        if env_path.exists():
            load_dotenv(env_path, override=False)

        values = {
            "node_url": os.environ.get("METER_NODE_URL") or DEFAULT_NODE_URL,
            "poll_interval": _float_env("METER_POLL_INTERVAL", 2.0),
            "request_timeout": _float_env("METER_REQUEST_TIMEOUT", 30.0),
            "retry_base": _float_env("METER_RETRY_BASE", 0.5),
            "retry_max_delay": _float_env("METER_RETRY_MAX_DELAY", 10.0),
            "env_path": env_path,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
