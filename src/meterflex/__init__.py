__all__ = [
    # Entry point
    "Meter",
    "FlexConfig",
    # Core
    "Ticker",
    "TickerView",
    "QueryCache",
    "CallKey",
    "Filter",
    "FilterRange",
    # Visitors
    "AccountVisitor",
    "BlockVisitor",
    "TransactionVisitor",
    "Method",
    "EventVisitor",
    "Explainer",
    # Vendor
    "Vendor",
    "KeyWallet",
    # Driver
    "Driver",
    "HttpDriver",
    # Errors
    "FlexError",
    "BadParameterError",
    "RejectedError",
    "TransportError",
    "DriverClosedError",
]

from loguru import logger

from .cache import CallKey, QueryCache
from .config import FlexConfig
from .driver import Driver
from .driver.http import HttpDriver
from .errors import BadParameterError, DriverClosedError, FlexError, RejectedError, TransportError
from .filter import Filter, FilterRange
from .meter import Meter
from .ticker import Ticker, TickerView
from .vendor import Vendor
from .visitors import AccountVisitor, BlockVisitor, EventVisitor, Explainer, Method, TransactionVisitor
from .wallet import KeyWallet

# Library code stays silent until an application opts in.
logger.disable("meterflex")
