"""
Signing requests.

``Vendor.sign("tx")`` and ``Vendor.sign("cert")`` return immutable signing
services. Their option setters return a new service, and ``request()``
validates the message before handing it to the driver's wallet.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Mapping, Optional, Sequence, Union

from .driver import DelegationHandler, Driver, SignCertOptions, SignTxClause, SignTxOptions
from .errors import BadParameterError
from .utils import ensure_uint, normalize_address, normalize_bytes32, normalize_hex, to_quantity

CERT_PURPOSES = ("identification", "agreement")


def _tx_clause(value: Any, index: int) -> SignTxClause:
    if not isinstance(value, Mapping):
        raise BadParameterError(f"'msg[{index}]' expected a clause mapping, got {value!r}")
    to = value.get("to")
    comment = value.get("comment")
    abi = value.get("abi")
    if comment is not None and not isinstance(comment, str):
        raise BadParameterError(f"'msg[{index}].comment' expected string")
    if abi is not None and not isinstance(abi, Mapping):
        raise BadParameterError(f"'msg[{index}].abi' expected object")
    return SignTxClause(
        to=normalize_address(to, f"msg[{index}].to") if to is not None else None,
        value=to_quantity(value.get("value", 0), f"msg[{index}].value"),
        data=normalize_hex(value.get("data") or "0x", f"msg[{index}].data"),
        token=ensure_uint(value.get("token", 0), f"msg[{index}].token"),
        comment=comment,
        abi=dict(abi) if abi is not None else None,
    )


class TxSigningService:
    def __init__(self, driver: Driver, options: Optional[SignTxOptions] = None) -> None:
        self._driver = driver
        self.options = options or SignTxOptions()

    def _with(self, **changes: Any) -> "TxSigningService":
        return TxSigningService(self._driver, replace(self.options, **changes))

    def signer(self, addr: str) -> "TxSigningService":
        return self._with(signer=normalize_address(addr, "signer"))

    def gas(self, gas: int) -> "TxSigningService":
        return self._with(gas=ensure_uint(gas, "gas"))

    def depends_on(self, tx_id: str) -> "TxSigningService":
        return self._with(depends_on=normalize_bytes32(tx_id, "dependsOn"))

    def link(self, url: str) -> "TxSigningService":
        if not isinstance(url, str):
            raise BadParameterError("'link' expected string")
        return self._with(link=url)

    def comment(self, text: str) -> "TxSigningService":
        if not isinstance(text, str):
            raise BadParameterError("'comment' expected string")
        return self._with(comment=text)

    def delegate(self, handler: DelegationHandler) -> "TxSigningService":
        if not callable(handler):
            raise BadParameterError("'handler' expected a callable")
        return self._with(delegation_handler=handler)

    async def request(self, msg: Sequence[Mapping[str, Any]]) -> dict[str, str]:
        """Ask the wallet to sign and send ``msg``. Returns {txid, signer}."""
        if isinstance(msg, Mapping) or not isinstance(msg, Sequence):
            raise BadParameterError("'msg' expected a list of clauses")
        clauses = [_tx_clause(c, i) for i, c in enumerate(msg)]
        return await self._driver.sign_tx(clauses, self.options)


class CertSigningService:
    def __init__(self, driver: Driver, options: Optional[SignCertOptions] = None) -> None:
        self._driver = driver
        self.options = options or SignCertOptions()

    def signer(self, addr: str) -> "CertSigningService":
        return CertSigningService(self._driver, replace(self.options, signer=normalize_address(addr, "signer")))

    def link(self, url: str) -> "CertSigningService":
        if not isinstance(url, str):
            raise BadParameterError("'link' expected string")
        return CertSigningService(self._driver, replace(self.options, link=url))

    async def request(self, msg: Mapping[str, Any]) -> dict[str, Any]:
        """Ask the wallet to sign a certificate. Returns {annex, signature}."""
        if not isinstance(msg, Mapping):
            raise BadParameterError("'msg' expected an object")
        purpose = msg.get("purpose")
        if purpose not in CERT_PURPOSES:
            raise BadParameterError(f"'msg.purpose' expected 'identification' or 'agreement', got {purpose!r}")
        payload = msg.get("payload")
        if not isinstance(payload, Mapping) or payload.get("type") != "text":
            raise BadParameterError("'msg.payload.type' expected 'text'")
        if not isinstance(payload.get("content"), str):
            raise BadParameterError("'msg.payload.content' expected string")
        message = {"purpose": purpose, "payload": {"type": "text", "content": payload["content"]}}
        return await self._driver.sign_cert(message, self.options)


class Vendor:
    def __init__(self, driver: Driver) -> None:
        self._driver = driver

    def sign(self, kind: str) -> Union[TxSigningService, CertSigningService]:
        if kind == "tx":
            return TxSigningService(self._driver)
        if kind == "cert":
            return CertSigningService(self._driver)
        raise BadParameterError(f"unsupported message kind {kind!r}")

    async def owned(self, addr: str) -> bool:
        return await self._driver.is_address_owned(normalize_address(addr))
