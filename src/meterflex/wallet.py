"""
Local key wallet.

Holds one ECDSA/secp256k1 key (the same key type Meter accounts use) and
signs certificates with it. The key is read from PRIVATE_KEY, exported or
set in ~/.meterflex/.env.

Certificates are signed EIP-191 (personal_sign) over the RFC 8785
canonical JSON of {purpose, payload, domain, timestamp, signer}, so any
party can re-derive the signed bytes from the certificate alone.

Transaction signing needs the chain's own tx encoding and is left to an
external wallet. ``KeyWallet.sign_tx`` refuses.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import rfc8785
from dotenv import dotenv_values
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from loguru import logger

from .config import METERFLEX_ENV
from .driver import SignCertOptions, SignTxClause, SignTxOptions
from .errors import BadParameterError, RejectedError
from .utils import is_bytes32, normalize_address, now_seconds

CERT_FIELDS = ("purpose", "payload", "domain", "timestamp", "signer")


def load_private_key(env_path: Optional[Path] = None) -> str:
    """
    Read PRIVATE_KEY, from the process environment first and then from
    ``env_path`` (default ~/.meterflex/.env).

    Raises:
        ValueError: If PRIVATE_KEY is not set anywhere
        BadParameterError: If it is not 32 bytes of hex
    """
    env_path = env_path or METERFLEX_ENV
    private_key = os.environ.get("PRIVATE_KEY")
    if not private_key and env_path.exists():
        private_key = dotenv_values(env_path).get("PRIVATE_KEY")
    if not private_key:
        raise ValueError(f"PRIVATE_KEY not found. Set PRIVATE_KEY in {env_path}")

    private_key = private_key.strip()
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    # Never echo the value.
    if not is_bytes32(private_key):
        raise BadParameterError("PRIVATE_KEY must be 32 bytes of hex")
    return private_key.lower()


def get_account(private_key: Optional[str] = None) -> LocalAccount:
    if private_key is None:
        private_key = load_private_key()
    return Account.from_key(private_key)


def get_address(private_key: Optional[str] = None) -> str:
    return get_account(private_key).address


def canonicalize_certificate(cert: dict[str, Any]) -> bytes:
    """RFC 8785 bytes of the signed certificate fields."""
    missing = [k for k in CERT_FIELDS if k not in cert]
    if missing:
        raise BadParameterError(f"certificate is missing {missing}")
    return rfc8785.dumps({k: cert[k] for k in CERT_FIELDS})


def verify_certificate(cert: dict[str, Any], signature: str) -> bool:
    """Check that ``signature`` over ``cert`` was made by ``cert['signer']``."""
    signable = encode_defunct(primitive=canonicalize_certificate(cert))
    try:
        recovered = Account.recover_message(signable, signature=bytes.fromhex(signature.removeprefix("0x")))
    except (ValueError, TypeError) as exc:
        logger.debug(f"Certificate signature did not recover: {exc}")
        return False
    return recovered.lower() == str(cert["signer"]).lower()


class KeyWallet:
    """Wallet backed by a single local private key."""

    def __init__(self, private_key: str, domain: str = "meterflex") -> None:
        self._account = get_account(private_key)
        self.domain = domain

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None, domain: str = "meterflex") -> "KeyWallet":
        return cls(load_private_key(env_path), domain=domain)

    @property
    def address(self) -> str:
        return self._account.address.lower()

    async def is_address_owned(self, address: str) -> bool:
        return normalize_address(address) == self.address

    async def sign_cert(self, message: dict[str, Any], options: SignCertOptions) -> dict[str, Any]:
        if options.signer is not None and options.signer.lower() != self.address:
            raise RejectedError(f"Signer {options.signer} is not held by this wallet")

        cert = {
            "purpose": message["purpose"],
            "payload": dict(message["payload"]),
            "domain": self.domain,
            "timestamp": now_seconds(),
            "signer": self.address,
        }
        signed = self._account.sign_message(encode_defunct(primitive=canonicalize_certificate(cert)))
        logger.debug(f"Signed {cert['purpose']} certificate as {self.address}")
        return {
            "annex": {"domain": cert["domain"], "timestamp": cert["timestamp"], "signer": cert["signer"]},
            "signature": "0x" + bytes(signed.signature).hex(),
        }

    async def sign_tx(self, clauses: list[SignTxClause], options: SignTxOptions) -> dict[str, str]:
        raise RejectedError("KeyWallet does not sign transactions, use an external wallet")
