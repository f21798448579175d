"""Hashlock and address helpers.

Secrets are 32-byte values carried as 0x-prefixed hex. The hashlock is the
keccak-256 digest of the raw secret bytes, which is what the order SDK's
single-fill hashlock commits to.
"""

from __future__ import annotations

import json
import re
import secrets as _secrets

from eth_utils import is_address, is_hexstr, keccak, to_hex

SECRET_SIZE = 32

_STELLAR_STRKEY = re.compile(r"^[GC][A-Z2-7]{55}$")


def generate_secret() -> str:
    """Fresh random 32-byte secret as 0x-prefixed hex."""
    return to_hex(_secrets.token_bytes(SECRET_SIZE))


def is_valid_secret(secret: str) -> bool:
    return (
        isinstance(secret, str)
        and is_hexstr(secret)
        and len(_strip_0x(secret)) == SECRET_SIZE * 2
    )


def hash_secret(secret: str) -> str:
    """keccak-256 of the secret bytes, 0x-prefixed hex.

    Raises:
        ValueError: If `secret` is not 32 bytes of hex.
    """
    if not is_valid_secret(secret):
        raise ValueError("Secret must be 32 bytes of 0x-prefixed hex")
    return to_hex(keccak(hexstr=secret))


def secret_matches(secret: str, hash_of_secret: str) -> bool:
    """True if `secret` is well-formed and hashes to `hash_of_secret`."""
    if not is_valid_secret(secret):
        return False
    return hash_secret(secret).lower() == hash_of_secret.lower()


def is_valid_address(address: str) -> bool:
    """Accept EVM hex addresses and Stellar account/contract strkeys."""
    if not isinstance(address, str) or not address:
        return False
    return bool(is_address(address) or _STELLAR_STRKEY.match(address))


def derive_order_hash(terms: dict) -> str:
    """keccak-256 over the canonical JSON of the order terms."""
    canonical = json.dumps(terms, sort_keys=True, separators=(",", ":"), default=str)
    return to_hex(keccak(text=canonical))


def _strip_0x(value: str) -> str:
    return value[2:] if value[:2].lower() == "0x" else value
