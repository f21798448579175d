"""Tests for secret, hashlock and address helpers."""

from __future__ import annotations

import pytest

from htlc_swap.domain.hashlock import (
    derive_order_hash,
    generate_secret,
    hash_secret,
    is_valid_address,
    is_valid_secret,
    secret_matches,
)

ZERO_SECRET = "0x" + "00" * 32
# keccak-256 of 32 zero bytes
ZERO_SECRET_HASH = "0x290decd9548b62a8d60345a988386fc84ba6bc95484008f6362f93160ef3e563"


class TestSecrets:
    def test_generated_secret_is_valid(self) -> None:
        secret = generate_secret()
        assert secret.startswith("0x")
        assert len(secret) == 66
        assert is_valid_secret(secret)

    def test_generated_secrets_differ(self) -> None:
        assert generate_secret() != generate_secret()

    @pytest.mark.parametrize("bad", ["", "0x1234", "0x" + "zz" * 32, "0x" + "11" * 33])
    def test_invalid_secrets(self, bad: str) -> None:
        assert not is_valid_secret(bad)


class TestHashlock:
    def test_known_vector(self) -> None:
        assert hash_secret(ZERO_SECRET) == ZERO_SECRET_HASH

    def test_hash_rejects_bad_secret(self) -> None:
        with pytest.raises(ValueError):
            hash_secret("0x1234")

    def test_secret_matches(self) -> None:
        assert secret_matches(ZERO_SECRET, ZERO_SECRET_HASH.upper().replace("0X", "0x"))
        assert not secret_matches("0x" + "11" * 32, ZERO_SECRET_HASH)
        assert not secret_matches("not-hex", ZERO_SECRET_HASH)


class TestAddresses:
    @pytest.mark.parametrize(
        "address",
        [
            "0x742d35cc6634c0532925a3b844bc9e7595f2bd18",
            "G" + "A" * 55,
            "C" + "B" * 55,
        ],
    )
    def test_valid(self, address: str) -> None:
        assert is_valid_address(address)

    @pytest.mark.parametrize("address", ["", "0x1234", "G" + "a" * 55, "X" + "A" * 55, None])
    def test_invalid(self, address) -> None:
        assert not is_valid_address(address)


class TestOrderHash:
    def test_key_order_does_not_matter(self) -> None:
        assert derive_order_hash({"a": 1, "b": "2"}) == derive_order_hash({"b": "2", "a": 1})

    def test_different_terms_differ(self) -> None:
        assert derive_order_hash({"a": 1}) != derive_order_hash({"a": 2})
