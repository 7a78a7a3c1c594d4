"""
Tests for admin key generation and verification.
"""

import hashlib
import hmac
import time

import pytest

from local_backend.credentials import admin_key
from local_backend.credentials import (
    decode_admin_key,
    decode_varint,
    derive_key,
    encode_varint,
    generate_admin_key,
    generate_instance_secret,
    generate_key_pair,
)
from local_backend.errors import InvalidAdminKey, InvalidSecretLength

SECRET = "4361726e697461732c206c69746572616c6c79206d65616e696e6720226c6974"


class TestVarint:
    @pytest.mark.parametrize(
        "value,encoded",
        [
            (0, b"\x00"),
            (1, b"\x01"),
            (127, b"\x7f"),
            (128, b"\x80\x01"),
            (300, b"\xac\x02"),
        ],
    )
    def test_known_encodings(self, value, encoded):
        assert encode_varint(value) == encoded
        assert decode_varint(encoded) == (value, len(encoded))

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            encode_varint(-1)

    def test_truncated(self):
        with pytest.raises(ValueError):
            decode_varint(b"\x80")


class TestPayload:
    def test_fields_without_read_only(self):
        assert admin_key.encode_claims(5, 0) == b"\x10\x05\x18\x00"

    def test_read_only_flag_appended(self):
        assert admin_key.encode_claims(5, 7, is_read_only=True) == b"\x10\x05\x18\x07\x28\x01"


class TestKeyDerivation:
    def test_single_block(self):
        secret = bytes.fromhex(SECRET)
        expected = hmac.new(secret, b"\x00\x00\x00\x01admin key", hashlib.sha256).digest()[:16]
        assert derive_key(secret) == expected

    def test_multi_block(self):
        secret = bytes.fromhex(SECRET)
        block1 = hmac.new(secret, b"\x00\x00\x00\x01admin key", hashlib.sha256).digest()
        block2 = hmac.new(secret, b"\x00\x00\x00\x02admin key", hashlib.sha256).digest()
        assert derive_key(secret, length=40) == (block1 + block2)[:40]


class TestAdminKey:
    def test_instance_secret_shape(self):
        secret = generate_instance_secret()
        assert len(secret) == 64
        bytes.fromhex(secret)

    def test_format(self):
        key = generate_admin_key(SECRET, "my-app", issued_s=5)
        name, encoded = key.split("|")
        blob = bytes.fromhex(encoded)

        assert name == "my-app"
        assert blob[0] == 1
        # version + nonce + 4-byte payload + tag
        assert len(blob) == 1 + 12 + 4 + 16

    def test_round_trip(self):
        before = int(time.time())
        key = generate_admin_key(SECRET, "my-app", member_id=300, is_read_only=True)
        after = int(time.time())

        claims = decode_admin_key(SECRET, key)

        assert claims.instance_name == "my-app"
        assert before <= claims.issued_s <= after
        assert claims.member_id == 300
        assert claims.is_read_only is True

    def test_round_trip_defaults(self):
        claims = decode_admin_key(SECRET, generate_admin_key(SECRET, "convex-local", issued_s=1700000000))
        assert claims.issued_s == 1700000000
        assert claims.member_id == 0
        assert claims.is_read_only is False

    def test_nonce_is_random(self):
        assert generate_admin_key(SECRET, "a") != generate_admin_key(SECRET, "a")

    def test_key_pair_matches(self):
        pair = generate_key_pair("pair")
        claims = decode_admin_key(pair["instance_secret"], pair["admin_key"])
        assert claims.instance_name == "pair"

    @pytest.mark.parametrize("secret", ["abcd", SECRET + "00", "zz" * 32])
    def test_invalid_secret(self, secret):
        with pytest.raises(InvalidSecretLength):
            generate_admin_key(secret, "my-app")

    def test_wrong_secret_rejected(self):
        key = generate_admin_key(SECRET, "my-app")
        with pytest.raises(InvalidAdminKey):
            decode_admin_key(generate_instance_secret(), key)

    def test_tampered_key_rejected(self):
        key = generate_admin_key(SECRET, "my-app")
        flipped = key[:-1] + ("0" if key[-1] != "0" else "1")
        with pytest.raises(InvalidAdminKey):
            decode_admin_key(SECRET, flipped)

    @pytest.mark.parametrize("bad", ["no-separator", "name|zz", "name|01", "|0102"])
    def test_malformed_rejected(self, bad):
        with pytest.raises(InvalidAdminKey):
            decode_admin_key(SECRET, bad)

    def test_unknown_version_rejected(self):
        key = generate_admin_key(SECRET, "my-app")
        name, encoded = key.split("|")
        with pytest.raises(InvalidAdminKey):
            decode_admin_key(SECRET, f"{name}|02{encoded[2:]}")
