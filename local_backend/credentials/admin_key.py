"""
Admin key wire format.

An admin key is ``<instance_name>|<hex>`` where the hex part is
``version || nonce(12) || ciphertext_with_tag``. The ciphertext is an
AES-128-GCM-SIV encryption of a small protobuf message (issued time, member
id, read-only flag) under a key derived from the instance secret, so the
backend can verify keys it never issued itself.
"""

from __future__ import annotations

import hashlib
import hmac
import math
import secrets
import time
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCMSIV

from local_backend.errors import InvalidAdminKey, InvalidSecretLength

ADMIN_KEY_VERSION = 1
ADMIN_KEY_PURPOSE = b"admin key"
SECRET_LENGTH = 32
KEY_LENGTH = 16
NONCE_LENGTH = 12
TAG_LENGTH = 16

# Protobuf field numbers of the AdminKey message
FIELD_ISSUED_S = 2
FIELD_MEMBER_ID = 3
FIELD_IS_READ_ONLY = 5
WIRE_TYPE_VARINT = 0


@dataclass(frozen=True)
class AdminKeyClaims:
    """Decoded plaintext of an admin key."""
    instance_name: str
    issued_s: int
    member_id: int = 0
    is_read_only: bool = False


def generate_instance_secret() -> str:
    """Return a random 32-byte instance secret as 64 hex characters."""
    return secrets.token_bytes(SECRET_LENGTH).hex()


def decode_secret(instance_secret: str) -> bytes:
    """Decode a hex instance secret, enforcing the 32-byte length."""
    try:
        secret = bytes.fromhex(instance_secret)
    except (TypeError, ValueError):
        raise InvalidSecretLength("Instance secret must be a hex string") from None

    if len(secret) != SECRET_LENGTH:
        raise InvalidSecretLength(
            f"Instance secret must be {SECRET_LENGTH} bytes "
            f"({SECRET_LENGTH * 2} hex chars), got {len(secret)} bytes"
        )
    return secret


def derive_key(secret: bytes, info: bytes = ADMIN_KEY_PURPOSE, length: int = KEY_LENGTH) -> bytes:
    """
    Counter-mode HMAC-SHA256 key derivation.

    Each block is HMAC(secret, BE32(counter) || info) with a 1-based counter.
    No label separator or output length is mixed in, which is the variant the
    backend's verifier uses.
    """
    blocks = []
    for counter in range(1, math.ceil(length / 32) + 1):
        mac = hmac.new(secret, counter.to_bytes(4, "big") + info, hashlib.sha256)
        blocks.append(mac.digest())
    return b"".join(blocks)[:length]


def encode_varint(value: int) -> bytes:
    if value < 0:
        raise ValueError("varint value must be non-negative")
    out = bytearray()
    while value > 0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Decode one varint at ``offset``. Returns (value, next_offset)."""
    result = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise ValueError("truncated varint")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, offset
        shift += 7
        if shift > 63:
            raise ValueError("varint too long")


def _encode_field(field_number: int, value: int) -> bytes:
    return encode_varint((field_number << 3) | WIRE_TYPE_VARINT) + encode_varint(value)


def encode_claims(issued_s: int, member_id: int = 0, is_read_only: bool = False) -> bytes:
    payload = _encode_field(FIELD_ISSUED_S, issued_s)
    payload += _encode_field(FIELD_MEMBER_ID, member_id)
    if is_read_only:
        payload += _encode_field(FIELD_IS_READ_ONLY, 1)
    return payload


def _iter_fields(payload: bytes) -> Iterator[Tuple[int, int]]:
    offset = 0
    while offset < len(payload):
        tag, offset = decode_varint(payload, offset)
        if tag & 0x7 != WIRE_TYPE_VARINT:
            raise ValueError(f"unsupported wire type {tag & 0x7}")
        value, offset = decode_varint(payload, offset)
        yield tag >> 3, value


def generate_admin_key(
    instance_secret: str,
    instance_name: str,
    member_id: int = 0,
    is_read_only: bool = False,
    issued_s: Optional[int] = None,
) -> str:
    """
    Generate an admin key for ``instance_name``.

    Args:
        instance_secret: 64 hex characters (32 bytes)
        instance_name: Backend instance name, used as the key prefix
        member_id: Member identity, 0 for generic keys
        is_read_only: Issue a read-only key
        issued_s: Issue time in unix seconds (defaults to now)

    Raises:
        InvalidSecretLength: if the secret is not 32 bytes of hex
    """
    secret = decode_secret(instance_secret)
    aes_key = derive_key(secret)
    nonce = secrets.token_bytes(NONCE_LENGTH)

    if issued_s is None:
        issued_s = int(time.time())
    plaintext = encode_claims(issued_s, member_id, is_read_only)

    version = bytes([ADMIN_KEY_VERSION])
    ciphertext = AESGCMSIV(aes_key).encrypt(nonce, plaintext, version)

    return f"{instance_name}|{(version + nonce + ciphertext).hex()}"


def generate_key_pair(instance_name: str) -> Dict[str, str]:
    """Generate a fresh instance secret and a matching admin key."""
    instance_secret = generate_instance_secret()
    return {
        "instance_secret": instance_secret,
        "admin_key": generate_admin_key(instance_secret, instance_name),
    }


def decode_admin_key(instance_secret: str, admin_key: str) -> AdminKeyClaims:
    """
    Decrypt and parse an admin key.

    Raises:
        InvalidSecretLength: if the secret is not 32 bytes of hex
        InvalidAdminKey: on malformed input, an unknown version, or a key
            that was not produced with this secret
    """
    secret = decode_secret(instance_secret)

    instance_name, sep, encoded = admin_key.rpartition("|")
    if not sep or not instance_name:
        raise InvalidAdminKey("Admin key must look like '<instance_name>|<hex>'")

    try:
        blob = bytes.fromhex(encoded)
    except ValueError:
        raise InvalidAdminKey("Admin key payload is not valid hex") from None

    if len(blob) < 1 + NONCE_LENGTH + TAG_LENGTH:
        raise InvalidAdminKey("Admin key payload is too short")
    if blob[0] != ADMIN_KEY_VERSION:
        raise InvalidAdminKey(f"Unsupported admin key version {blob[0]}")

    nonce = blob[1:1 + NONCE_LENGTH]
    ciphertext = blob[1 + NONCE_LENGTH:]
    try:
        plaintext = AESGCMSIV(derive_key(secret)).decrypt(nonce, ciphertext, blob[:1])
    except InvalidTag:
        raise InvalidAdminKey("Admin key does not match the instance secret") from None

    values = {FIELD_ISSUED_S: 0, FIELD_MEMBER_ID: 0, FIELD_IS_READ_ONLY: 0}
    try:
        for field_number, value in _iter_fields(plaintext):
            values[field_number] = value
    except ValueError as e:
        raise InvalidAdminKey(f"Admin key payload is malformed: {e}") from None

    return AdminKeyClaims(
        instance_name=instance_name,
        issued_s=values[FIELD_ISSUED_S],
        member_id=values[FIELD_MEMBER_ID],
        is_read_only=bool(values[FIELD_IS_READ_ONLY]),
    )
