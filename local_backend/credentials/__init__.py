"""
Credential generation and persistence.

Provides:
- Admin key generation and verification (AES-128-GCM-SIV)
- CredentialManager for keys.json inside a state directory
"""

from local_backend.credentials.admin_key import (
    AdminKeyClaims,
    generate_instance_secret,
    generate_admin_key,
    generate_key_pair,
    decode_admin_key,
    derive_key,
    encode_varint,
    decode_varint,
)
from local_backend.credentials.manager import (
    CredentialSet,
    CredentialManager,
    KEYS_FILENAME,
)

__all__ = [
    # Admin key
    "AdminKeyClaims",
    "generate_instance_secret",
    "generate_admin_key",
    "generate_key_pair",
    "decode_admin_key",
    "derive_key",
    "encode_varint",
    "decode_varint",
    # Persistence
    "CredentialSet",
    "CredentialManager",
    "KEYS_FILENAME",
]
