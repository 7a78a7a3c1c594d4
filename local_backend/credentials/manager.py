"""
Credential persistence scoped to a state directory.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from local_backend.credentials.admin_key import decode_secret, generate_key_pair

logger = logging.getLogger(__name__)

KEYS_FILENAME = "keys.json"


@dataclass(frozen=True)
class CredentialSet:
    """Instance name, shared secret and admin key of one backend."""
    instance_name: str
    instance_secret: str
    admin_key: str

    def to_json(self) -> Dict[str, str]:
        return {
            "instanceName": self.instance_name,
            "instanceSecret": self.instance_secret,
            "adminKey": self.admin_key,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CredentialSet":
        return cls(
            instance_name=str(data["instanceName"]),
            instance_secret=str(data["instanceSecret"]),
            admin_key=str(data["adminKey"]),
        )


class CredentialManager:
    """
    Loads or creates the credentials of a backend instance.

    Precedence:
    1. Persisted ``keys.json`` (skipped when resetting)
    2. Caller-supplied secret + admin key
    3. Freshly generated key pair

    Example:
        manager = CredentialManager(instance_name="convex-local")
        creds = manager.load_or_create(state_dir)
    """

    def __init__(self, instance_name: str = "convex-local"):
        self.instance_name = instance_name

    @staticmethod
    def keys_path(state_dir: Union[str, Path]) -> Path:
        return Path(state_dir) / KEYS_FILENAME

    def load(self, state_dir: Union[str, Path]) -> Optional[CredentialSet]:
        """Read persisted credentials. Unreadable files count as absent."""
        path = self.keys_path(state_dir)
        if not path.exists():
            return None

        try:
            with open(path, "r") as f:
                return CredentialSet.from_json(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable credentials file {path}: {e}")
            return None

    def save(self, state_dir: Union[str, Path], credentials: CredentialSet) -> Path:
        """Write credentials, overwriting any existing file."""
        path = self.keys_path(state_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(credentials.to_json(), f, indent=2)
        return path

    def load_or_create(
        self,
        state_dir: Union[str, Path],
        provided: Optional[CredentialSet] = None,
        reset: bool = False,
    ) -> CredentialSet:
        """
        Resolve credentials for ``state_dir``.

        Args:
            state_dir: Per-identity state directory
            provided: Explicit credentials from configuration. They win
                over regeneration even when ``reset`` is set.
            reset: Ignore persisted credentials

        Raises:
            InvalidSecretLength: if ``provided`` carries a malformed secret
        """
        if not reset:
            existing = self.load(state_dir)
            if existing is not None:
                logger.info("Loaded persisted keys")
                return existing

        if provided is not None:
            decode_secret(provided.instance_secret)
            self.save(state_dir, provided)
            logger.info("Using provided keys")
            return provided

        generated = generate_key_pair(self.instance_name)
        credentials = CredentialSet(
            instance_name=self.instance_name,
            instance_secret=generated["instance_secret"],
            admin_key=generated["admin_key"],
        )
        self.save(state_dir, credentials)
        logger.info("Generated new keys")
        return credentials
