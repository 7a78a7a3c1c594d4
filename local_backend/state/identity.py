"""
State identity: a deterministic, filesystem-safe name for one backend's
on-disk state, derived from (branch, project path, optional suffix).
"""

from __future__ import annotations

import hashlib
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

UNKNOWN_BRANCH = "unknown"
HASH_LENGTH = 16

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9-]")


def sanitize(value: str) -> str:
    """Replace every character outside [a-zA-Z0-9-] with '-'."""
    return _UNSAFE_CHARS.sub("-", value)


@dataclass(frozen=True)
class StateIdentity:
    """Sanitized label plus a short digest of the inputs."""
    raw_label: str
    hash: str

    @classmethod
    def derive(
        cls,
        branch: str,
        project_path: Union[str, Path],
        suffix: Optional[str] = None,
    ) -> "StateIdentity":
        parts = [branch, str(project_path)]
        label = sanitize(branch)
        if suffix:
            parts.append(suffix)
            label = f"{label}-{sanitize(suffix)}"

        digest = hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()
        return cls(raw_label=label, hash=digest[:HASH_LENGTH])

    @property
    def name(self) -> str:
        return f"{self.raw_label}-{self.hash}"

    def __str__(self) -> str:
        return self.name


def read_vcs_branch(project_path: Union[str, Path], timeout: float = 5.0) -> str:
    """
    Return the current git branch of ``project_path``.

    Never raises: when the directory is not a repository, git is missing,
    or the command fails or times out, UNKNOWN_BRANCH is returned.
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=str(project_path),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.debug("git branch lookup timed out")
        return UNKNOWN_BRANCH
    except OSError as e:
        logger.debug(f"git branch lookup failed: {e}")
        return UNKNOWN_BRANCH

    branch = result.stdout.strip()
    if result.returncode != 0 or not branch:
        return UNKNOWN_BRANCH
    return branch


def resolve_state_identity(
    project_path: Union[str, Path],
    suffix: Optional[str] = None,
    timeout: float = 5.0,
) -> StateIdentity:
    """Resolve the state identity for a project directory."""
    branch = read_vcs_branch(project_path, timeout=timeout)
    identity = StateIdentity.derive(branch, project_path, suffix)
    logger.debug(f"State identity for {project_path} on {branch}: {identity}")
    return identity
