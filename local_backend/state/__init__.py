"""
State identity resolution.
"""

from local_backend.state.identity import (
    StateIdentity,
    read_vcs_branch,
    resolve_state_identity,
    sanitize,
    UNKNOWN_BRANCH,
)

__all__ = [
    "StateIdentity",
    "read_vcs_branch",
    "resolve_state_identity",
    "sanitize",
    "UNKNOWN_BRANCH",
]
