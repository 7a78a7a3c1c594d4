"""
Tracks the most recently started backend so that a re-created orchestrator
(e.g. after the host reloads its configuration) can stop the orphan left by
its predecessor.
"""

from __future__ import annotations

import logging
from typing import Optional

from local_backend.supervisor.process import BackendHandle, kill_pid

logger = logging.getLogger(__name__)


class BackendRegistry:
    """
    Owned by the host and shared by reference between orchestrator instances.
    Also records which instance currently owns the process signal handlers,
    so an old instance shutting down leaves its successor's handlers alone.

    Example:
        registry = BackendRegistry()
        first = LocalBackendOrchestrator(config, registry=registry)
        # host reloads...
        second = LocalBackendOrchestrator(config, registry=registry)
        await second.start(context)  # kills the first backend
    """

    def __init__(self):
        self._handle: Optional[BackendHandle] = None
        # Last instance to install SIGINT/SIGTERM handlers
        self._signal_owner: Optional[object] = None

    @property
    def current(self) -> Optional[BackendHandle]:
        return self._handle

    @property
    def pid(self) -> Optional[int]:
        return self._handle.pid if self._handle is not None else None

    def register(self, handle: BackendHandle) -> None:
        self._handle = handle

    def unregister(self, handle: BackendHandle) -> None:
        if self._handle is handle:
            self._handle = None

    def kill_previous(self) -> bool:
        """Kill and forget the recorded backend. Returns True if one was killed."""
        pid = self.pid
        self._handle = None
        if pid is None:
            return False

        killed = kill_pid(pid)
        if killed:
            logger.info(f"Stopped previous backend (pid {pid})")
        return killed

    def claim_signals(self, owner: object) -> None:
        self._signal_owner = owner

    def owns_signals(self, owner: object) -> bool:
        return self._signal_owner is owner

    def release_signals(self, owner: object) -> None:
        if self._signal_owner is owner:
            self._signal_owner = None
