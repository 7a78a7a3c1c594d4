"""
Backend process supervision.

Provides:
- Port allocation (ephemeral sampling or probing)
- BackendSupervisor: spawn, health check, stop, deploy
- kill_pid for orphaned backends from a previous run
"""

from local_backend.supervisor.ports import (
    allocate_ports,
    ephemeral_port,
    is_port_free,
    probe_port,
)
from local_backend.supervisor.process import (
    BackendStatus,
    BackendHandle,
    BackendSupervisor,
    kill_pid,
    STORAGE_DIRNAME,
    SQLITE_FILENAME,
)

__all__ = [
    # Ports
    "allocate_ports",
    "ephemeral_port",
    "is_port_free",
    "probe_port",
    # Process
    "BackendStatus",
    "BackendHandle",
    "BackendSupervisor",
    "kill_pid",
    "STORAGE_DIRNAME",
    "SQLITE_FILENAME",
]
