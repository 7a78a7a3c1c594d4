"""
Orchestration layer for the local backend.

Provides:
- LocalBackendOrchestrator: startup sequencing and lifecycle ownership
- DeployCoordinator: single-flight, coalesced deploys with debounce
- BackendRegistry: previous-backend tracking across host restarts
- SourceWatcher: watchdog-based file-change source
"""

from local_backend.orchestration.events import (
    ChangeKind,
    FileChange,
    match_pattern,
    relative_path,
    should_watch,
)
from local_backend.orchestration.deploy_coordinator import (
    DeployCoordinator,
    DeployCoordinatorState,
)
from local_backend.orchestration.registry import BackendRegistry
from local_backend.orchestration.watcher import SourceWatcher, SourceChangeHandler
from local_backend.orchestration.orchestrator import LocalBackendOrchestrator

__all__ = [
    # Events
    "ChangeKind",
    "FileChange",
    "match_pattern",
    "relative_path",
    "should_watch",
    # Deploys
    "DeployCoordinator",
    "DeployCoordinatorState",
    # Lifecycle
    "BackendRegistry",
    "SourceWatcher",
    "SourceChangeHandler",
    "LocalBackendOrchestrator",
]
