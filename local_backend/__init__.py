"""
Local Backend Orchestrator - dev-time supervision of a local Convex backend

Provides:
- Deterministic per-branch state directories
- Admin key generation and credential persistence
- Backend binary download and caching
- Process supervision with health checks
- Authenticated control-plane client (env vars, function calls)
- Single-flight, coalesced redeploys on source changes
"""

__version__ = "0.3.0"

# Errors
from local_backend.errors import (
    OrchestratorError,
    InvalidSecretLength,
    InvalidAdminKey,
    UnsupportedPlatform,
    AssetNotFound,
    DownloadFailed,
    ExtractionFailed,
    HealthCheckTimeout,
    ProcessStartFailed,
    DeployFailed,
    BackendNotStarted,
    ControlPlaneError,
    StartupError,
)

# Configuration
from local_backend.config import (
    OrchestratorConfig,
    BinaryConfig,
    WatchConfig,
    FunctionCall,
    DevServerContext,
    StaticEnv,
    ComputedEnv,
    load_config,
)

# State identity
from local_backend.state import (
    StateIdentity,
    resolve_state_identity,
)

# Credentials
from local_backend.credentials import (
    CredentialSet,
    CredentialManager,
    AdminKeyClaims,
    generate_instance_secret,
    generate_admin_key,
    generate_key_pair,
    decode_admin_key,
)

# Binary
from local_backend.binary import BinaryProvisioner

# Process supervision
from local_backend.supervisor import (
    BackendStatus,
    BackendHandle,
    BackendSupervisor,
    allocate_ports,
)

# Control plane
from local_backend.control import ControlPlaneClient

# Orchestration
from local_backend.orchestration import (
    LocalBackendOrchestrator,
    DeployCoordinator,
    BackendRegistry,
    SourceWatcher,
    ChangeKind,
    FileChange,
    match_pattern,
)

# Utilities
from local_backend.utils import (
    setup_logging,
    LoggingConfig,
    EventChannel,
    detect_platform,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "OrchestratorError",
    "InvalidSecretLength",
    "InvalidAdminKey",
    "UnsupportedPlatform",
    "AssetNotFound",
    "DownloadFailed",
    "ExtractionFailed",
    "HealthCheckTimeout",
    "ProcessStartFailed",
    "DeployFailed",
    "BackendNotStarted",
    "ControlPlaneError",
    "StartupError",
    # Configuration
    "OrchestratorConfig",
    "BinaryConfig",
    "WatchConfig",
    "FunctionCall",
    "DevServerContext",
    "StaticEnv",
    "ComputedEnv",
    "load_config",
    # State identity
    "StateIdentity",
    "resolve_state_identity",
    # Credentials
    "CredentialSet",
    "CredentialManager",
    "AdminKeyClaims",
    "generate_instance_secret",
    "generate_admin_key",
    "generate_key_pair",
    "decode_admin_key",
    # Binary
    "BinaryProvisioner",
    # Process supervision
    "BackendStatus",
    "BackendHandle",
    "BackendSupervisor",
    "allocate_ports",
    # Control plane
    "ControlPlaneClient",
    # Orchestration
    "LocalBackendOrchestrator",
    "DeployCoordinator",
    "BackendRegistry",
    "SourceWatcher",
    "ChangeKind",
    "FileChange",
    "match_pattern",
    # Utilities
    "setup_logging",
    "LoggingConfig",
    "EventChannel",
    "detect_platform",
]
