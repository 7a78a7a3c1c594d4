"""
Utilities module for the local backend orchestrator.

Provides:
- Platform detection (release asset target)
- Async helpers (event channel, debounce draining, retry, backoff)
- Structured logging configuration
"""

from local_backend.utils.environment import (
    detect_platform,
    OSFamily,
    PlatformInfo,
)

from local_backend.utils.async_helpers import (
    EventChannel,
    ChannelClosed,
    collect_burst,
    backoff_delays,
    async_retry,
)

from local_backend.utils.logging_config import (
    setup_logging,
    get_logger,
    LoggingConfig,
    LogContext,
    set_run_id,
    set_stage,
    set_context,
    clear_context,
    log_duration,
)

__all__ = [
    # Environment
    "detect_platform",
    "OSFamily",
    "PlatformInfo",
    # Async helpers
    "EventChannel",
    "ChannelClosed",
    "collect_burst",
    "backoff_delays",
    "async_retry",
    # Logging
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "LogContext",
    "set_run_id",
    "set_stage",
    "set_context",
    "clear_context",
    "log_duration",
]
