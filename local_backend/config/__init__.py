"""
Configuration module for the local backend orchestrator.
"""

from local_backend.config.base_config import (
    BaseConfig,
    BinaryConfig,
    WatchConfig,
    FunctionCall,
    OrchestratorConfig,
    load_config,
    DEFAULT_CACHE_TTL,
    DEFAULT_RELEASE_INDEX_URL,
)
from local_backend.config.env_vars import (
    DevServerContext,
    StaticEnv,
    ComputedEnv,
    EnvVarSource,
    as_env_source,
)

__all__ = [
    # Config classes
    "BaseConfig",
    "BinaryConfig",
    "WatchConfig",
    "FunctionCall",
    "OrchestratorConfig",
    "load_config",
    "DEFAULT_CACHE_TTL",
    "DEFAULT_RELEASE_INDEX_URL",
    # Environment variable sources
    "DevServerContext",
    "StaticEnv",
    "ComputedEnv",
    "EnvVarSource",
    "as_env_source",
]
