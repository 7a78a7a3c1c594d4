"""
Configuration system for the local backend orchestrator.

Features:
- Dataclass-based configuration with type hints
- YAML file loading with environment variable interpolation
- Environment-only configuration (LOCAL_BACKEND_* variables)
- Validation and defaults
"""

from __future__ import annotations

import os
import re
import typing
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    TypeVar,
    Type,
    Union,
)
import logging

from local_backend.config.env_vars import EnvVarSource, as_env_source

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseConfig")

ENV_PREFIX = "LOCAL_BACKEND_"

DEFAULT_RELEASE_INDEX_URL = (
    "https://api.github.com/repos/get-convex/convex-backend/releases?per_page=50"
)
DEFAULT_CACHE_TTL = 7 * 24 * 60 * 60.0


def _interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in config values.

    Supports formats:
    - ${VAR_NAME} - Required, raises if not set
    - ${VAR_NAME:-default} - Optional with default
    - ${VAR_NAME:?error message} - Required with custom error
    """
    if isinstance(value, str):
        pattern = r"\$\{([A-Z_][A-Z0-9_]*)(?:(:-)([^}]*))?(?:(:\?)([^}]*))?\}"

        def replace_var(match: re.Match) -> str:
            var_name = match.group(1)
            has_default = match.group(2) is not None
            default_value = match.group(3) or ""
            has_error = match.group(4) is not None
            error_msg = match.group(5) or f"Required environment variable {var_name} is not set"

            env_value = os.environ.get(var_name)

            if env_value is not None:
                return env_value
            elif has_default:
                return default_value
            elif has_error:
                raise ValueError(error_msg)
            elif match.group(0) == value:
                raise ValueError(f"Environment variable {var_name} is not set")
            return match.group(0)

        result = re.sub(pattern, replace_var, value)

        if result.startswith("~"):
            result = str(Path(result).expanduser())

        return result

    elif isinstance(value, dict):
        return {k: _interpolate_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_interpolate_env_vars(item) for item in value]

    return value


def _coerce_type(value: Any, target_type: Any) -> Any:
    """Coerce a value to the target type."""
    if value is None:
        return None

    origin = typing.get_origin(target_type)
    args = typing.get_args(target_type)

    # Optional[X]
    if origin is Union:
        non_none_types = [t for t in args if t is not type(None)]
        if len(non_none_types) == 1:
            return _coerce_type(value, non_none_types[0])
        return value

    if target_type is Path:
        return Path(value).expanduser() if value else None

    if origin is list:
        item_type = args[0] if args else str
        if isinstance(value, str):
            # Comma separated lists from environment variables
            value = [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [_coerce_type(item, item_type) for item in value]
        return [_coerce_type(value, item_type)]

    if origin is dict:
        return dict(value)

    # bool("false") is True
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is int:
        return int(float(value)) if value != "" else 0
    if target_type is float:
        return float(value) if value != "" else 0.0
    if target_type is str:
        return str(value)

    return value


@dataclass
class BaseConfig:
    """
    Base configuration class with YAML loading and env var interpolation.
    """

    @classmethod
    def _field_types(cls) -> Dict[str, Any]:
        hints = typing.get_type_hints(cls)
        return {f.name: hints[f.name] for f in fields(cls)}

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create config from dictionary with env var interpolation."""
        interpolated = _interpolate_env_vars(data)
        field_types = cls._field_types()

        # Only include fields that exist in the dataclass
        filtered = {}
        for key, value in interpolated.items():
            if key in field_types:
                filtered[key] = _coerce_type(value, field_types[key])
            else:
                logger.debug(f"Ignoring unknown config key for {cls.__name__}: {key}")

        return cls(**filtered)

    @classmethod
    def from_yaml(cls: Type[T], path: Union[str, Path]) -> T:
        """Load config from YAML file with env var interpolation."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_env(cls: Type[T], prefix: str = "") -> T:
        """Create config entirely from environment variables."""
        data = {}

        for field_info in fields(cls):
            env_key = f"{prefix}{field_info.name}".upper()
            env_value = os.environ.get(env_key)

            if env_value is not None:
                data[field_info.name] = env_value

        return cls.from_dict(data) if data else cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return _to_plain(asdict(self))


def _to_plain(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_plain(v) for v in value]
    return value


@dataclass
class BinaryConfig(BaseConfig):
    """Backend binary acquisition and caching."""

    cache_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv(f"{ENV_PREFIX}BINARY_CACHE_DIR", "~/.convex-local-backend/releases")
        ).expanduser()
    )
    # Seconds a cached binary stays fresh. 0 always checks the release index.
    cache_ttl: float = DEFAULT_CACHE_TTL
    # Pin a release tag, e.g. "precompiled-2025-01-31-e52353b"
    version: Optional[str] = None
    release_index_url: str = DEFAULT_RELEASE_INDEX_URL
    github_token: Optional[str] = field(
        default_factory=lambda: os.getenv("GITHUB_TOKEN") or None
    )
    download_timeout: float = 300.0
    index_attempts: int = 3

    def __post_init__(self):
        if self.cache_ttl < 0:
            raise ValueError("cache_ttl must be >= 0")
        if self.index_attempts < 1:
            raise ValueError("index_attempts must be >= 1")


@dataclass
class WatchConfig(BaseConfig):
    """Which source files trigger a redeploy."""

    # Empty lists fall back to the functions directory defaults
    patterns: List[str] = field(default_factory=list)
    ignore: List[str] = field(default_factory=list)
    debounce: float = 0.5
    channel_size: int = 256

    def __post_init__(self):
        if self.debounce < 0:
            raise ValueError("debounce must be >= 0")


@dataclass
class FunctionCall:
    """A backend function invoked once the initial deploy finished."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, value: Union["FunctionCall", str, Dict[str, Any]]) -> "FunctionCall":
        if isinstance(value, FunctionCall):
            return value
        if isinstance(value, str):
            return cls(name=value)
        return cls(name=value["name"], args=dict(value.get("args") or {}))


@dataclass
class OrchestratorConfig(BaseConfig):
    """
    Top-level orchestrator configuration.

    Nested sections (``binary``, ``watch``) and the non-scalar options
    (``env_vars``, ``on_ready``) are parsed by ``from_dict``.
    """

    project_dir: Path = field(default_factory=Path.cwd)
    functions_dir: str = "convex"
    state_dir_name: str = ".state"
    state_id_suffix: Optional[str] = None
    reset: bool = False

    # Credentials
    instance_name: str = "convex-local"
    instance_secret: Optional[str] = None
    admin_key: Optional[str] = None

    # Fixed ports; allocated automatically when unset
    port: Optional[int] = None
    site_proxy_port: Optional[int] = None

    # Timeouts (seconds)
    health_check_timeout: float = 10.0
    deploy_timeout: float = 60.0
    stop_timeout: float = 5.0
    vcs_timeout: float = 5.0

    deploy_command: List[str] = field(default_factory=lambda: ["bun", "convex", "deploy"])
    # Forward the backend's stdout/stderr to ours
    backend_output: bool = False
    client_env_prefix: str = "VITE_"

    env_vars: Optional[EnvVarSource] = None
    on_ready: List[FunctionCall] = field(default_factory=list)

    binary: BinaryConfig = field(default_factory=BinaryConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)

    def __post_init__(self):
        self.project_dir = Path(self.project_dir).expanduser().resolve()
        self.env_vars = as_env_source(self.env_vars)
        self.on_ready = [FunctionCall.parse(call) for call in self.on_ready]
        if self.health_check_timeout <= 0:
            raise ValueError("health_check_timeout must be > 0")
        if not self.deploy_command:
            raise ValueError("deploy_command must not be empty")

    @property
    def state_root(self) -> Path:
        return self.project_dir / self.state_dir_name

    @property
    def watch_patterns(self) -> List[str]:
        if self.watch.patterns:
            return list(self.watch.patterns)
        return [f"{self.functions_dir}/*.ts", f"{self.functions_dir}/**/*.ts"]

    @property
    def ignore_patterns(self) -> List[str]:
        if self.watch.ignore:
            return list(self.watch.ignore)
        return [
            f"{self.functions_dir}/_generated/**",
            f"{self.functions_dir}/_generated/*.ts",
        ]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrchestratorConfig":
        data = dict(data)
        binary = data.pop("binary", None)
        watch = data.pop("watch", None)
        env_vars = data.pop("env_vars", None)
        on_ready = data.pop("on_ready", None)

        config = super().from_dict(data)

        if binary is not None:
            config.binary = BinaryConfig.from_dict(binary)
        if watch is not None:
            config.watch = WatchConfig.from_dict(watch)
        if env_vars is not None:
            config.env_vars = as_env_source(_interpolate_env_vars(env_vars))
        if on_ready is not None:
            config.on_ready = [FunctionCall.parse(call) for call in on_ready]

        return config

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "OrchestratorConfig":
        data: Dict[str, Any] = {}
        skip = {"binary", "watch", "env_vars", "on_ready"}

        for field_info in fields(cls):
            if field_info.name in skip:
                continue
            env_value = os.environ.get(f"{prefix}{field_info.name}".upper())
            if env_value is not None:
                data[field_info.name] = env_value

        config = cls.from_dict(data)
        config.binary = BinaryConfig.from_env(f"{prefix}BINARY_")
        config.watch = WatchConfig.from_env(f"{prefix}WATCH_")
        return config

    def to_dict(self) -> Dict[str, Any]:
        result = {
            f.name: _to_plain(getattr(self, f.name))
            for f in fields(self)
            if f.name not in ("binary", "watch", "env_vars", "on_ready")
        }
        result["binary"] = self.binary.to_dict()
        result["watch"] = self.watch.to_dict()
        result["on_ready"] = [{"name": c.name, "args": c.args} for c in self.on_ready]
        return result


def load_config(
    path: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> OrchestratorConfig:
    """
    Load orchestrator configuration.

    Args:
        path: YAML config file. If None, configuration is read from
            LOCAL_BACKEND_* environment variables.
        **overrides: Field values applied on top (e.g. from CLI flags).
            None values are ignored.

    Returns:
        OrchestratorConfig instance
    """
    if path is not None:
        config = OrchestratorConfig.from_yaml(path)
        logger.info(f"Loaded config from {path}")
    else:
        config = OrchestratorConfig.from_env()
        logger.debug("Loaded config from environment")

    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(config, key):
            raise ValueError(f"Unknown config option: {key}")
        setattr(config, key, value)

    if overrides.get("project_dir") is not None:
        config.project_dir = Path(config.project_dir).expanduser().resolve()

    return config
