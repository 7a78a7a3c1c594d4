"""
Sources for environment variables pushed to the backend at startup.

A source is either a static mapping or a callable computed from the dev
server context. It is evaluated exactly once, at the point environment
injection happens.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Union


@dataclass(frozen=True)
class DevServerContext:
    """Resolved listen address of the host dev server."""
    host: str = "localhost"
    port: int = 5173
    urls: List[str] = field(default_factory=list)

    @property
    def local_url(self) -> str:
        if self.urls:
            return self.urls[0]
        return f"http://{self.host}:{self.port}"


ComputeFn = Callable[
    [DevServerContext],
    Union[Mapping[str, str], Awaitable[Mapping[str, str]]],
]


@dataclass(frozen=True)
class StaticEnv:
    """Fixed environment variables."""
    values: Mapping[str, str]

    async def evaluate(self, context: DevServerContext) -> Dict[str, str]:
        return {str(k): str(v) for k, v in self.values.items()}


@dataclass(frozen=True)
class ComputedEnv:
    """Environment variables computed from the dev server context."""
    compute: ComputeFn

    async def evaluate(self, context: DevServerContext) -> Dict[str, str]:
        result = self.compute(context)
        if inspect.isawaitable(result):
            result = await result
        return {str(k): str(v) for k, v in (result or {}).items()}


EnvVarSource = Union[StaticEnv, ComputedEnv]


def as_env_source(value: Optional[object]) -> Optional[EnvVarSource]:
    """Wrap a plain mapping or callable into the matching env source."""
    if value is None or isinstance(value, (StaticEnv, ComputedEnv)):
        return value
    if isinstance(value, Mapping):
        return StaticEnv(dict(value))
    if callable(value):
        return ComputedEnv(value)
    raise TypeError(f"env_vars must be a mapping or callable, got {type(value).__name__}")
