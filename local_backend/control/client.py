"""
Authenticated control-plane client for a running backend.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from local_backend.errors import BackendNotStarted, ControlPlaneError
from local_backend.supervisor.process import BackendHandle

logger = logging.getLogger(__name__)

CLIENT_NAME = "local-backend-orchestrator"


class ControlPlaneClient:
    """
    Thin request layer over the backend's admin HTTP API.

    The session is created lazily on first use; call ``close()`` when done.

    Example:
        client = ControlPlaneClient(supervisor.handle, credentials.admin_key)
        await client.set_env("API_URL", "http://localhost:5173")
        result = await client.run_function("seed:default", {"count": 10})
        await client.close()
    """

    def __init__(
        self,
        handle: BackendHandle,
        admin_key: str,
        timeout: float = 30.0,
    ):
        self.handle = handle
        self.admin_key = admin_key
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    def _base_url(self) -> str:
        if self.handle.port is None:
            raise BackendNotStarted("Backend not started")
        return self.handle.url

    def _headers(self, **extra: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Convex {self.admin_key}",
        }
        headers.update(extra)
        return headers

    async def _post(
        self,
        operation: str,
        path: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
    ) -> Tuple[int, str]:
        url = f"{self._base_url()}{path}"
        session = await self._get_session()

        async with session.post(url, json=payload, headers=headers) as resp:
            body = await resp.text()
            if not 200 <= resp.status < 300:
                raise ControlPlaneError(operation, resp.status, body)
            return resp.status, body

    async def set_env(self, name: str, value: str) -> None:
        """
        Set one environment variable on the backend.

        Raises:
            BackendNotStarted: no port assigned (no request is made)
            ControlPlaneError: non-2xx response
        """
        await self._post(
            f"Set {name} env",
            "/api/v1/update_environment_variables",
            {"changes": [{"name": name, "value": value}]},
            self._headers(),
        )
        logger.debug(f"Set environment variable {name}")

    async def run_function(
        self,
        name: str,
        args: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Run a query, mutation or action by path (e.g. "seed:default").

        Returns:
            The function's return value, unwrapped from the response envelope

        Raises:
            BackendNotStarted: no port assigned (no request is made)
            ControlPlaneError: non-2xx response or a body that is not JSON
        """
        operation = f"Run {name}"
        status, body = await self._post(
            operation,
            "/api/function",
            {"path": name, "format": "json", "args": args or {}},
            self._headers(**{"Convex-Client": CLIENT_NAME}),
        )
        try:
            result = json.loads(body) if body else {}
        except ValueError:
            raise ControlPlaneError(operation, status, body) from None
        return result.get("value") if isinstance(result, dict) else None

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
