"""
Single-flight deploy scheduling with coalescing.

At most one deploy runs at a time. Requests arriving while a deploy is in
flight collapse into exactly one trailing deploy. Upstream, a trailing-edge
debounce drains bursts of file-change events from an EventChannel before
they ever reach the coordinator.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from local_backend.errors import DeployFailed
from local_backend.orchestration.events import FileChange
from local_backend.utils.async_helpers import ChannelClosed, EventChannel, collect_burst

logger = logging.getLogger(__name__)

DeployFn = Callable[[], Awaitable[Any]]


@dataclass
class DeployCoordinatorState:
    in_flight: bool = False
    pending_trailing: bool = False


class DeployCoordinator:
    """
    Coalescing scheduler over a ``deploy()`` coroutine function.

    Example:
        coordinator = DeployCoordinator(supervisor.deploy, debounce=0.5)
        task = asyncio.create_task(coordinator.run(channel))

        coordinator.request()        # starts a deploy
        coordinator.request()        # in flight: marks one trailing deploy
        await coordinator.wait_idle()
    """

    def __init__(self, deploy: DeployFn, debounce: float = 0.5):
        self._deploy = deploy
        self.debounce = debounce
        self.state = DeployCoordinatorState()
        self._task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()

        self._deploy_count = 0
        self._failure_count = 0

    @property
    def in_flight(self) -> bool:
        return self.state.in_flight

    def request(self) -> None:
        """Request a deploy. Never blocks."""
        if self.state.in_flight:
            self.state.pending_trailing = True
            return

        self.state.in_flight = True
        self._idle.clear()
        self._task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while True:
                await self._deploy_once()
                if not self.state.pending_trailing:
                    break
                self.state.pending_trailing = False
        finally:
            self.state.in_flight = False
            self._idle.set()

    async def _deploy_once(self) -> None:
        self._deploy_count += 1
        logger.info("Deploying...")
        try:
            await self._deploy()
        except DeployFailed as e:
            self._failure_count += 1
            logger.error(f"Deploy failed: {e}")
            return
        except Exception as e:
            # Steady-state deploys must never take down the host
            self._failure_count += 1
            logger.exception(f"Deploy failed: {e}")
            return
        logger.info("Deploy successful")

    async def wait_idle(self) -> None:
        """Wait until no deploy is in flight."""
        await self._idle.wait()

    async def deploy_now(self) -> None:
        """Request a deploy and wait for it (and any trailing deploy)."""
        self.request()
        await self.wait_idle()

    async def run(self, channel: EventChannel[FileChange]) -> None:
        """
        Consume file changes until the channel closes, issuing one deploy
        request per debounced burst.
        """
        while True:
            try:
                burst = await collect_burst(channel, self.debounce)
            except ChannelClosed:
                break

            paths = sorted({change.path for change in burst})
            if len(paths) == 1:
                logger.info(f"File changed: {paths[0]}")
            else:
                logger.info(f"{len(paths)} files changed: {', '.join(paths)}")
            self.request()

        logger.debug("Deploy coordinator stopped consuming file changes")

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "in_flight": self.state.in_flight,
            "pending_trailing": self.state.pending_trailing,
            "deploy_count": self._deploy_count,
            "failure_count": self._failure_count,
        }
