"""
Backend process supervision.

Lifecycle:
    NOT_STARTED -> STARTING -> RUNNING -> STOPPING -> STOPPED

A failed health check returns the handle to NOT_STARTED and leaves the child
running; the caller decides whether to stop it.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

import aiohttp
import psutil

from local_backend.config import OrchestratorConfig
from local_backend.credentials import CredentialSet
from local_backend.errors import (
    BackendNotStarted,
    DeployFailed,
    HealthCheckTimeout,
    ProcessStartFailed,
)
from local_backend.supervisor.ports import LOOPBACK, allocate_ports
from local_backend.utils.async_helpers import backoff_delays
from local_backend.utils.logging_config import log_duration

logger = logging.getLogger(__name__)

STORAGE_DIRNAME = "convex_local_storage"
SQLITE_FILENAME = "convex_local_backend.sqlite3"


class BackendStatus(Enum):
    """Backend process lifecycle status."""
    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class BackendHandle:
    """Live state of one backend process. Mutated only by BackendSupervisor."""
    port: Optional[int] = None
    site_proxy_port: Optional[int] = None
    process: Optional[subprocess.Popen] = None
    backend_dir: Optional[Path] = None
    status: BackendStatus = BackendStatus.NOT_STARTED

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def url(self) -> str:
        if self.port is None:
            raise BackendNotStarted("Backend not started")
        return f"http://{LOOPBACK}:{self.port}"


def kill_pid(pid: int, timeout: float = 5.0) -> bool:
    """
    Forcefully kill a process by pid.

    Returns True if the process was killed, False if it was already gone or
    could not be signalled.
    """
    try:
        proc = psutil.Process(pid)
        proc.kill()
        proc.wait(timeout=timeout)
    except psutil.NoSuchProcess:
        return False
    except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
        logger.warning(f"Failed to kill process {pid}: {e}")
        return False
    return True


class BackendSupervisor:
    """
    Spawns, health-checks and stops one backend process, and runs deploys
    against it.

    Example:
        supervisor = BackendSupervisor(config, credentials, binary_path)
        await supervisor.spawn(state_dir)
        await supervisor.deploy()
        await supervisor.stop()
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        credentials: CredentialSet,
        binary_path: Path,
        handle: Optional[BackendHandle] = None,
    ):
        self.config = config
        self.credentials = credentials
        self.binary_path = Path(binary_path)
        self.handle = handle or BackendHandle(
            port=config.port,
            site_proxy_port=config.site_proxy_port,
        )

    @property
    def status(self) -> BackendStatus:
        return self.handle.status

    def build_command(self, backend_dir: Path) -> List[str]:
        return [
            str(self.binary_path),
            "--port", str(self.handle.port),
            "--site-proxy-port", str(self.handle.site_proxy_port),
            "--instance-name", self.credentials.instance_name,
            "--instance-secret", self.credentials.instance_secret,
            "--local-storage", str(backend_dir / STORAGE_DIRNAME),
            str(backend_dir / SQLITE_FILENAME),
        ]

    async def spawn(self, backend_dir: Path) -> None:
        """
        Launch the backend and wait until its health endpoint answers.

        Raises:
            ProcessStartFailed: the binary could not be launched, exited
                early, or has no pid
            HealthCheckTimeout: the backend was not ready before the deadline
        """
        backend_dir = Path(backend_dir)
        (backend_dir / STORAGE_DIRNAME).mkdir(parents=True, exist_ok=True)

        if self.handle.port is None or self.handle.site_proxy_port is None:
            self.handle.port, self.handle.site_proxy_port = allocate_ports(
                self.handle.port, self.handle.site_proxy_port
            )

        output = None if self.config.backend_output else subprocess.DEVNULL
        cmd = self.build_command(backend_dir)

        try:
            process = subprocess.Popen(
                cmd,
                cwd=str(backend_dir),
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=output,
            )
        except OSError as e:
            raise ProcessStartFailed(f"Failed to launch {self.binary_path}: {e}") from e

        self.handle.process = process
        self.handle.backend_dir = backend_dir
        self.handle.status = BackendStatus.STARTING
        logger.debug(f"Backend process {process.pid} started on port {self.handle.port}")

        try:
            await self.wait_for_ready(self.config.health_check_timeout)
        except (HealthCheckTimeout, ProcessStartFailed):
            self.handle.status = BackendStatus.NOT_STARTED
            raise

        if not self.handle.pid:
            self.handle.status = BackendStatus.NOT_STARTED
            raise ProcessStartFailed("Backend process failed to start - no pid assigned")

        self.handle.status = BackendStatus.RUNNING
        logger.info(f"[OK] Backend running at {self.handle.url} (pid {self.handle.pid})")

    async def wait_for_ready(self, timeout: float) -> None:
        """Poll GET /version with exponential backoff until 2xx/3xx."""
        url = f"{self.handle.url}/version"
        deadline = time.monotonic() + timeout
        delays = backoff_delays(deadline)

        async with aiohttp.ClientSession() as session:
            while True:
                if await self._probe(session, url, deadline):
                    return

                process = self.handle.process
                if process is not None and process.poll() is not None:
                    raise ProcessStartFailed(
                        f"Backend exited with code {process.returncode} before becoming ready"
                    )

                delay = next(delays, None)
                if delay is None:
                    raise HealthCheckTimeout(url, timeout)
                await asyncio.sleep(delay)

    @staticmethod
    async def _probe(session: aiohttp.ClientSession, url: str, deadline: float) -> bool:
        remaining = max(deadline - time.monotonic(), 0.05)
        try:
            async with session.get(
                url,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=min(remaining, 2.0)),
            ) as resp:
                return 200 <= resp.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    async def stop(self, purge_state: bool = False) -> None:
        """
        Stop the backend process. Safe to call more than once.

        Signal failures are logged. When ``purge_state`` is set the backend
        directory is removed and removal errors propagate.
        """
        process = self.handle.process

        if process is not None and self.handle.status is not BackendStatus.STOPPED:
            self.handle.status = BackendStatus.STOPPING
            logger.info("Stopping backend...")
            await self._terminate(process)
            logger.info("[OK] Backend stopped")

        self.handle.status = BackendStatus.STOPPED

        backend_dir = self.handle.backend_dir
        if purge_state and backend_dir is not None and backend_dir.exists():
            logger.info("Cleaning up backend files...")
            shutil.rmtree(backend_dir)

    async def _terminate(self, process: subprocess.Popen) -> None:
        try:
            process.terminate()
        except OSError as e:
            logger.warning(f"Failed to terminate backend gracefully: {e}")
            return

        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.run_in_executor(None, process.wait),
                timeout=self.config.stop_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Backend did not exit within {self.config.stop_timeout:.1f}s, killing")
            try:
                process.kill()
            except OSError as e:
                logger.warning(f"Failed to kill backend: {e}")
                return
            await loop.run_in_executor(None, process.wait)

    @log_duration(logger, message="Deploy")
    async def deploy(self) -> str:
        """
        Push the project's functions to the running backend.

        Returns:
            Combined stdout and stderr of the deploy command

        Raises:
            BackendNotStarted: no port assigned yet
            DeployFailed: spawn failure, timeout, or non-zero exit
        """
        if self.handle.port is None:
            raise BackendNotStarted("Backend not started")

        cmd = [
            *self.config.deploy_command,
            "--admin-key", self.credentials.admin_key,
            "--url", self.handle.url,
        ]

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.config.project_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise DeployFailed(f"Failed to spawn deploy command: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.config.deploy_timeout
            )
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                # Exited between the timeout and the kill
                pass
            stdout, stderr = await proc.communicate()
            raise DeployFailed(
                f"Deploy timed out after {self.config.deploy_timeout:.0f}s",
                output=_decode(stdout, stderr),
            ) from None

        output = _decode(stdout, stderr)
        if proc.returncode != 0:
            raise DeployFailed(
                f"Failed to deploy (exit code {proc.returncode})",
                output=output,
                exit_code=proc.returncode,
            )
        return output


def _decode(stdout: Optional[bytes], stderr: Optional[bytes]) -> str:
    return (stdout or b"").decode(errors="replace") + (stderr or b"").decode(errors="replace")
