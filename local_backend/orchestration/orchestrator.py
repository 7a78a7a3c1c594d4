"""
Local backend orchestrator: the lifecycle owner that wires state identity,
credentials, binary provisioning, process supervision, the control-plane
client and the deploy coordinator together.

Startup runs once the host's dev server reports its listen address:

    1. reset      purge the state directory if requested
    2. prepare    load or create credentials, resolve the binary
    3. spawn      stop the previous backend, launch and health-check
    4. env        push environment variables (first failure is fatal)
    5. deploy     initial deploy
    6. on_ready   startup function calls, each failure isolated
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiohttp

from local_backend.binary import BinaryProvisioner
from local_backend.config import DevServerContext, OrchestratorConfig
from local_backend.control import ControlPlaneClient
from local_backend.credentials import CredentialManager, CredentialSet
from local_backend.errors import (
    BackendNotStarted,
    ControlPlaneError,
    OrchestratorError,
    StartupError,
)
from local_backend.orchestration.deploy_coordinator import DeployCoordinator
from local_backend.orchestration.events import (
    ChangeKind,
    FileChange,
    relative_path,
    should_watch,
)
from local_backend.orchestration.registry import BackendRegistry
from local_backend.state import StateIdentity, resolve_state_identity
from local_backend.supervisor import BackendHandle, BackendSupervisor, allocate_ports
from local_backend.utils.async_helpers import EventChannel
from local_backend.utils.logging_config import (
    LogContext,
    clear_context,
    set_context,
    set_run_id,
    set_stage,
)

logger = logging.getLogger(__name__)


class LocalBackendOrchestrator:
    """
    Runs a local backend for the lifetime of a dev server.

    Ports and the state identity are resolved at construction so the host
    can inject client-facing URLs before the backend is running.

    Example:
        orchestrator = LocalBackendOrchestrator(config, registry=registry)
        host_config.update(orchestrator.client_env())
        orchestrator.install_signal_handlers()
        orchestrator.on_server_listening(DevServerContext(port=5173))
        ...
        orchestrator.notify_file_change("convex/messages.ts")
        ...
        await orchestrator.shutdown()
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        registry: Optional[BackendRegistry] = None,
        provisioner: Optional[BinaryProvisioner] = None,
        credential_manager: Optional[CredentialManager] = None,
    ):
        self.config = config or OrchestratorConfig()
        self.registry = registry if registry is not None else BackendRegistry()
        self.provisioner = provisioner or BinaryProvisioner(self.config.binary)
        self.credential_manager = credential_manager or CredentialManager(
            self.config.instance_name
        )

        port, site_proxy_port = allocate_ports(self.config.port, self.config.site_proxy_port)
        self.handle = BackendHandle(port=port, site_proxy_port=site_proxy_port)

        self.identity: StateIdentity = resolve_state_identity(
            self.config.project_dir,
            self.config.state_id_suffix,
            timeout=self.config.vcs_timeout,
        )
        self.state_dir: Path = self.config.state_root / self.identity.name

        self.channel: EventChannel[FileChange] = EventChannel(self.config.watch.channel_size)
        self.credentials: Optional[CredentialSet] = None
        self.supervisor: Optional[BackendSupervisor] = None
        self.client: Optional[ControlPlaneClient] = None
        self.coordinator: Optional[DeployCoordinator] = None

        self._start_task: Optional[asyncio.Task] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._shutdown_requested = asyncio.Event()
        self._started = False
        self._signal_loop: Optional[asyncio.AbstractEventLoop] = None

    # ------------------------------------------------------------------
    # Host-facing surface
    # ------------------------------------------------------------------

    @property
    def backend_url(self) -> str:
        return f"http://localhost:{self.handle.port}"

    @property
    def site_url(self) -> str:
        return f"http://localhost:{self.handle.site_proxy_port}"

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def client_env(self) -> Dict[str, str]:
        """Values the host injects into its client build configuration."""
        prefix = self.config.client_env_prefix
        return {
            f"{prefix}CONVEX_URL": self.backend_url,
            f"{prefix}CONVEX_SITE_URL": self.site_url,
        }

    def on_server_listening(self, context: Optional[DevServerContext] = None) -> asyncio.Task:
        """Schedule startup once the dev server knows its listen address."""
        if self._start_task is None:
            self._start_task = asyncio.create_task(self._start_in_background(context))
        return self._start_task

    async def _start_in_background(self, context: Optional[DevServerContext]) -> bool:
        try:
            await self.start(context)
        except OrchestratorError:
            # Already logged by start(); the dev server keeps running
            return False
        return True

    def notify_file_change(
        self,
        path: Union[str, Path],
        kind: ChangeKind = ChangeKind.MODIFIED,
    ) -> bool:
        """
        Feed a file-change notification from the host's watcher.

        Returns True if the change matched the watch patterns and was queued.
        """
        rel = relative_path(path, self.config.project_dir)
        if not should_watch(rel, self.config.watch_patterns, self.config.ignore_patterns):
            return False
        return self.channel.put_nowait(FileChange(path=rel, kind=kind))

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _provided_credentials(self) -> Optional[CredentialSet]:
        if self.config.instance_secret and self.config.admin_key:
            return CredentialSet(
                instance_name=self.config.instance_name,
                instance_secret=self.config.instance_secret,
                admin_key=self.config.admin_key,
            )
        return None

    async def start(self, context: Optional[DevServerContext] = None) -> None:
        """
        Run the full startup sequence.

        Raises:
            OrchestratorError: credential, binary, spawn, health-check or
                environment failures. Anything else raised while preparing
                is wrapped in StartupError. Deploy and on_ready failures
                are logged instead.
        """
        if self._started:
            return
        self._started = True
        context = context or DevServerContext()
        set_run_id(self.identity.name)
        set_context(backend_url=self.backend_url)

        try:
            await self._prepare_and_spawn()

            set_stage("env")
            await self._push_env_vars(context)
        except OrchestratorError as e:
            logger.error(f"Backend initialization failed: {e}")
            raise
        except Exception as e:
            logger.exception(f"Backend initialization failed: {e}")
            raise StartupError(f"Backend initialization failed: {e}") from e
        finally:
            set_stage(None)

        self.coordinator = DeployCoordinator(self.supervisor.deploy, self.config.watch.debounce)
        self._consumer_task = asyncio.create_task(self.coordinator.run(self.channel))

        set_stage("deploy")
        await self.coordinator.deploy_now()

        set_stage("on_ready")
        await self._run_on_ready()
        set_stage(None)

        self._ready.set()
        logger.info(f"Backend ready at {self.backend_url}")

    async def _prepare_and_spawn(self) -> None:
        state_exists = self.state_dir.exists()

        if self.config.reset and state_exists:
            set_stage("reset")
            logger.info("Resetting backend state...")
            shutil.rmtree(self.state_dir)

        set_stage("prepare")
        self.credentials = self.credential_manager.load_or_create(
            self.state_dir,
            provided=self._provided_credentials(),
            reset=self.config.reset,
        )
        binary_path = await self.provisioner.resolve_binary()

        set_stage("spawn")
        self.registry.kill_previous()
        self.supervisor = BackendSupervisor(
            self.config, self.credentials, binary_path, handle=self.handle
        )

        resume = state_exists and not self.config.reset
        logger.info(
            f"Resuming backend from existing state ({self.identity})..."
            if resume
            else f"Starting fresh backend ({self.identity})..."
        )

        try:
            await self.supervisor.spawn(self.state_dir)
        finally:
            if self.handle.process is not None:
                self.registry.register(self.handle)

        self.client = ControlPlaneClient(self.handle, self.credentials.admin_key)

    async def _push_env_vars(self, context: DevServerContext) -> None:
        source = self.config.env_vars
        if source is None:
            return

        try:
            values = await source.evaluate(context)
        except Exception as e:
            raise StartupError(f"Failed to compute environment variables: {e}") from e

        for name, value in values.items():
            try:
                await self.client.set_env(name, value)
            except (ControlPlaneError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise StartupError(f"Failed to set environment variable {name}: {e}") from e
            logger.info(f"Set environment variable: {name}")

    async def _run_on_ready(self) -> List[Any]:
        calls = self.config.on_ready
        results: List[Any] = []
        if not calls:
            return results

        logger.info(f"Running {len(calls)} startup function(s)...")
        for call in calls:
            with LogContext(function=call.name):
                logger.info(f"Running {call.name}...")
                try:
                    results.append(await self.client.run_function(call.name, call.args))
                except Exception as e:
                    results.append(None)
                    logger.error(f"Failed to run {call.name}: {e}")
                    continue
                logger.info(f"{call.name} completed")
        return results

    # ------------------------------------------------------------------
    # Control plane passthrough
    # ------------------------------------------------------------------

    async def run_function(self, name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        if self.client is None:
            raise BackendNotStarted("Backend not started")
        return await self.client.run_function(name, args)

    async def set_env(self, name: str, value: str) -> None:
        if self.client is None:
            raise BackendNotStarted("Backend not started")
        await self.client.set_env(name, value)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Register SIGINT/SIGTERM handlers once for this instance."""
        if self._signal_loop is not None:
            return

        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handlers not supported on this loop ({sig.name})")
                return
        self._signal_loop = loop
        self.registry.claim_signals(self)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down...")
        asyncio.ensure_future(self.shutdown())

    def _remove_signal_handlers(self) -> None:
        if self._signal_loop is None:
            return
        # A newer instance on the same registry has replaced our handlers
        if self.registry.owns_signals(self):
            for sig in (signal.SIGINT, signal.SIGTERM):
                self._signal_loop.remove_signal_handler(sig)
            self.registry.release_signals(self)
        self._signal_loop = None

    async def shutdown(self, purge_state: bool = False) -> None:
        """Stop consuming changes and stop the backend. Idempotent."""
        self._shutdown_requested.set()
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown(purge_state))
        await asyncio.shield(self._shutdown_task)

    async def wait_for_shutdown(self) -> None:
        """Wait until shutdown() has been requested (e.g. by a signal)."""
        await self._shutdown_requested.wait()

    async def _shutdown(self, purge_state: bool) -> None:
        self.channel.close()

        if self._start_task is not None and not self._start_task.done():
            self._start_task.cancel()
            await asyncio.gather(self._start_task, return_exceptions=True)

        if self._consumer_task is not None:
            await asyncio.gather(self._consumer_task, return_exceptions=True)

        if self.coordinator is not None and self.coordinator.in_flight:
            try:
                await asyncio.wait_for(
                    self.coordinator.wait_idle(), timeout=self.config.stop_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Deploy still running at shutdown")

        if self.client is not None:
            await self.client.close()

        try:
            if self.supervisor is not None:
                await self.supervisor.stop(purge_state=purge_state)
        finally:
            self.registry.unregister(self.handle)
            self._remove_signal_handlers()
            clear_context()
