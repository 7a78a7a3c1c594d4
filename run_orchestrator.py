#!/usr/bin/env python3
"""
Local Backend Orchestrator - standalone host
============================================

Runs a local Convex backend for a project directory without a build-tool
host: watches the functions directory, redeploys on change, and stops the
backend on SIGINT/SIGTERM.

RUN: python3 run_orchestrator.py --project-dir ./my-app

    ┌──────────────┐  file changes   ┌──────────────┐   deploy   ┌─────────┐
    │ SourceWatcher│ ──────────────► │ Orchestrator │ ─────────► │ backend │
    └──────────────┘   (channel)     └──────────────┘  env/funcs └─────────┘
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from local_backend import __version__
from local_backend.config import DevServerContext, FunctionCall, StaticEnv, load_config
from local_backend.errors import OrchestratorError
from local_backend.orchestration import (
    BackendRegistry,
    LocalBackendOrchestrator,
    SourceWatcher,
)
from local_backend.utils.logging_config import LoggingConfig, get_logger, setup_logging

logger = get_logger("local_backend.host")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a local Convex backend with automatic redeploys",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 run_orchestrator.py                          # Current directory
  python3 run_orchestrator.py --config backend.yaml    # YAML config
  python3 run_orchestrator.py --reset                  # Fresh state
  python3 run_orchestrator.py --on-ready seed:default  # Seed after deploy
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Config
    parser.add_argument("--config", type=Path, help="YAML config file")
    parser.add_argument("--project-dir", type=Path, help="Project directory (default: cwd)")
    parser.add_argument("--functions-dir", help="Functions directory relative to project")
    parser.add_argument("--instance-name", help="Backend instance name")
    parser.add_argument("--suffix", dest="state_id_suffix", help="Extra state id suffix")
    parser.add_argument("--reset", action="store_true", default=None, help="Discard existing backend state")

    # Ports
    parser.add_argument("--port", type=int, help="Backend API port")
    parser.add_argument("--site-proxy-port", type=int, help="Backend site proxy port")

    # Startup
    parser.add_argument("--env", action="append", default=[], metavar="NAME=VALUE",
                        help="Environment variable to set on the backend (repeatable)")
    parser.add_argument("--on-ready", action="append", default=[], metavar="FUNCTION",
                        help="Function to run after the initial deploy (repeatable)")
    parser.add_argument("--dev-port", type=int, default=5173,
                        help="Dev server port passed to computed env vars")
    parser.add_argument("--no-watch", action="store_true", help="Do not redeploy on changes")
    parser.add_argument("--purge", action="store_true", help="Remove backend state on exit")

    # Logging
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-format", choices=["rich", "json"])
    parser.add_argument("--log-file", type=Path, help="Log file path")
    return parser


def parse_env_pairs(pairs) -> dict:
    env = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Expected NAME=VALUE, got {pair!r}")
        env[name] = value
    return env


async def main() -> int:
    """Main entry point."""
    args = build_parser().parse_args()

    logging_config = LoggingConfig()
    if args.log_level:
        logging_config.level = args.log_level
    if args.log_format:
        logging_config.format = args.log_format
    if args.log_file:
        logging_config.log_file = args.log_file
    setup_logging(logging_config)

    try:
        config = load_config(
            args.config,
            project_dir=args.project_dir,
            functions_dir=args.functions_dir,
            instance_name=args.instance_name,
            state_id_suffix=args.state_id_suffix,
            reset=args.reset,
            port=args.port,
            site_proxy_port=args.site_proxy_port,
        )
        env = parse_env_pairs(args.env)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if env:
        config.env_vars = StaticEnv(env)
    if args.on_ready:
        config.on_ready = [FunctionCall(name=name) for name in args.on_ready]

    logger.debug(f"Configuration: {json.dumps(config.to_dict(), default=str)}")

    orchestrator = LocalBackendOrchestrator(config, registry=BackendRegistry())
    for name, value in orchestrator.client_env().items():
        logger.info(f"{name}={value}")

    loop = asyncio.get_running_loop()
    orchestrator.install_signal_handlers(loop)

    watcher = None
    if not args.no_watch:
        watcher = SourceWatcher(
            config.project_dir / config.functions_dir,
            orchestrator.notify_file_change,
        )
        watcher.start(loop)

    exit_code = 0
    try:
        await orchestrator.start(DevServerContext(port=args.dev_port))
        await orchestrator.wait_for_shutdown()
    except OrchestratorError:
        exit_code = 1
    finally:
        if watcher is not None:
            watcher.stop()
        await orchestrator.shutdown(purge_state=args.purge)

    return exit_code


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
