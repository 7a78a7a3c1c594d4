"""
Port allocation for the backend's API and site proxy listeners.
"""

from __future__ import annotations

import logging
import random
import socket
import sys
from typing import Iterable, Optional, Set, Tuple

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"
PROBE_BASE_PORT = 3210
PROBE_RANGE = 10000
MAX_ATTEMPTS = 100


def is_port_free(port: int, host: str = LOOPBACK) -> bool:
    """Check whether a TCP port can be bound on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def ephemeral_port(host: str = LOOPBACK) -> int:
    """Ask the OS for a free port from its ephemeral range."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def probe_port(start: int, exclude: Iterable[int] = (), max_attempts: int = MAX_ATTEMPTS) -> int:
    """Return the first free port at or after ``start``."""
    excluded = set(exclude)
    for port in range(start, start + max_attempts):
        if port in excluded or port > 65535:
            continue
        if is_port_free(port):
            return port
    raise RuntimeError(f"Could not find an available port after {max_attempts} attempts")


def _pick(exclude: Set[int], use_probing: bool, start: int) -> int:
    for _ in range(MAX_ATTEMPTS):
        port = probe_port(start, exclude) if use_probing else ephemeral_port()
        if port not in exclude:
            return port
    raise RuntimeError("Could not allocate a distinct port")


def allocate_ports(
    port: Optional[int] = None,
    site_proxy_port: Optional[int] = None,
    use_probing: Optional[bool] = None,
) -> Tuple[int, int]:
    """
    Allocate two distinct ports for the backend API and site proxy.

    Fixed ports are returned unchanged. Otherwise POSIX systems sample the
    OS ephemeral range; Windows probes upward from a random port in
    [3210, 13210), since binding port 0 there may hand out excluded ranges.

    Args:
        port: Fixed API port
        site_proxy_port: Fixed site proxy port
        use_probing: Force probing (default: Windows only)

    Returns:
        (port, site_proxy_port)
    """
    if use_probing is None:
        use_probing = sys.platform == "win32"

    if port is not None and site_proxy_port is not None and port == site_proxy_port:
        raise ValueError(f"port and site_proxy_port must differ (both {port})")

    start = PROBE_BASE_PORT + random.randrange(PROBE_RANGE)

    if port is None:
        exclude = {site_proxy_port} if site_proxy_port is not None else set()
        port = _pick(exclude, use_probing, start)
    if site_proxy_port is None:
        site_proxy_port = _pick({port}, use_probing, port + 1)

    logger.info(f"Using ports: backend={port}, siteProxy={site_proxy_port}")
    return port, site_proxy_port
