"""
Control-plane client for a running backend.
"""

from local_backend.control.client import ControlPlaneClient, CLIENT_NAME

__all__ = [
    "ControlPlaneClient",
    "CLIENT_NAME",
]
