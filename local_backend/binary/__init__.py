"""
Backend binary provisioning.
"""

from local_backend.binary.provisioner import (
    BinaryProvisioner,
    ReleaseAsset,
    select_asset,
)

__all__ = [
    "BinaryProvisioner",
    "ReleaseAsset",
    "select_asset",
]
