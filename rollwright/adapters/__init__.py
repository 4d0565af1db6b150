"""
Rollwright Adapters - Standard implementations of the platform interfaces.
"""

from rollwright.adapters.control_plane import (
    HttpControlPlaneClient,
    parse_retry_after,
    raise_for_status,
)
from rollwright.adapters.invoker import SubprocessInvoker, extract_url, raise_for_result

__all__ = [
    "HttpControlPlaneClient",
    "SubprocessInvoker",
    "extract_url",
    "parse_retry_after",
    "raise_for_result",
    "raise_for_status",
]
