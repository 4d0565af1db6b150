"""
Rollwright - Resilient deployment lifecycle orchestration.

Drives targets through Initialize, Validate, Prepare, Deploy, Verify and
Monitor with circuit breakers, retries, health verification and rollback,
and rolls out many targets in parallel or in sequence.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("rollwright")
except PackageNotFoundError:
    # Package not installed, fallback to pyproject.toml
    __version__ = "0.1.0"

__author__ = "Rollwright Contributors"
