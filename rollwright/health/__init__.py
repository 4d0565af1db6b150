"""
Rollwright Health - Post-deploy health verification.
"""

from rollwright.health.checks import HttpHealthPredicate, predicate_for
from rollwright.health.monitor import HealthAttempt, HealthMonitor, HealthOptions, HealthResult

__all__ = [
    "HealthAttempt",
    "HealthMonitor",
    "HealthOptions",
    "HealthResult",
    "HttpHealthPredicate",
    "predicate_for",
]
