"""
Rollwright Config - Configuration management.
"""

from rollwright.config.loader import get_config, load_config, reset_config, save_config
from rollwright.config.models import (
    AuditConfig,
    CoordinatorConfig,
    HealthConfig,
    LoggingConfig,
    OrchestratorConfig,
    PoolConfig,
    ResilienceConfig,
    RollwrightConfig,
)

__all__ = [
    "AuditConfig",
    "CoordinatorConfig",
    "HealthConfig",
    "LoggingConfig",
    "OrchestratorConfig",
    "PoolConfig",
    "ResilienceConfig",
    "RollwrightConfig",
    "get_config",
    "load_config",
    "reset_config",
    "save_config",
]
