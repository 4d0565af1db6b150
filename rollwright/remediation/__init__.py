"""
Rollwright Remediation - Recovery from bad deployments.
"""

from rollwright.remediation.rollback import RollbackManager, RollbackPoint, RollbackResult

__all__ = ["RollbackManager", "RollbackPoint", "RollbackResult"]
