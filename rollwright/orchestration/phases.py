"""
Rollwright Orchestration - Standard phase handlers.

Ready-made units of work for a typical edge-worker deployment:
- Initialize: required settings and credentials are present
- Validate: required remote resources exist on the control plane
- Prepare: database migrations run as one best-effort transaction
- Deploy: the deployment tool publishes the target and prints its URL
- Monitor: post-deploy hooks (alerting, dashboards)

Verify is driven by the orchestrator's health predicate.
"""

from __future__ import annotations

import inspect
import os
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from loguru import logger

from rollwright.adapters.invoker import extract_url, raise_for_result
from rollwright.core.exceptions import ConfigurationError, CredentialError, ValidationError
from rollwright.core.protocols import ControlPlaneClient, DeploymentInvoker
from rollwright.core.types import Phase
from rollwright.orchestration.orchestrator import PhaseContext, PhaseHandler
from rollwright.pool.resource_pool import ResourcePool

MonitorHook = Callable[[PhaseContext], Awaitable[Any] | Any]


class StandardPhases:
    """
    Standard handlers built on the platform collaborators.

    Example:
        phases = StandardPhases(
            invoker=SubprocessInvoker("wrangler"),
            control_plane=api,
            required_credentials=["ROLLWRIGHT_API_TOKEN"],
            required_resources={"database": "accounts/{account_id}/d1/database/{database}"},
        )
        orchestrator = PhaseOrchestrator(target, executor, rollbacks, handlers=phases.handlers())
    """

    def __init__(
        self,
        invoker: DeploymentInvoker | None = None,
        control_plane: ControlPlaneClient | None = None,
        pool: ResourcePool | None = None,
        required_settings: Sequence[str] = (),
        required_credentials: Sequence[str] = (),
        required_resources: Mapping[str, str] | None = None,
        migrations: Sequence[str] = (),
        deploy_command: str = "deploy",
        deploy_args: Sequence[str] = (),
        monitor_hooks: Sequence[MonitorHook] = (),
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """
        Initialize handlers.

        Args:
            invoker: Deployment tool wrapper (Deploy)
            control_plane: REST client (Validate)
            pool: Data-store pool (Prepare)
            required_settings: Target settings that must be non-empty
            required_credentials: Environment variables that must be set
            required_resources: Name -> control-plane path template; formatted with
                target_id, environment, service_name, database and the target settings
            migrations: Statements applied to the target database during Prepare
            deploy_command: Tool subcommand for Deploy
            deploy_args: Extra arguments for Deploy
            monitor_hooks: Callables run during Monitor
            environ: Environment used for credential checks (default: os.environ)
        """
        self.invoker = invoker
        self.control_plane = control_plane
        self.pool = pool
        self.required_settings = list(required_settings)
        self.required_credentials = list(required_credentials)
        self.required_resources = dict(required_resources or {})
        self.migrations = list(migrations)
        self.deploy_command = deploy_command
        self.deploy_args = list(deploy_args)
        self.monitor_hooks = list(monitor_hooks)
        self.environ = environ

    async def initialize(self, ctx: PhaseContext) -> dict[str, Any]:
        """Check required settings and credentials."""
        target = ctx.target
        missing = [key for key in self.required_settings if not target.settings.get(key)]
        if missing:
            raise ConfigurationError(
                f"Missing required settings for '{target.target_id}': {', '.join(missing)}",
                {"target_id": target.target_id, "missing": missing},
            )

        environ = self.environ if self.environ is not None else os.environ
        for name in self.required_credentials:
            if not environ.get(name):
                raise CredentialError(name)

        return {
            "settings_checked": list(self.required_settings),
            "credentials_checked": list(self.required_credentials),
        }

    def _format_path(self, template: str, ctx: PhaseContext) -> str:
        target = ctx.target
        fields = {
            **target.settings,
            "target_id": target.target_id,
            "environment": target.environment.value,
            "service_name": target.service_name or target.target_id,
            "database": target.database or "",
        }
        try:
            return template.format(**fields)
        except KeyError as e:
            raise ConfigurationError(
                f"Resource path '{template}' needs setting {e} for '{target.target_id}'"
            ) from e

    async def _exists(self, path: str) -> bool:
        if self.control_plane is None:
            raise ConfigurationError(f"Cannot look up '{path}' without a control-plane client")
        resource_exists = getattr(self.control_plane, "resource_exists", None)
        if resource_exists is not None:
            return await resource_exists(path)
        response = await self.control_plane.request("GET", path)
        return response.ok

    async def validate(self, ctx: PhaseContext) -> dict[str, Any]:
        """Check that every required remote resource exists."""
        if not self.required_resources:
            return {"resources": {}}
        if self.control_plane is None:
            raise ConfigurationError("Required resources configured without a control-plane client")

        found: dict[str, bool] = {}
        for name, template in self.required_resources.items():
            found[name] = await self._exists(self._format_path(template, ctx))

        missing = [name for name, exists in found.items() if not exists]
        if missing:
            raise ValidationError(
                f"Missing remote resources for '{ctx.target.target_id}': {', '.join(missing)}",
                {"target_id": ctx.target.target_id, "missing": missing},
            )
        return {"resources": found}

    async def prepare(self, ctx: PhaseContext) -> dict[str, Any]:
        """Apply migrations to the target database."""
        database = ctx.target.database
        if self.pool is None or not self.migrations or not database:
            return {"migrations_applied": 0}

        result = await self.pool.execute_transaction(database, self.migrations)
        logger.info(f"Applied {len(result.results)} migration(s) to '{database}'")
        return {
            "database": database,
            "migrations_applied": len(result.results),
            "transaction_id": result.transaction_id,
        }

    async def deploy(self, ctx: PhaseContext) -> dict[str, Any]:
        """Publish the target with the deployment tool."""
        if self.invoker is None:
            raise ConfigurationError("No deployment invoker configured")

        target = ctx.target
        args = [*self.deploy_args, "--env", target.environment.value]
        if target.service_name:
            args += ["--name", target.service_name]

        result = raise_for_result(await self.invoker.invoke(self.deploy_command, args))
        url = extract_url(result.stdout)
        if url is None:
            logger.warning(f"No deployment URL in tool output for '{target.target_id}'")
        return {"url": url, "duration_ms": result.duration_ms}

    async def monitor(self, ctx: PhaseContext) -> dict[str, Any]:
        """Run post-deploy hooks in order."""
        for hook in self.monitor_hooks:
            outcome = hook(ctx)
            if inspect.isawaitable(outcome):
                await outcome
        return {"hooks_run": len(self.monitor_hooks)}

    def handlers(self) -> dict[Phase, PhaseHandler]:
        return {
            Phase.INITIALIZE: self.initialize,
            Phase.VALIDATE: self.validate,
            Phase.PREPARE: self.prepare,
            Phase.DEPLOY: self.deploy,
            Phase.MONITOR: self.monitor,
        }
