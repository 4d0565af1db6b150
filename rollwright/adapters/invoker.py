"""
Rollwright Adapters - Deployment CLI invocation.

Runs the platform's deployment tool as a subprocess and classifies its
failures: non-zero exits and I/O errors are transient, artifact and
validation errors reported by the tool are permanent.
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from collections.abc import Mapping
from pathlib import Path

from loguru import logger

from rollwright.core.exceptions import (
    ArtifactSyntaxError,
    ConfigurationError,
    CredentialError,
    RemoteCommandError,
    TransientError,
)
from rollwright.core.logging import log_prefix, redact
from rollwright.core.types import InvocationResult

# Tool output that retrying cannot fix
_SYNTAX_PATTERNS = re.compile(
    r"syntaxerror|syntax error|build failed|compil(e|ation) error|module not found|"
    r"could not resolve|unexpected token",
    re.IGNORECASE,
)
_VALIDATION_PATTERNS = re.compile(
    r"invalid configuration|validation error|missing required|unknown field",
    re.IGNORECASE,
)
_AUTH_PATTERNS = re.compile(r"not authenticated|authentication error|unauthorized", re.IGNORECASE)

_URL_PATTERN = re.compile(r"https://[^\s'\"<>]+")


class SubprocessInvoker:
    """
    DeploymentInvoker backed by an asyncio subprocess.

    Example:
        invoker = SubprocessInvoker("wrangler")
        result = await invoker.invoke("deploy", ["--env", "production"])
    """

    def __init__(
        self,
        executable: str,
        timeout: float = 300.0,
        cwd: str | Path | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        if not executable or not executable.strip():
            raise ValueError("executable cannot be empty")
        self.executable = executable
        self.timeout = timeout
        self.cwd = Path(cwd) if cwd else None
        self.base_env = dict(base_env or {})

    async def invoke(
        self, command: str, args: list[str], env: dict[str, str] | None = None
    ) -> InvocationResult:
        """
        Run ``<executable> <command> <args...>``.

        Returns:
            InvocationResult, including non-zero exits.

        Raises:
            ConfigurationError: The executable does not exist.
            TransientError: The process could not start or timed out.
        """
        argv = [self.executable, command, *args]
        display = redact(" ".join(argv))
        full_env = {**os.environ, **self.base_env, **(env or {})}

        logger.debug(f"{log_prefix('🖥️')} Executing: {display[:120]}")
        start = time.time()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=full_env,
            )
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"Deployment tool '{self.executable}' not found", {"command": display}
            ) from e
        except OSError as e:
            raise TransientError(f"Failed to start '{self.executable}': {e}", {"command": display}) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError as e:
            logger.warning(f"{log_prefix('⏱️')} Command timed out after {self.timeout}s: {display[:80]}")
            raise TransientError(
                f"Command timed out after {self.timeout}s", {"command": display}
            ) from e
        finally:
            # Kill on timeout or cancellation
            if process.returncode is None:
                process.kill()
                await process.wait()

        return InvocationResult(
            exit_code=process.returncode or 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            command=display,
            duration_ms=(time.time() - start) * 1000,
        )


def raise_for_result(result: InvocationResult) -> InvocationResult:
    """
    Raise the matching error for a failed invocation.

    Args:
        result: Result of DeploymentInvoker.invoke

    Returns:
        The result unchanged when it succeeded.

    Raises:
        ArtifactSyntaxError: The tool rejected the built artifact.
        ConfigurationError: The tool rejected the configuration.
        CredentialError: The tool is not authenticated.
        RemoteCommandError: Any other non-zero exit (retryable).
    """
    if result.success:
        return result

    output = result.output
    command = result.command or "deployment tool"
    if _SYNTAX_PATTERNS.search(output):
        raise ArtifactSyntaxError(
            f"Artifact rejected by '{command}'", {"exit_code": result.exit_code, "output": output[-500:]}
        )
    if _VALIDATION_PATTERNS.search(output):
        raise ConfigurationError(
            f"Configuration rejected by '{command}'", {"exit_code": result.exit_code, "output": output[-500:]}
        )
    if _AUTH_PATTERNS.search(output):
        raise CredentialError("deployment tool", "rejected")
    raise RemoteCommandError(command, result.exit_code, result.stderr[-500:])


def extract_url(output: str) -> str | None:
    """First https URL printed by the deployment tool."""
    match = _URL_PATTERN.search(output)
    return match.group(0).rstrip(".,)") if match else None
