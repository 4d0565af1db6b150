"""Tests for error classification."""

from __future__ import annotations

import asyncio

import pytest

from rollwright.core.classify import classify_error, is_retryable, recovery_suggestions
from rollwright.core.exceptions import (
    ArtifactSyntaxError,
    CircuitOpenError,
    CredentialError,
    NoRollbackPointError,
    PhaseTimeoutError,
    PoolExhaustedError,
    RateLimitError,
    RemoteCommandError,
    VerificationError,
)
from rollwright.core.types import ErrorKind


class TestClassifyError:
    """Tests for classify_error."""

    @pytest.mark.parametrize(
        "error, kind",
        [
            (RateLimitError(retry_after=2), ErrorKind.TRANSIENT),
            (RemoteCommandError("wrangler deploy", 1), ErrorKind.TRANSIENT),
            (PhaseTimeoutError("a", "deploy", 5), ErrorKind.TRANSIENT),
            (PoolExhaustedError("users-db", 1.0, 10), ErrorKind.CAPACITY),
            (CredentialError("ROLLWRIGHT_API_TOKEN"), ErrorKind.PERMANENT),
            (ArtifactSyntaxError("Unexpected token"), ErrorKind.PERMANENT),
            (VerificationError("a", "retries_exhausted"), ErrorKind.PERMANENT),
            (CircuitOpenError("a:deploy", 5, 30.0), ErrorKind.CIRCUIT_OPEN),
            (NoRollbackPointError("a"), ErrorKind.ROLLBACK),
        ],
    )
    def test_own_exceptions_by_type(self, error: Exception, kind: ErrorKind) -> None:
        """Test library exceptions are classified by their family."""
        assert classify_error(error) == kind

    def test_builtin_network_errors(self) -> None:
        """Test timeouts and connection errors are transient."""
        assert classify_error(asyncio.TimeoutError()) == ErrorKind.TRANSIENT
        assert classify_error(ConnectionResetError()) == ErrorKind.TRANSIENT

    @pytest.mark.parametrize(
        "message, kind",
        [
            ("fetch failed: ECONNREFUSED", ErrorKind.TRANSIENT),
            ("HTTP 503 Service Unavailable", ErrorKind.TRANSIENT),
            ("SyntaxError in worker.js", ErrorKind.PERMANENT),
            ("Unauthorized", ErrorKind.PERMANENT),
            ("pool exhausted", ErrorKind.CAPACITY),
            ("something odd", ErrorKind.UNKNOWN),
        ],
    )
    def test_foreign_exceptions_by_message(self, message: str, kind: ErrorKind) -> None:
        """Test foreign exceptions fall back to message patterns."""
        assert classify_error(RuntimeError(message)) == kind

    def test_permanent_patterns_win(self) -> None:
        """Test a message matching both families is permanent."""
        assert classify_error(RuntimeError("compile timeout")) == ErrorKind.PERMANENT


class TestRetryable:
    """Tests for is_retryable and recovery hints."""

    def test_retryable_kinds(self) -> None:
        """Test only permanent, rollback and open-circuit errors stop retries."""
        assert is_retryable(RuntimeError("ECONNRESET"))
        assert is_retryable(RuntimeError("something odd"))
        assert not is_retryable(CredentialError("token"))
        assert not is_retryable(CircuitOpenError("a", 5, 1.0))
        assert not is_retryable(NoRollbackPointError("a"))

    def test_suggestions_for_every_kind(self) -> None:
        """Test each kind has operator hints."""
        for kind in ErrorKind:
            assert recovery_suggestions(kind)
