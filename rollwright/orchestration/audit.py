"""
Rollwright Orchestration - Audit log.

Keeps a sequence-numbered record of every session event of one
orchestration run. Subscribe ``AuditLog.record`` to orchestrators.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from rollwright.orchestration.session import SessionEvent, SessionEventType


@dataclass(frozen=True)
class AuditEntry:
    """A recorded session event."""

    sequence: int
    run_id: str
    event: SessionEvent

    def to_dict(self) -> dict[str, Any]:
        return {"sequence": self.sequence, "run_id": self.run_id, **self.event.to_dict()}

    def to_log_line(self) -> str:
        """Format as a log line."""
        phase = f" {self.event.phase.value}" if self.event.phase else ""
        status = f" -> {self.event.status}" if self.event.status else ""
        return f"#{self.sequence} [{self.event.event_type.value}] {self.event.target_id}{phase}{status}"


class AuditLog:
    """Audit trail of one orchestration run.

    Example:
        >>> audit = AuditLog()
        >>> orchestrator.subscribe(audit.record)
        >>> await orchestrator.run()
        >>> audit.entries(event_type=SessionEventType.ROLLBACK_STARTED)
    """

    def __init__(
        self,
        run_id: str | None = None,
        enabled: bool = True,
        directory: Path | str | None = None,
    ) -> None:
        """
        Initialize the audit log.

        Args:
            run_id: Identifier of the orchestration run (generated if omitted).
            enabled: Whether events are recorded.
            directory: Default directory for save().
        """
        self.run_id = run_id or f"run_{uuid.uuid4().hex[:12]}"
        self.enabled = enabled
        self.directory = Path(directory).expanduser() if directory else None
        self._entries: list[AuditEntry] = []

    def record(self, event: SessionEvent) -> AuditEntry | None:
        """Append an event; returns None when disabled."""
        if not self.enabled:
            return None
        entry = AuditEntry(sequence=len(self._entries) + 1, run_id=self.run_id, event=event)
        self._entries.append(entry)
        logger.debug(f"AUDIT: {entry.to_log_line()}")
        return entry

    def entries(
        self,
        event_type: SessionEventType | str | None = None,
        target_id: str | None = None,
    ) -> list[AuditEntry]:
        """
        Recorded entries, oldest first.

        Args:
            event_type: Only entries of this event type.
            target_id: Only entries of this target.
        """
        selected = self._entries
        if event_type is not None:
            wanted = SessionEventType(event_type)
            selected = [e for e in selected if e.event.event_type == wanted]
        if target_id is not None:
            selected = [e for e in selected if e.event.target_id == target_id]
        return list(selected)

    def __len__(self) -> int:
        return len(self._entries)

    def to_list(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    def save(self, path: Path | str | None = None) -> Path:
        """
        Write the log as JSON.

        Args:
            path: Output file; defaults to ``<directory>/<run_id>.json``.

        Returns:
            Path of the written file.
        """
        if path is None:
            if self.directory is None:
                raise ValueError("No audit directory configured and no path given")
            path = self.directory / f"{self.run_id}.json"
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_list(), indent=2, default=str))
        logger.debug(f"Audit log saved to {path}")
        return path
