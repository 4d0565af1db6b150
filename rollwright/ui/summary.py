"""
Rollwright UI - Rollout summary rendering.

Rich table of per-target outcomes plus a totals line.
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from rollwright.core.types import SessionStatus
from rollwright.orchestration.coordinator import AggregateResult, TargetOutcome

ROLLWRIGHT_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "red bold",
        "success": "green",
        "muted": "dim",
    }
)

_STATUS_STYLE = {
    SessionStatus.SUCCEEDED: "[success]✅ succeeded[/success]",
    SessionStatus.FAILED: "[error]❌ failed[/error]",
    SessionStatus.ROLLED_BACK: "[warning]⏪ rolled-back[/warning]",
    SessionStatus.SKIPPED: "[muted]⏭️ skipped[/muted]",
    SessionStatus.PENDING: "[muted]pending[/muted]",
}


def _rollback_cell(outcome: TargetOutcome) -> str:
    if not outcome.rollback_ran:
        return "-"
    return "[success]ok[/success]" if outcome.rollback_succeeded else "[error]failed[/error]"


def _error_cell(outcome: TargetOutcome) -> str:
    text = outcome.error or outcome.skip_reason or ""
    return text[:60] + "..." if len(text) > 60 else text


def build_summary_table(result: AggregateResult, title: str | None = None) -> Table:
    """Build the per-target outcome table."""
    table = Table(title=title or f"Rollout {result.run_id}".strip(), show_header=True, header_style="bold")
    for header in ("Target", "Status", "Failed phase", "Error kind", "Rollback", "Duration", "Details"):
        table.add_column(header)

    for outcome in result.outcomes:
        table.add_row(
            outcome.target_id,
            _STATUS_STYLE.get(outcome.status, outcome.status.value),
            outcome.failed_phase.value if outcome.failed_phase else "-",
            outcome.error_kind.value if outcome.error_kind else "-",
            _rollback_cell(outcome),
            f"{outcome.duration:.1f}s" if not outcome.skipped else "-",
            _error_cell(outcome),
        )
    return table


def render_summary(result: AggregateResult, console: Console | None = None) -> None:
    """Print the outcome table and totals."""
    console = console or Console(theme=ROLLWRIGHT_THEME)
    console.print(build_summary_table(result))

    stats = result.summary()
    style = "success" if result.success else "error"
    console.print(
        f"[{style}]{stats['succeeded']}/{stats['total']} succeeded[/{style}] "
        f"[muted]({stats['failed']} failed, {stats['skipped']} skipped, "
        f"{stats['success_rate']:.0%} success rate, avg {stats['average_duration']:.1f}s)[/muted]"
    )
