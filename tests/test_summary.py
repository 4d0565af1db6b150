"""Tests for the rollout summary table."""

from __future__ import annotations

from rich.console import Console

from rollwright.core.types import ErrorKind, Phase, SessionStatus, Strategy
from rollwright.orchestration.coordinator import AggregateResult, TargetOutcome
from rollwright.ui.summary import ROLLWRIGHT_THEME, build_summary_table, render_summary


def sample_result() -> AggregateResult:
    return AggregateResult(
        outcomes=(
            TargetOutcome("a.example.com", SessionStatus.SUCCEEDED, duration=2.0),
            TargetOutcome(
                "b.example.com",
                SessionStatus.ROLLED_BACK,
                error="Verification of 'b.example.com' failed: retries_exhausted",
                failed_phase=Phase.VERIFY,
                error_kind=ErrorKind.PERMANENT,
                rollback_ran=True,
                rollback_succeeded=True,
                duration=4.0,
            ),
            TargetOutcome.skip("c.example.com", "'b.example.com' failed"),
        ),
        strategy=Strategy.SEQUENTIAL,
        run_id="run_test",
    )


class TestSummaryTable:
    """Tests for build_summary_table and render_summary."""

    def test_one_row_per_target(self) -> None:
        """Test the table lists every target."""
        table = build_summary_table(sample_result())

        assert table.row_count == 3
        assert table.title == "Rollout run_test"
        assert [c.header for c in table.columns][:2] == ["Target", "Status"]

    def test_render(self) -> None:
        """Test the rendered output shows outcomes and totals."""
        console = Console(theme=ROLLWRIGHT_THEME, record=True, width=200)

        render_summary(sample_result(), console=console)

        output = console.export_text()
        assert "a.example.com" in output
        assert "rolled-back" in output
        assert "verify" in output
        assert "1/3 succeeded" in output
        assert "1 skipped" in output

    def test_summary_average_excludes_skipped(self) -> None:
        """Test skipped targets do not drag the average duration."""
        assert sample_result().summary()["average_duration"] == 3.0
