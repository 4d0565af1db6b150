"""
Rollwright UI - Terminal rendering.
"""

from rollwright.ui.summary import build_summary_table, render_summary

__all__ = ["build_summary_table", "render_summary"]
