"""Utility functions."""

from .logging import setup_logging, get_logger
from .report import format_plan_summary, format_fix_report

__all__ = [
    "setup_logging",
    "get_logger",
    "format_plan_summary",
    "format_fix_report",
]
