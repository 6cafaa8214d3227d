"""Data models for issue remediation."""

from .issue import (
    DEFAULT_EFFORT_MINUTES,
    Severity,
    IssueType,
    Issue,
    Facets,
    parse_effort,
)
from .plan import Plan, Selection
from .fix import (
    FixState,
    AttemptOutcome,
    UsageCounters,
    FixAttempt,
    FixResult,
    FixReport,
)

__all__ = [
    "DEFAULT_EFFORT_MINUTES",
    "Severity",
    "IssueType",
    "Issue",
    "Facets",
    "parse_effort",
    "Plan",
    "Selection",
    "FixState",
    "AttemptOutcome",
    "UsageCounters",
    "FixAttempt",
    "FixResult",
    "FixReport",
]
