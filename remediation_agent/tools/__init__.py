"""Tools for the remediation agent."""

from .storage_tool import StorageTool
from .sonar_tool import (
    SonarClient,
    IssueQuery,
    IssuePage,
    ConnectionStatus,
    ProjectStatus,
    parse_facets,
)
from .build_tool import (
    BuildValidator,
    BuildOutcome,
    CommandBuildValidator,
    detect_build_commands,
)

__all__ = [
    "StorageTool",
    "SonarClient",
    "IssueQuery",
    "IssuePage",
    "ConnectionStatus",
    "ProjectStatus",
    "parse_facets",
    "BuildValidator",
    "BuildOutcome",
    "CommandBuildValidator",
    "detect_build_commands",
]
