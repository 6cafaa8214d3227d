"""Issue sources: where the list of findings comes from."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from ..config import RemediationConfig
from ..errors import ConfigError
from ..models import Facets, Issue, IssueType, Severity


@dataclass(frozen=True)
class IssueSelectors:
    """Constraints applied by every issue source."""
    types: FrozenSet[IssueType] = frozenset(IssueType)
    severities: FrozenSet[Severity] = frozenset(Severity)
    max_issues: int = 500

    def __post_init__(self):
        if self.max_issues < 1:
            raise ConfigError(f"max_issues must be positive, got {self.max_issues}")

    def accepts(self, issue: Issue) -> bool:
        return issue.type in self.types and issue.severity in self.severities

    @classmethod
    def from_config(cls, config: RemediationConfig) -> "IssueSelectors":
        return cls(types=config.types, severities=config.severities, max_issues=config.max_issues)


@dataclass
class SourceResult:
    """Normalized issues from one fetch."""
    issues: List[Issue] = field(default_factory=list)
    facets: Optional[Facets] = None  # None when the source has no summary
    truncated: bool = False


class IssueSource(ABC):
    """Produces normalized issues for a project."""

    is_remote: bool = False

    @abstractmethod
    async def fetch_all(self, selectors: IssueSelectors) -> SourceResult:
        """
        Fetch every issue matching the selectors, capped at max_issues.

        Raises:
            ScanError: The source could not be reached or queried
        """


def create_issue_source(config: RemediationConfig, deep_scanner=None) -> IssueSource:
    """
    Build the issue source for a config.

    Remote when scanner settings are configured, local pattern scan otherwise.
    """
    if config.scanner is not None:
        from .remote_source import RemoteIssueSource
        return RemoteIssueSource(config.scanner)

    from .local_source import LocalPatternSource
    return LocalPatternSource(
        config.project_dir,
        settings=config.local,
        deep_scanner=deep_scanner,
        model=config.fix.model,
    )
