"""Data model for the remediation plan snapshot."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .issue import Facets, Issue


@dataclass(frozen=True)
class Selection:
    """Issues picked out of a plan for the fix phase."""
    by_file: Dict[str, List[Issue]]
    unlocatable_keys: List[str] = field(default_factory=list)
    unknown_keys: List[str] = field(default_factory=list)

    @property
    def issue_count(self) -> int:
        return sum(len(issues) for issues in self.by_file.values())


@dataclass(frozen=True)
class Plan:
    """
    Immutable grouping/summary snapshot of issues prior to any fix.

    Re-scanning produces a new Plan; a Plan is never mutated after creation.
    """
    issues_by_file: Mapping[str, Tuple[Issue, ...]]
    unlocatable: Tuple[Issue, ...] = ()
    facets: Facets = field(default_factory=Facets)
    total_effort_minutes: int = 0
    used_remote_source: bool = False
    truncated: bool = False

    def __post_init__(self):
        frozen = {path: tuple(issues) for path, issues in self.issues_by_file.items()}
        object.__setattr__(self, "issues_by_file", MappingProxyType(frozen))
        object.__setattr__(self, "unlocatable", tuple(self.unlocatable))
        object.__setattr__(self, "facets", self.facets.frozen())

    @property
    def total_issues(self) -> int:
        return sum(len(issues) for issues in self.issues_by_file.values()) + len(self.unlocatable)

    @property
    def file_count(self) -> int:
        return len(self.issues_by_file)

    def all_issues(self) -> List[Issue]:
        """Every issue in the plan, locatable ones first in file order."""
        issues = [issue for group in self.issues_by_file.values() for issue in group]
        issues.extend(self.unlocatable)
        return issues

    def find(self, keys: Optional[Iterable[str]] = None) -> Selection:
        """
        Select issues by key for the fix phase.

        Args:
            keys: Issue keys to select, or None for every locatable issue

        Returns:
            Selection grouped by file in plan order
        """
        if keys is None:
            return Selection(by_file={path: list(group) for path, group in self.issues_by_file.items()})

        wanted: Set[str] = set(keys)
        by_file: Dict[str, List[Issue]] = {}
        found: Set[str] = set()

        for path, group in self.issues_by_file.items():
            chosen = [issue for issue in group if issue.key in wanted]
            if chosen:
                by_file[path] = chosen
                found.update(issue.key for issue in chosen)

        unlocatable_keys = [issue.key for issue in self.unlocatable if issue.key in wanted]
        found.update(unlocatable_keys)
        unknown_keys = sorted(wanted - found)

        return Selection(by_file=by_file, unlocatable_keys=unlocatable_keys, unknown_keys=unknown_keys)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_issues": self.total_issues,
            "issues_by_file": {
                path: [issue.to_dict() for issue in group]
                for path, group in self.issues_by_file.items()
            },
            "unlocatable": [issue.to_dict() for issue in self.unlocatable],
            "facets": self.facets.to_dict(),
            "total_effort_minutes": self.total_effort_minutes,
            "used_remote_source": self.used_remote_source,
            "truncated": self.truncated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        return cls(
            issues_by_file={
                path: tuple(Issue.from_dict(item) for item in group)
                for path, group in data.get("issues_by_file", {}).items()
            },
            unlocatable=tuple(Issue.from_dict(item) for item in data.get("unlocatable", [])),
            facets=Facets.from_dict(data.get("facets", {})),
            total_effort_minutes=int(data.get("total_effort_minutes", 0)),
            used_remote_source=bool(data.get("used_remote_source", False)),
            truncated=bool(data.get("truncated", False)),
        )
