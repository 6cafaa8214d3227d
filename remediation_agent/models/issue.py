"""Data models for static-analysis issues."""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Optional


DEFAULT_EFFORT_MINUTES = 5

# Scanner effort strings use an 8 hour work day
_EFFORT_UNITS = {"d": 8 * 60, "h": 60, "min": 1}
_EFFORT_PART = re.compile(r"(\d+)\s*(d|h|min)")


class Severity(Enum):
    """Issue severity levels, highest first."""
    BLOCKER = "BLOCKER"
    CRITICAL = "CRITICAL"
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Higher rank means more severe."""
        return _SEVERITY_RANK[self]

    def __lt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: str) -> "Severity":
        return cls(value.strip().upper())

    @classmethod
    def descending(cls) -> list:
        """All severities ordered from BLOCKER down to INFO."""
        return sorted(cls, key=lambda s: s.rank, reverse=True)


_SEVERITY_RANK = {
    Severity.BLOCKER: 5,
    Severity.CRITICAL: 4,
    Severity.MAJOR: 3,
    Severity.MINOR: 2,
    Severity.INFO: 1,
}


class IssueType(Enum):
    """Types of issues the remediation agent handles."""
    BUG = "BUG"
    VULNERABILITY = "VULNERABILITY"
    CODE_SMELL = "CODE_SMELL"

    @classmethod
    def parse(cls, value: str) -> "IssueType":
        return cls(value.strip().upper().replace("-", "_"))


def parse_effort(value: Optional[str]) -> int:
    """
    Convert a scanner effort string such as "1h30min" to minutes.

    Unknown or empty values fall back to DEFAULT_EFFORT_MINUTES.
    """
    if not value:
        return DEFAULT_EFFORT_MINUTES
    parts = _EFFORT_PART.findall(str(value))
    if not parts:
        return DEFAULT_EFFORT_MINUTES
    return sum(int(amount) * _EFFORT_UNITS[unit] for amount, unit in parts)


@dataclass(frozen=True)
class Issue:
    """A single normalized static-analysis finding."""
    key: str
    rule: str
    type: IssueType
    severity: Severity
    message: str
    file_path: str
    line_start: int = 0
    line_end: int = 0
    effort_minutes: int = DEFAULT_EFFORT_MINUTES
    tags: FrozenSet[str] = field(default_factory=frozenset)
    component: Optional[str] = None  # Raw server-side identifier

    def __post_init__(self):
        if self.effort_minutes < 0:
            raise ValueError(f"effort_minutes must be non-negative, got {self.effort_minutes}")
        if self.line_start < 0 or self.line_end < 0:
            raise ValueError(f"line numbers must be non-negative, got {self.line_start}-{self.line_end}")
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))

    @property
    def is_locatable(self) -> bool:
        """An issue can only be fixed when it maps to a concrete file."""
        return bool(self.file_path)

    @property
    def location(self) -> str:
        if self.line_start and self.line_end and self.line_end != self.line_start:
            return f"{self.file_path}:{self.line_start}-{self.line_end}"
        return f"{self.file_path}:{self.line_start}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "rule": self.rule,
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "file_path": self.file_path,
            "line_start": self.line_start,
            "line_end": self.line_end,
            "effort_minutes": self.effort_minutes,
            "tags": sorted(self.tags),
            "component": self.component,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        return cls(
            key=data["key"],
            rule=data.get("rule", ""),
            type=IssueType.parse(data["type"]),
            severity=Severity.parse(data["severity"]),
            message=data.get("message", ""),
            file_path=data.get("file_path", ""),
            line_start=int(data.get("line_start", 0)),
            line_end=int(data.get("line_end", 0)),
            effort_minutes=int(data.get("effort_minutes", DEFAULT_EFFORT_MINUTES)),
            tags=frozenset(data.get("tags", [])),
            component=data.get("component"),
        )


@dataclass
class Facets:
    """Aggregate issue counts by type and by severity."""
    by_type: Dict[IssueType, int] = field(default_factory=dict)
    by_severity: Dict[Severity, int] = field(default_factory=dict)

    @classmethod
    def from_issues(cls, issues: Iterable[Issue]) -> "Facets":
        facets = cls()
        for issue in issues:
            facets.by_type[issue.type] = facets.by_type.get(issue.type, 0) + 1
            facets.by_severity[issue.severity] = facets.by_severity.get(issue.severity, 0) + 1
        return facets

    def frozen(self) -> "Facets":
        """Copy with read-only count mappings."""
        return Facets(
            by_type=MappingProxyType(dict(self.by_type)),
            by_severity=MappingProxyType(dict(self.by_severity)),
        )

    def severity_count(self, severity: Severity) -> int:
        return self.by_severity.get(severity, 0)

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            "types": {t.value: n for t, n in self.by_type.items()},
            "severities": {s.value: n for s, n in self.by_severity.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, int]]) -> "Facets":
        return cls(
            by_type={IssueType.parse(k): int(v) for k, v in data.get("types", {}).items()},
            by_severity={Severity.parse(k): int(v) for k, v in data.get("severities", {}).items()},
        )
