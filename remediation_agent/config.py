"""Configuration for the remediation agent."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Optional, Tuple
import os

from .errors import ConfigError
from .models import IssueType, Severity


MAX_PAGE_SIZE = 500  # Hard cap imposed by the scanner API


class RunMode(Enum):
    """What a job should do."""
    PLAN = "plan"  # Scan and build a plan only
    FIX = "fix"    # Plan (or reuse a plan) and fix the selected issues


@dataclass
class ScannerSettings:
    """Connection settings for a remote SonarQube-compatible scanner."""

    url: str
    project_key: str
    token: Optional[str] = None
    branch: Optional[str] = None
    page_size: int = MAX_PAGE_SIZE
    timeout: float = 30.0
    http_retries: int = 2  # Connection-level retries, pagination is idempotent

    def __post_init__(self):
        self.url = self.url.rstrip("/")
        if not self.url:
            raise ConfigError("Scanner URL must not be empty")
        if not self.project_key:
            raise ConfigError("Scanner project key must not be empty")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ConfigError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {self.page_size}")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")


@dataclass
class LocalScanSettings:
    """Settings for the regex fallback scan used without a remote scanner."""

    extensions: Tuple[str, ...] = (".java",)
    exclude_dirs: FrozenSet[str] = frozenset({
        ".git", ".gradle", ".idea", ".mvn", "bin", "build", "node_modules",
        "out", "target", "test", "tests",
    })
    deep_scan: bool = False        # Augment patterns with a generative scan
    deep_scan_min_lines: int = 50  # Only deep-scan files at least this long


@dataclass
class FixSettings:
    """Settings for the fix/validate/retry loop."""

    max_attempts: int = 3
    run_tests: bool = True  # Run the test suite once after all files
    compile_command: Optional[List[str]] = None  # Auto-detected when None
    test_command: Optional[List[str]] = None
    build_timeout: float = 900.0
    model: Optional[str] = None  # Model override for rewrites and the deep scan
    max_turns: int = 1

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.build_timeout <= 0:
            raise ConfigError("build_timeout must be positive")


@dataclass
class RemediationConfig:
    """Configuration for one plan or fix job."""

    project_dir: Path = field(default_factory=Path.cwd)
    mode: RunMode = RunMode.PLAN

    # Issue source: remote when scanner settings are present, local otherwise
    scanner: Optional[ScannerSettings] = None
    local: LocalScanSettings = field(default_factory=LocalScanSettings)

    # Selectors
    types: FrozenSet[IssueType] = frozenset(IssueType)
    severities: FrozenSet[Severity] = frozenset(Severity)
    max_issues: int = 500

    # Fix phase
    fix: FixSettings = field(default_factory=FixSettings)
    selected_keys: Optional[FrozenSet[str]] = None  # None = every locatable issue

    def __post_init__(self):
        self.project_dir = Path(self.project_dir)
        if self.max_issues < 1:
            raise ConfigError(f"max_issues must be positive, got {self.max_issues}")
        if not self.types:
            raise ConfigError("At least one issue type must be selected")
        if not self.severities:
            raise ConfigError("At least one severity must be selected")
        if self.selected_keys is not None and self.mode != RunMode.FIX:
            raise ConfigError("Issue keys can only be selected in fix mode")

    @property
    def uses_remote_source(self) -> bool:
        return self.scanner is not None

    @classmethod
    def from_env(cls, project_dir: Optional[Path] = None) -> "RemediationConfig":
        """Create config from environment variables."""
        scanner = None
        url = os.environ.get("SONAR_HOST_URL", "")
        project_key = os.environ.get("SONAR_PROJECT_KEY", "")
        if url and project_key:
            scanner = ScannerSettings(
                url=url,
                project_key=project_key,
                token=os.environ.get("SONAR_TOKEN"),
                branch=os.environ.get("SONAR_BRANCH") or None,
            )

        return cls(
            project_dir=project_dir or Path.cwd(),
            scanner=scanner,
            max_issues=_env_int("MAX_ISSUES", 500),
            fix=FixSettings(
                max_attempts=_env_int("MAX_FIX_ATTEMPTS", 3),
                run_tests=os.environ.get("RUN_TESTS", "true").lower() == "true",
                model=os.environ.get("REMEDIATION_MODEL") or None,
            ),
        )


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def parse_types(values: str) -> FrozenSet[IssueType]:
    """Parse a comma separated list such as "BUG,VULNERABILITY"."""
    try:
        return frozenset(IssueType.parse(v) for v in values.split(",") if v.strip())
    except ValueError as e:
        raise ConfigError(f"Unknown issue type in {values!r}") from e


def parse_severities(values: str) -> FrozenSet[Severity]:
    """Parse a comma separated list such as "BLOCKER,CRITICAL"."""
    try:
        return frozenset(Severity.parse(v) for v in values.split(",") if v.strip())
    except ValueError as e:
        raise ConfigError(f"Unknown severity in {values!r}") from e
