"""Data models for the fix phase."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class FixState(Enum):
    """States of the per-file fix state machine."""
    PENDING = "pending"
    DRAFTING = "drafting"
    VALIDATING = "validating"
    SUCCESS = "success"
    RETRYING = "retrying"
    FAILED = "failed"
    COMMITTED = "committed"      # Terminal: rewrite accepted
    ROLLED_BACK = "rolled_back"  # Terminal: baseline restored


class AttemptOutcome(Enum):
    """Outcome of a single rewrite try."""
    SUCCESS = "success"
    COMPILE_FAILED = "compile_failed"
    INVALID_OUTPUT = "invalid_output"
    TOOL_ERROR = "tool_error"


@dataclass
class UsageCounters:
    """Token/cost counters, passed through from the rewriter untouched."""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    def add(self, other: Optional["UsageCounters"]) -> None:
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cost_usd += other.cost_usd

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass(frozen=True)
class FixAttempt:
    """One rewrite try for a file."""
    number: int
    outcome: AttemptOutcome
    diagnostic: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS


@dataclass
class FixResult:
    """Terminal per-file outcome."""
    file_path: str
    issues_attempted: int
    issues_fixed: int = 0
    attempts: List[FixAttempt] = field(default_factory=list)
    final_state: FixState = FixState.ROLLED_BACK
    error: Optional[str] = None
    issue_keys: List[str] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.final_state == FixState.COMMITTED

    @property
    def needs_manual_review(self) -> bool:
        return self.final_state == FixState.ROLLED_BACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "issues_attempted": self.issues_attempted,
            "issues_fixed": self.issues_fixed,
            "final_state": self.final_state.value,
            "error": self.error,
            "issue_keys": list(self.issue_keys),
            "attempts": [
                {"number": a.number, "outcome": a.outcome.value, "diagnostic": a.diagnostic}
                for a in self.attempts
            ],
        }


@dataclass
class FixReport:
    """Aggregate outcome of one orchestrator run."""
    results: List[FixResult] = field(default_factory=list)
    build_passed: Optional[bool] = None  # None when the final check did not run
    tests_passed: Optional[bool] = None
    build_output: str = ""
    test_output: str = ""
    usage: UsageCounters = field(default_factory=UsageCounters)
    cancelled: bool = False
    skipped_files: List[str] = field(default_factory=list)
    unlocatable_keys: List[str] = field(default_factory=list)
    unknown_keys: List[str] = field(default_factory=list)

    @property
    def files_fixed(self) -> int:
        return sum(1 for r in self.results if r.committed)

    @property
    def files_failed(self) -> int:
        return sum(1 for r in self.results if not r.committed)

    @property
    def issues_fixed(self) -> int:
        return sum(r.issues_fixed for r in self.results)

    @property
    def issues_failed(self) -> int:
        return sum(r.issues_attempted - r.issues_fixed for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "files_fixed": self.files_fixed,
                "files_failed": self.files_failed,
                "issues_fixed": self.issues_fixed,
                "issues_failed": self.issues_failed,
                "build_passed": self.build_passed,
                "tests_passed": self.tests_passed,
                "cancelled": self.cancelled,
            },
            "results": [r.to_dict() for r in self.results],
            "skipped_files": list(self.skipped_files),
            "unlocatable_keys": list(self.unlocatable_keys),
            "unknown_keys": list(self.unknown_keys),
            "build_output": self.build_output,
            "test_output": self.test_output,
            "usage": self.usage.to_dict(),
        }
