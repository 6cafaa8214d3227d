"""Pipeline stages: issue sources, planning and rewriting."""

from .issue_source import IssueSource, IssueSelectors, SourceResult, create_issue_source
from .remote_source import RemoteIssueSource, normalize_issue, MAX_RESULT_WINDOW
from .local_source import (
    LocalPatternSource,
    PatternDetector,
    DeepScanner,
    ClaudeDeepScanner,
    DEFAULT_DETECTORS,
)
from .planner import build_plan, build_plan_from_source
from .rewriter import (
    Rewriter,
    ClaudeRewriter,
    FixRequest,
    RewriteResult,
    extract_source,
    INVALID_OUTPUT_INSTRUCTION,
)

__all__ = [
    "IssueSource",
    "IssueSelectors",
    "SourceResult",
    "create_issue_source",
    "RemoteIssueSource",
    "normalize_issue",
    "MAX_RESULT_WINDOW",
    "LocalPatternSource",
    "PatternDetector",
    "DeepScanner",
    "ClaudeDeepScanner",
    "DEFAULT_DETECTORS",
    "build_plan",
    "build_plan_from_source",
    "Rewriter",
    "ClaudeRewriter",
    "FixRequest",
    "RewriteResult",
    "extract_source",
    "INVALID_OUTPUT_INSTRUCTION",
]
