"""Planning: group issues by file and summarize them."""

from typing import Dict, Iterable, List, Optional

from ..models import Facets, Issue, Plan
from ..utils import get_logger
from .issue_source import IssueSource, SourceResult


logger = get_logger("pipeline.planner")


def build_plan(
    issues: Iterable[Issue],
    facets: Optional[Facets] = None,
    used_remote_source: bool = False,
    truncated: bool = False,
) -> Plan:
    """
    Build an immutable Plan from a flat issue list.

    Grouping is stable: issues keep their fetch order within a file. Issues
    without a file path go to the unlocatable bucket, so the plan always
    accounts for every input issue.

    Args:
        issues: Issues in fetch order
        facets: Facets supplied by the source (computed when None)
        used_remote_source: Whether the issues came from the remote scanner
        truncated: Whether the source capped the result

    Returns:
        Plan snapshot
    """
    issues = list(issues)
    by_file: Dict[str, List[Issue]] = {}
    unlocatable: List[Issue] = []

    for issue in issues:
        if issue.is_locatable:
            by_file.setdefault(issue.file_path, []).append(issue)
        else:
            unlocatable.append(issue)

    if unlocatable:
        logger.warning(f"{len(unlocatable)} issue(s) have no file path and cannot be fixed")

    plan = Plan(
        issues_by_file={path: tuple(group) for path, group in by_file.items()},
        unlocatable=tuple(unlocatable),
        facets=facets if facets is not None else Facets.from_issues(issues),
        total_effort_minutes=sum(issue.effort_minutes for issue in issues),
        used_remote_source=used_remote_source,
        truncated=truncated,
    )

    logger.info(
        f"Plan: {plan.total_issues} issues in {plan.file_count} files, "
        f"{plan.total_effort_minutes} min estimated effort"
    )
    return plan


def build_plan_from_source(result: SourceResult, source: IssueSource) -> Plan:
    """Build a Plan from a source fetch result."""
    return build_plan(
        result.issues,
        facets=result.facets,
        used_remote_source=source.is_remote,
        truncated=result.truncated,
    )
