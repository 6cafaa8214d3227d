"""Report formatting for plans and fix runs."""

from ..models import FixReport, FixState, IssueType, Plan, Severity


def _format_minutes(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    if hours and rest:
        return f"{hours}h{rest:02d}min"
    if hours:
        return f"{hours}h"
    return f"{rest}min"


def format_plan_summary(plan: Plan, max_files: int = 20) -> str:
    """
    Format a plan as a human-readable summary.

    Args:
        plan: Plan to summarize
        max_files: Maximum number of files to list individually

    Returns:
        Formatted summary string
    """
    source = "remote scanner" if plan.used_remote_source else "local pattern scan"
    lines = [
        "## Remediation Plan",
        "",
        "### Summary",
        f"- Source: {source}",
        f"- Issues: {plan.total_issues}" + (" (truncated)" if plan.truncated else ""),
        f"- Files: {plan.file_count}",
        f"- Unlocatable issues: {len(plan.unlocatable)}",
        f"- Estimated effort: {_format_minutes(plan.total_effort_minutes)}",
        "",
        "### Severity Breakdown",
    ]
    for severity in Severity.descending():
        lines.append(f"- {severity.value.title()}: {plan.facets.severity_count(severity)}")

    lines.append("")
    lines.append("### Type Breakdown")
    for issue_type in IssueType:
        lines.append(f"- {issue_type.value}: {plan.facets.by_type.get(issue_type, 0)}")

    if plan.issues_by_file:
        lines.append("")
        lines.append("### Files")
        files = list(plan.issues_by_file.items())
        for path, issues in files[:max_files]:
            lines.append(f"- {path} ({len(issues)})")
            for issue in issues:
                lines.append(f"  - [{issue.key}] {issue.severity.value} {issue.rule}: {issue.message}")
        if len(files) > max_files:
            lines.append(f"- ... and {len(files) - max_files} more files")

    return "\n".join(lines)


def format_fix_report(report: FixReport) -> str:
    """Format a fix report with per-file attempt history."""

    def flag(value):
        if value is None:
            return "not run"
        return "passed" if value else "FAILED"

    lines = [
        "## Fix Report",
        "",
        "### Summary",
        f"- Files fixed: {report.files_fixed}",
        f"- Files failed: {report.files_failed}",
        f"- Issues fixed: {report.issues_fixed}",
        f"- Issues failed: {report.issues_failed}",
        f"- Final build: {flag(report.build_passed)}",
        f"- Final tests: {flag(report.tests_passed)}",
    ]

    if report.cancelled:
        lines.append(f"- Cancelled, {len(report.skipped_files)} file(s) not started")

    if report.results:
        lines.append("")
        lines.append("### Files")
        for result in report.results:
            status = "committed" if result.final_state == FixState.COMMITTED else "rolled back, needs manual review"
            lines.append(
                f"- {result.file_path}: {status} "
                f"({result.issues_fixed}/{result.issues_attempted} issues, {len(result.attempts)} attempt(s))"
            )
            for attempt in result.attempts:
                lines.append(f"  - attempt {attempt.number}: {attempt.outcome.value}")
            if result.error:
                lines.append(f"  - error: {result.error}")

    if report.unlocatable_keys:
        lines.append("")
        lines.append(f"Skipped unlocatable issues: {', '.join(report.unlocatable_keys)}")
    if report.unknown_keys:
        lines.append(f"Unknown issue keys: {', '.join(report.unknown_keys)}")

    usage = report.usage
    if usage.input_tokens or usage.output_tokens or usage.cost_usd:
        lines.append("")
        lines.append("### Usage")
        lines.append(f"- Tokens: {usage.input_tokens} in / {usage.output_tokens} out")
        lines.append(f"- Cost: ${usage.cost_usd:.4f}")

    return "\n".join(lines)
