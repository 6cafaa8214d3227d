"""Tests for the issue planner."""

from remediation_agent.models import Facets, Issue, IssueType, Severity
from remediation_agent.pipeline import build_plan


def issue(key, path, severity=Severity.MAJOR, effort=5, issue_type=IssueType.CODE_SMELL):
    return Issue(
        key=key,
        rule="java:S106",
        type=issue_type,
        severity=severity,
        message=f"issue {key}",
        file_path=path,
        line_start=1,
        line_end=1,
        effort_minutes=effort,
    )


class TestBuildPlan:
    """Tests for grouping, facets and effort."""

    def test_groups_by_file_preserving_fetch_order(self):
        # Given - issues for two files interleaved
        issues = [
            issue("1", "b.java"),
            issue("2", "a.java"),
            issue("3", "b.java"),
            issue("4", "a.java"),
        ]

        # When
        plan = build_plan(issues)

        # Then - files in first-seen order, issues in fetch order
        assert list(plan.issues_by_file) == ["b.java", "a.java"]
        assert [i.key for i in plan.issues_by_file["b.java"]] == ["1", "3"]
        assert [i.key for i in plan.issues_by_file["a.java"]] == ["2", "4"]

    def test_unlocatable_issues_are_kept_separately(self):
        """Given issues without a path, none should be dropped from the plan."""
        # Given
        issues = [issue("1", "a.java"), issue("2", ""), issue("3", "")]

        # When
        plan = build_plan(issues)

        # Then
        assert plan.total_issues == len(issues)
        assert [i.key for i in plan.unlocatable] == ["2", "3"]
        assert "" not in plan.issues_by_file

    def test_effort_is_additive_regardless_of_grouping(self):
        issues = [
            issue("1", "a.java", effort=5),
            issue("2", "b.java", effort=30),
            issue("3", "", effort=10),
            issue("4", "a.java", effort=0),
        ]

        plan = build_plan(issues)

        assert plan.total_effort_minutes == sum(i.effort_minutes for i in issues) == 45

    def test_facets_computed_when_source_supplies_none(self):
        # Given
        issues = [
            issue("1", "a.java", Severity.CRITICAL, issue_type=IssueType.VULNERABILITY),
            issue("2", "a.java", Severity.MAJOR),
            issue("3", "b.java", Severity.MAJOR, issue_type=IssueType.BUG),
        ]

        # When
        plan = build_plan(issues)

        # Then
        assert plan.facets.by_severity == {Severity.CRITICAL: 1, Severity.MAJOR: 2}
        assert plan.facets.by_type == {
            IssueType.VULNERABILITY: 1,
            IssueType.CODE_SMELL: 1,
            IssueType.BUG: 1,
        }

    def test_supplied_facets_are_used_as_is(self):
        """Given facets from the source summary, the planner should not recount."""
        # Given - server reports more than was fetched
        server_facets = Facets(by_severity={Severity.MAJOR: 1200}, by_type={IssueType.CODE_SMELL: 1200})

        # When
        plan = build_plan([issue("1", "a.java")], facets=server_facets, used_remote_source=True, truncated=True)

        # Then
        assert plan.facets.by_severity[Severity.MAJOR] == 1200
        assert plan.used_remote_source is True
        assert plan.truncated is True

    def test_empty_input_gives_empty_plan(self):
        plan = build_plan([])

        assert plan.total_issues == 0
        assert plan.file_count == 0
        assert plan.total_effort_minutes == 0
