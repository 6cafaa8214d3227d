"""Tests for the per-file fix/validate/retry/rollback loop.

The rewriter and build validator are the only collaborators replaced;
files are real and live under pytest's tmp_path.
"""

import asyncio

import pytest

from remediation_agent.config import FixSettings
from remediation_agent.models import (
    AttemptOutcome,
    FixState,
    Issue,
    IssueType,
    Severity,
    UsageCounters,
)
from remediation_agent.orchestrator import BaselineBackup, FixOrchestrator
from remediation_agent.pipeline import INVALID_OUTPUT_INSTRUCTION, RewriteResult, Rewriter, build_plan
from remediation_agent.tools import BuildOutcome, BuildValidator, CommandBuildValidator


PAYMENT_SERVICE = """public class PaymentService {
    private String password = "hunter2";
    public void pay() { System.out.println("paid"); }
    public boolean admin(String r) { return r == "admin"; }
}
"""

PAYMENT_SERVICE_FIXED = """public class PaymentService {
    private String password = System.getenv("PAYMENT_PASSWORD");
    public void pay() { LOG.info("paid"); }
    public boolean admin(String r) { return "admin".equals(r); }
}
"""

ORDER_CONTROLLER = """public class OrderController {
    public void order() { System.exit(1); }
}
"""

COMPILE_ERROR = "OrderController.java:2: error: ';' expected"


class ScriptedRewriter(Rewriter):
    """Returns queued outputs in order; exceptions in the queue are raised."""

    def __init__(self, outputs, on_rewrite=None):
        self.outputs = list(outputs)
        self.on_rewrite = on_rewrite
        self.requests = []

    async def rewrite(self, request):
        self.requests.append(request)
        if self.on_rewrite:
            self.on_rewrite(request)
        output = self.outputs.pop(0) if self.outputs else None
        if isinstance(output, Exception):
            raise output
        return RewriteResult(content=output, usage=UsageCounters(input_tokens=100, output_tokens=50, cost_usd=0.01))


class ScriptedValidator(BuildValidator):
    """Compile results are queued; once empty every compile passes."""

    def __init__(self, compile_results=(), tests_ok=True, watch=None):
        self.compile_results = list(compile_results)
        self.tests_ok = tests_ok
        self.watch = watch
        self.compile_calls = 0
        self.test_calls = 0
        self.snapshots = []

    async def compile_only(self, project_dir):
        self.compile_calls += 1
        if self.watch is not None:
            self.snapshots.append(self.watch.read_text(encoding="utf-8"))
        result = self.compile_results.pop(0) if self.compile_results else True
        if isinstance(result, Exception):
            raise result
        return BuildOutcome(ok=result, output="" if result else COMPILE_ERROR)

    async def run_tests(self, project_dir):
        self.test_calls += 1
        return BuildOutcome(ok=self.tests_ok, output="" if self.tests_ok else "1 test failed")


def make_issue(key, path, rule="java:S106", severity=Severity.MAJOR, line=3):
    return Issue(
        key=key,
        rule=rule,
        type=IssueType.CODE_SMELL,
        severity=severity,
        message=f"issue {key}",
        file_path=path,
        line_start=line,
        line_end=line,
    )


def payment_plan():
    path = "src/PaymentService.java"
    return build_plan([
        make_issue("P1", path, "java:S2068", Severity.CRITICAL, 2),
        make_issue("P2", path, "java:S106", Severity.MAJOR, 3),
        make_issue("P3", path, "java:S4973", Severity.MAJOR, 4),
    ])


@pytest.fixture
def project(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "PaymentService.java").write_text(PAYMENT_SERVICE, encoding="utf-8")
    (src / "OrderController.java").write_text(ORDER_CONTROLLER, encoding="utf-8")
    return tmp_path


def run(project_dir, plan, rewriter, validator, keys=None, **settings):
    orchestrator = FixOrchestrator(project_dir, rewriter, validator, FixSettings(**settings))
    report = asyncio.run(orchestrator.run(plan, keys))
    return orchestrator, report


class TestSuccessfulFix:
    """Tests for files that are fixed and committed."""

    def test_three_issues_fixed_on_first_attempt(self, project):
        """Given a valid rewrite that compiles, the file should be committed."""
        # Given
        rewriter = ScriptedRewriter([PAYMENT_SERVICE_FIXED])
        validator = ScriptedValidator()

        # When
        orchestrator, report = run(project, payment_plan(), rewriter, validator)

        # Then
        result = report.results[0]
        assert result.final_state == FixState.COMMITTED
        assert result.issues_fixed == 3
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.SUCCESS]
        assert (project / "src/PaymentService.java").read_text(encoding="utf-8") == PAYMENT_SERVICE_FIXED
        assert orchestrator.states["src/PaymentService.java"] == FixState.COMMITTED
        assert report.build_passed is True
        assert report.tests_passed is True

    def test_all_issues_of_a_file_are_sent_in_one_request(self, project):
        rewriter = ScriptedRewriter([PAYMENT_SERVICE_FIXED])

        run(project, payment_plan(), rewriter, ScriptedValidator())

        request = rewriter.requests[0]
        assert [i.key for i in request.issues] == ["P1", "P2", "P3"]
        assert request.source_code == PAYMENT_SERVICE

    def test_usage_is_accumulated_per_attempt(self, project):
        rewriter = ScriptedRewriter([None, PAYMENT_SERVICE_FIXED])

        _, report = run(project, payment_plan(), rewriter, ScriptedValidator())

        assert report.usage.input_tokens == 200
        assert report.usage.output_tokens == 100

    def test_selected_keys_limit_the_request(self, project):
        rewriter = ScriptedRewriter([PAYMENT_SERVICE_FIXED])

        _, report = run(project, payment_plan(), rewriter, ScriptedValidator(), keys=["P2"])

        assert [i.key for i in rewriter.requests[0].issues] == ["P2"]
        assert report.results[0].issues_fixed == 1


class TestRollback:
    """Tests for bounded retries and baseline restoration."""

    def test_three_compile_failures_roll_back(self, project):
        """Given three failed compiles, the file should be byte-identical to the baseline."""
        # Given
        path = project / "src/OrderController.java"
        baseline = path.read_bytes()
        plan = build_plan([make_issue("O1", "src/OrderController.java", "java:S1147", Severity.BLOCKER, 2)])
        broken = "public class OrderController {\n    public void order() { return }\n}\n"
        rewriter = ScriptedRewriter([broken, broken, broken])
        validator = ScriptedValidator([False, False, False], watch=path)

        # When
        _, report = run(project, plan, rewriter, validator)

        # Then
        result = report.results[0]
        assert result.final_state == FixState.ROLLED_BACK
        assert result.issues_fixed == 0
        assert result.needs_manual_review is True
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.COMPILE_FAILED] * 3
        assert "3 attempt" in result.error
        assert path.read_bytes() == baseline
        # candidate was on disk during each compile, baseline during the final check
        assert validator.snapshots[:3] == [broken] * 3
        assert validator.snapshots[3] == ORDER_CONTROLLER

    def test_compiler_diagnostic_is_fed_into_next_attempt(self, project):
        rewriter = ScriptedRewriter(["class A {}\n", PAYMENT_SERVICE_FIXED])
        validator = ScriptedValidator([False])

        _, report = run(project, payment_plan(), rewriter, validator)

        assert rewriter.requests[0].prior_diagnostic is None
        assert rewriter.requests[1].prior_diagnostic == COMPILE_ERROR
        assert COMPILE_ERROR in rewriter.requests[1].render_prompt()
        # every attempt starts from the baseline, not the rejected candidate
        assert rewriter.requests[1].source_code == PAYMENT_SERVICE
        assert report.results[0].final_state == FixState.COMMITTED

    def test_invalid_output_never_touches_disk(self, project):
        """Given only unusable rewrites, the validator should only run for the final check."""
        # Given
        path = project / "src/PaymentService.java"
        rewriter = ScriptedRewriter([None, None, None])
        validator = ScriptedValidator(watch=path)

        # When
        _, report = run(project, payment_plan(), rewriter, validator)

        # Then
        result = report.results[0]
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.INVALID_OUTPUT] * 3
        assert rewriter.requests[1].corrective_instruction == INVALID_OUTPUT_INSTRUCTION
        assert validator.compile_calls == 1
        assert path.read_text(encoding="utf-8") == PAYMENT_SERVICE

    def test_unchanged_output_is_invalid(self, project):
        rewriter = ScriptedRewriter([PAYMENT_SERVICE])

        _, report = run(project, payment_plan(), rewriter, ScriptedValidator(), max_attempts=1)

        assert report.results[0].attempts[0].outcome == AttemptOutcome.INVALID_OUTPUT
        assert report.results[0].final_state == FixState.ROLLED_BACK

    def test_rewriter_error_consumes_an_attempt(self, project):
        rewriter = ScriptedRewriter([RuntimeError("rate limited"), PAYMENT_SERVICE_FIXED])

        _, report = run(project, payment_plan(), rewriter, ScriptedValidator())

        result = report.results[0]
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.TOOL_ERROR, AttemptOutcome.SUCCESS]
        assert "rate limited" in result.attempts[0].diagnostic
        assert result.final_state == FixState.COMMITTED

    def test_validator_crash_restores_baseline(self, project):
        # Given
        path = project / "src/PaymentService.java"
        rewriter = ScriptedRewriter([PAYMENT_SERVICE_FIXED])
        validator = ScriptedValidator([RuntimeError("daemon died")])

        # When
        _, report = run(project, payment_plan(), rewriter, validator, max_attempts=1)

        # Then
        assert report.results[0].attempts[0].outcome == AttemptOutcome.TOOL_ERROR
        assert report.results[0].final_state == FixState.ROLLED_BACK
        assert path.read_text(encoding="utf-8") == PAYMENT_SERVICE

    def test_java_tree_without_build_file_is_never_committed(self, project):
        """Given no way to compile the Java tree, every attempt should be rolled back."""
        # Given
        path = project / "src/PaymentService.java"
        rewriter = ScriptedRewriter(["```java\nclass PaymentService { broken\n```"] * 3)

        # When
        _, report = run(project, payment_plan(), rewriter, CommandBuildValidator())

        # Then
        result = report.results[0]
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.TOOL_ERROR] * 3
        assert result.final_state == FixState.ROLLED_BACK
        assert path.read_text(encoding="utf-8") == PAYMENT_SERVICE
        assert report.build_passed is False

    def test_missing_file_is_rolled_back_without_rewriting(self, project):
        plan = build_plan([make_issue("G1", "src/Gone.java")])
        rewriter = ScriptedRewriter([PAYMENT_SERVICE_FIXED])

        _, report = run(project, plan, rewriter, ScriptedValidator())

        assert rewriter.requests == []
        assert report.results[0].final_state == FixState.ROLLED_BACK
        assert "Gone.java" in report.results[0].error

    def test_failed_file_does_not_stop_later_files(self, project):
        # Given - OrderController first, always broken; PaymentService second
        plan = build_plan([
            make_issue("O1", "src/OrderController.java"),
            make_issue("P1", "src/PaymentService.java"),
        ])
        rewriter = ScriptedRewriter([None, PAYMENT_SERVICE_FIXED])

        # When
        _, report = run(project, plan, rewriter, ScriptedValidator(), max_attempts=1)

        # Then
        assert [r.final_state for r in report.results] == [FixState.ROLLED_BACK, FixState.COMMITTED]
        assert report.files_fixed == 1
        assert report.files_failed == 1


class TestRunBoundaries:
    """Tests for selection, cancellation and the final certification."""

    def test_test_failure_does_not_roll_back(self, project):
        rewriter = ScriptedRewriter([PAYMENT_SERVICE_FIXED])
        validator = ScriptedValidator(tests_ok=False)

        _, report = run(project, payment_plan(), rewriter, validator)

        assert report.tests_passed is False
        assert report.results[0].final_state == FixState.COMMITTED
        assert (project / "src/PaymentService.java").read_text(encoding="utf-8") == PAYMENT_SERVICE_FIXED

    def test_tests_can_be_disabled(self, project):
        validator = ScriptedValidator()

        _, report = run(project, payment_plan(), ScriptedRewriter([PAYMENT_SERVICE_FIXED]), validator,
                        run_tests=False)

        assert validator.test_calls == 0
        assert report.tests_passed is None
        assert report.build_passed is True

    def test_cancellation_takes_effect_at_file_boundary(self, project):
        """Given a cancel during the first file, that file finishes and the rest are skipped."""
        # Given
        plan = build_plan([
            make_issue("P1", "src/PaymentService.java"),
            make_issue("O1", "src/OrderController.java"),
        ])
        holder = {}
        rewriter = ScriptedRewriter([PAYMENT_SERVICE_FIXED], on_rewrite=lambda _: holder["orch"].cancel())
        orchestrator = FixOrchestrator(project, rewriter, ScriptedValidator(), FixSettings())
        holder["orch"] = orchestrator

        # When
        report = asyncio.run(orchestrator.run(plan))

        # Then
        assert [r.file_path for r in report.results] == ["src/PaymentService.java"]
        assert report.results[0].final_state == FixState.COMMITTED
        assert report.cancelled is True
        assert report.skipped_files == ["src/OrderController.java"]

    def test_unlocatable_and_unknown_keys_are_reported(self, project):
        plan = build_plan([make_issue("P1", "src/PaymentService.java"), make_issue("U1", "")])

        _, report = run(project, plan, ScriptedRewriter([PAYMENT_SERVICE_FIXED]), ScriptedValidator(),
                        keys=["P1", "U1", "MISSING"])

        assert report.unlocatable_keys == ["U1"]
        assert report.unknown_keys == ["MISSING"]
        assert report.issues_fixed == 1

    def test_empty_selection_skips_final_check(self, project):
        validator = ScriptedValidator()

        _, report = run(project, payment_plan(), ScriptedRewriter([]), validator, keys=["NOPE"])

        assert report.results == []
        assert report.build_passed is None
        assert validator.compile_calls == 0


class TestBaselineBackup:
    """Tests for the scoped backup."""

    def test_restores_on_exception_and_removes_temp_copy(self, tmp_path):
        # Given
        path = tmp_path / "A.java"
        path.write_bytes(b"class A {}\n")

        # When
        with pytest.raises(RuntimeError):
            with BaselineBackup(path) as backup:
                temp_copy = backup.backup_path
                assert temp_copy.read_bytes() == b"class A {}\n"
                backup.write_candidate("class A { broken\n")
                raise RuntimeError("interrupted")

        # Then
        assert path.read_bytes() == b"class A {}\n"
        assert not temp_copy.exists()

    def test_commit_keeps_candidate(self, tmp_path):
        path = tmp_path / "A.java"
        path.write_bytes(b"class A {}\n")

        with BaselineBackup(path) as backup:
            backup.write_candidate("class A { int x; }\n")
            backup.commit()

        assert path.read_text(encoding="utf-8") == "class A { int x; }\n"
