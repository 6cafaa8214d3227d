"""Fix orchestrator: per-file fix/validate/retry/rollback loop."""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from ..config import FixSettings
from ..errors import (
    CompileFailed,
    InvalidRewriteOutput,
    RetriesExhausted,
    ToolInvocationError,
)
from ..models import (
    AttemptOutcome,
    FixAttempt,
    FixReport,
    FixResult,
    FixState,
    Issue,
    Plan,
    UsageCounters,
)
from ..pipeline.rewriter import FixRequest, INVALID_OUTPUT_INSTRUCTION, Rewriter
from ..tools.build_tool import BuildValidator
from ..utils import get_logger
from .backup import BaselineBackup


class FixOrchestrator:
    """
    Drives the fix state machine for every selected file, one file at a time.

    Per file:
        PENDING -> DRAFTING -> VALIDATING -> SUCCESS -> COMMITTED
                       ^                  \\-> RETRYING -> DRAFTING
                       \\-- invalid output -/            \\-> FAILED -> ROLLED_BACK

    The file on disk only changes while VALIDATING; any failed compile puts
    the baseline back before the next attempt starts. Files are processed
    sequentially because the build shares one working tree.
    """

    def __init__(
        self,
        project_dir: Path,
        rewriter: Rewriter,
        validator: BuildValidator,
        settings: Optional[FixSettings] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            project_dir: Project root, owned exclusively by this run
            rewriter: Produces candidate file bodies
            validator: Compiles and tests the whole project
            settings: Retry budget and final test switch
        """
        self.project_dir = Path(project_dir)
        self.rewriter = rewriter
        self.validator = validator
        self.settings = settings or FixSettings()
        self.logger = get_logger("orchestrator")

        self.states: Dict[str, FixState] = {}
        self.usage = UsageCounters()
        self._cancel_requested = False

    def cancel(self) -> None:
        """Request cancellation; honoured before the next file starts."""
        self._cancel_requested = True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    async def run(self, plan: Plan, selected_keys: Optional[Iterable[str]] = None) -> FixReport:
        """
        Fix the selected issues of a plan.

        Args:
            plan: Previously computed plan (never re-fetched here)
            selected_keys: Issue keys to fix, or None for every locatable issue

        Returns:
            FixReport for the whole run
        """
        selection = plan.find(selected_keys)
        report = FixReport(
            unlocatable_keys=selection.unlocatable_keys,
            unknown_keys=selection.unknown_keys,
        )

        if selection.unlocatable_keys:
            self.logger.warning(f"Skipping {len(selection.unlocatable_keys)} unlocatable issue(s)")
        if selection.unknown_keys:
            self.logger.warning(f"Unknown issue keys: {', '.join(selection.unknown_keys)}")

        files = list(selection.by_file.items())
        self.logger.info(f"Fixing {selection.issue_count} issues in {len(files)} files")

        for index, (file_path, issues) in enumerate(files):
            if self._cancel_requested:
                report.cancelled = True
                report.skipped_files = [path for path, _ in files[index:]]
                self.logger.warning(f"Cancelled: {len(report.skipped_files)} file(s) not started")
                break

            self.logger.info(f"[{index + 1}/{len(files)}] {file_path} ({len(issues)} issues)")
            result = await self.fix_file(file_path, issues)
            report.results.append(result)

        report.usage.add(self.usage)

        if report.results:
            await self._certify(report)

        self.logger.info(
            f"Run complete: {report.files_fixed} files fixed, {report.files_failed} failed, "
            f"{report.issues_fixed} issues fixed"
        )
        return report

    async def fix_file(self, file_path: str, issues: Sequence[Issue]) -> FixResult:
        """Run the state machine for one file and return its terminal result."""
        result = FixResult(
            file_path=file_path,
            issues_attempted=len(issues),
            issue_keys=[issue.key for issue in issues],
        )
        self._transition(file_path, FixState.PENDING)

        try:
            with BaselineBackup(self.project_dir / file_path) as backup:
                try:
                    await self._attempt_loop(file_path, issues, backup, result.attempts)
                except RetriesExhausted as e:
                    result.error = str(e)
                committed = backup.committed
        except OSError as e:
            self.logger.error(f"Cannot process {file_path}: {e}")
            result.error = f"Cannot process {file_path}: {e}"
            committed = False

        if committed:
            result.final_state = FixState.COMMITTED
            result.issues_fixed = len(issues)
            self.logger.info(f"  Committed {file_path} after {len(result.attempts)} attempt(s)")
        else:
            result.final_state = FixState.ROLLED_BACK
            result.issues_fixed = 0
            self.logger.warning(f"  Rolled back {file_path}, marked for manual review")

        self._transition(file_path, result.final_state)
        return result

    async def _attempt_loop(
        self,
        file_path: str,
        issues: Sequence[Issue],
        backup: BaselineBackup,
        attempts: List[FixAttempt],
    ) -> None:
        diagnostic: Optional[str] = None
        corrective: Optional[str] = None
        last_error: Optional[str] = None

        for number in range(1, self.settings.max_attempts + 1):
            self._transition(file_path, FixState.DRAFTING, number)
            request = FixRequest(
                file_path=file_path,
                source_code=backup.baseline_text,
                issues=tuple(issues),
                prior_diagnostic=diagnostic,
                corrective_instruction=corrective,
            )

            try:
                candidate = await self._draft(request, backup)
                self._transition(file_path, FixState.VALIDATING, number)
                await self._validate(candidate, backup)
            except InvalidRewriteOutput as e:
                attempts.append(FixAttempt(number, AttemptOutcome.INVALID_OUTPUT, str(e)))
                corrective = INVALID_OUTPUT_INSTRUCTION
                last_error = str(e)
            except CompileFailed as e:
                attempts.append(FixAttempt(number, AttemptOutcome.COMPILE_FAILED, e.diagnostic))
                diagnostic = e.diagnostic
                corrective = None
                last_error = "compilation failed"
            except ToolInvocationError as e:
                attempts.append(FixAttempt(number, AttemptOutcome.TOOL_ERROR, str(e)))
                corrective = None
                last_error = str(e)
            else:
                backup.commit()
                attempts.append(FixAttempt(number, AttemptOutcome.SUCCESS))
                self._transition(file_path, FixState.SUCCESS, number)
                return

            self.logger.info(f"  Attempt {number} failed: {attempts[-1].outcome.value}")
            if number < self.settings.max_attempts:
                self._transition(file_path, FixState.RETRYING, number)

        self._transition(file_path, FixState.FAILED, len(attempts))
        raise RetriesExhausted(file_path, len(attempts), last_error)

    async def _draft(self, request: FixRequest, backup: BaselineBackup) -> str:
        """Ask the rewriter for a candidate; never touches the disk."""
        try:
            rewrite = await self.rewriter.rewrite(request)
        except Exception as e:
            raise ToolInvocationError(f"Rewriter failed: {e}") from e

        self.usage.add(rewrite.usage)

        if rewrite.content is None:
            raise InvalidRewriteOutput("Rewriter returned no usable file")
        if rewrite.content.rstrip("\n") == backup.baseline_text.rstrip("\n"):
            raise InvalidRewriteOutput("Rewriter returned the file unchanged")
        return rewrite.content

    async def _validate(self, candidate: str, backup: BaselineBackup) -> None:
        """Write the candidate and compile the whole project; restore on failure."""
        try:
            backup.write_candidate(candidate)
        except OSError as e:
            backup.restore(force=True)
            raise ToolInvocationError(f"Cannot write candidate: {e}") from e

        try:
            outcome = await self.validator.compile_only(self.project_dir)
        except ToolInvocationError:
            backup.restore()
            raise
        except Exception as e:
            backup.restore()
            raise ToolInvocationError(f"Build validator failed: {e}") from e

        if not outcome.ok:
            backup.restore()
            raise CompileFailed("Compilation failed", diagnostic=outcome.output)

    async def _certify(self, report: FixReport) -> None:
        """One whole-project compile and test run over the final tree."""
        self.logger.info("Final build check...")
        try:
            build = await self.validator.compile_only(self.project_dir)
            report.build_passed, report.build_output = build.ok, build.output
        except Exception as e:
            self.logger.error(f"Final build check could not run: {e}")
            report.build_passed, report.build_output = False, str(e)

        if not self.settings.run_tests:
            return

        self.logger.info("Running test suite...")
        try:
            tests = await self.validator.run_tests(self.project_dir)
            report.tests_passed, report.test_output = tests.ok, tests.output
        except Exception as e:
            self.logger.error(f"Test run could not run: {e}")
            report.tests_passed, report.test_output = False, str(e)

        if not report.tests_passed:
            self.logger.warning("Tests failed after fixes; committed files are kept")

    def _transition(self, file_path: str, state: FixState, attempt: Optional[int] = None) -> None:
        self.states[file_path] = state
        suffix = f" (attempt {attempt})" if attempt else ""
        self.logger.debug(f"  {file_path}: {state.value}{suffix}")
