"""Build validator: compile-only check and test run for a project directory."""

import asyncio
import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..errors import ToolInvocationError
from ..utils import get_logger


MAX_DIAGNOSTIC_CHARS = 4000


@dataclass
class BuildOutcome:
    """Pass/fail plus diagnostic text from a build step."""
    ok: bool
    output: str = ""


class BuildValidator(ABC):
    """Compiles and tests the whole project."""

    @abstractmethod
    async def compile_only(self, project_dir: Path) -> BuildOutcome:
        """Compile the whole project without running tests."""

    @abstractmethod
    async def run_tests(self, project_dir: Path) -> BuildOutcome:
        """Run the project's test suite."""


def detect_build_commands(project_dir: Path) -> Tuple[List[str], List[str]]:
    """
    Pick compile and test commands from the files present in the project.

    The Python fallback is only used for trees without Java sources, since
    compileall never looks at them.

    Returns:
        Tuple of (compile_command, test_command)

    Raises:
        ToolInvocationError: No build file found for a Java tree
    """
    project_dir = Path(project_dir)

    if (project_dir / "pom.xml").exists():
        return ["mvn", "-q", "-B", "compile"], ["mvn", "-q", "-B", "test"]

    gradlew = project_dir / "gradlew"
    if gradlew.exists():
        return [str(gradlew), "-q", "compileJava"], [str(gradlew), "-q", "test"]

    if (project_dir / "build.gradle").exists() or (project_dir / "build.gradle.kts").exists():
        return ["gradle", "-q", "compileJava"], ["gradle", "-q", "test"]

    if next(project_dir.rglob("*.java"), None) is not None:
        raise ToolInvocationError(
            f"No compile command for Java sources in {project_dir}: add pom.xml or build.gradle, "
            f"or pass an explicit compile command"
        )

    return (
        [sys.executable, "-m", "compileall", "-q", "."],
        [sys.executable, "-m", "pytest", "-q"],
    )


def tail(text: str, limit: int = MAX_DIAGNOSTIC_CHARS) -> str:
    """Keep the end of long build output, where compilers put the errors."""
    if len(text) <= limit:
        return text
    return "...\n" + text[-limit:]


class CommandBuildValidator(BuildValidator):
    """
    Runs external build commands in the project directory.

    Handles:
    - Auto-detecting Maven, Gradle or Python projects
    - Timeouts and missing executables (raised as ToolInvocationError)
    """

    def __init__(
        self,
        compile_command: Optional[Sequence[str]] = None,
        test_command: Optional[Sequence[str]] = None,
        timeout: float = 900.0,
    ):
        self.compile_command = list(compile_command) if compile_command else None
        self.test_command = list(test_command) if test_command else None
        self.timeout = timeout
        self.logger = get_logger("tools.build")

    async def compile_only(self, project_dir: Path) -> BuildOutcome:
        compile_cmd = self.compile_command or detect_build_commands(project_dir)[0]
        return await self._run(compile_cmd, project_dir)

    async def run_tests(self, project_dir: Path) -> BuildOutcome:
        test_cmd = self.test_command or detect_build_commands(project_dir)[1]
        return await self._run(test_cmd, project_dir)

    async def _run(self, cmd: List[str], project_dir: Path) -> BuildOutcome:
        """Run a command and return its combined output."""
        self.logger.debug(f"Running: {' '.join(cmd)} (cwd={project_dir})")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(project_dir),
                env=os.environ.copy(),
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolInvocationError(f"Cannot run {cmd[0]}: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ToolInvocationError(
                f"{' '.join(cmd)} timed out after {self.timeout:.0f}s"
            ) from e

        output = stdout.decode(errors="replace")
        return BuildOutcome(ok=process.returncode == 0, output=tail(output))
