"""Tests for build command detection and the command-based validator."""

import asyncio
import sys

import pytest

from remediation_agent.errors import ToolInvocationError
from remediation_agent.tools import CommandBuildValidator, detect_build_commands
from remediation_agent.tools.build_tool import tail


class TestDetectBuildCommands:
    """Tests for picking the build tool from project files."""

    def test_maven_project(self, tmp_path):
        (tmp_path / "pom.xml").write_text("<project/>")

        compile_cmd, test_cmd = detect_build_commands(tmp_path)

        assert compile_cmd == ["mvn", "-q", "-B", "compile"]
        assert test_cmd == ["mvn", "-q", "-B", "test"]

    def test_gradle_wrapper_preferred_over_gradle(self, tmp_path):
        (tmp_path / "build.gradle").write_text("")
        (tmp_path / "gradlew").write_text("")

        compile_cmd, _ = detect_build_commands(tmp_path)

        assert compile_cmd[0] == str(tmp_path / "gradlew")

    def test_kotlin_gradle_script(self, tmp_path):
        (tmp_path / "build.gradle.kts").write_text("")

        compile_cmd, test_cmd = detect_build_commands(tmp_path)

        assert compile_cmd == ["gradle", "-q", "compileJava"]
        assert test_cmd == ["gradle", "-q", "test"]

    def test_fallback_is_python(self, tmp_path):
        (tmp_path / "app.py").write_text("print(1)\n")

        compile_cmd, _ = detect_build_commands(tmp_path)

        assert compile_cmd[:3] == [sys.executable, "-m", "compileall"]

    def test_java_tree_without_build_file_has_no_compile_command(self, tmp_path):
        """Given Java sources and no build file, detection should refuse rather than pass everything."""
        # Given
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "Foo.java").write_text("class Foo {}\n")

        # When / Then
        with pytest.raises(ToolInvocationError, match="No compile command"):
            detect_build_commands(tmp_path)


class TestCommandBuildValidator:
    """Tests for running build commands."""

    def test_successful_command(self, tmp_path):
        validator = CommandBuildValidator(compile_command=[sys.executable, "-c", "print('BUILD OK')"])

        outcome = asyncio.run(validator.compile_only(tmp_path))

        assert outcome.ok is True
        assert "BUILD OK" in outcome.output

    def test_failing_command_captures_stderr(self, tmp_path):
        """Given a failing compiler, the diagnostic should come back as output."""
        # Given
        script = "import sys; sys.stderr.write('Foo.java:3: error: missing return\\n'); sys.exit(1)"
        validator = CommandBuildValidator(compile_command=[sys.executable, "-c", script])

        # When
        outcome = asyncio.run(validator.compile_only(tmp_path))

        # Then
        assert outcome.ok is False
        assert "missing return" in outcome.output

    def test_command_runs_in_project_dir(self, tmp_path):
        script = "import os; print(os.getcwd())"
        validator = CommandBuildValidator(test_command=[sys.executable, "-c", script])

        outcome = asyncio.run(validator.run_tests(tmp_path))

        assert outcome.output.strip() == str(tmp_path.resolve())

    def test_missing_executable_raises(self, tmp_path):
        validator = CommandBuildValidator(compile_command=["definitely-not-a-build-tool-xyz"])

        with pytest.raises(ToolInvocationError):
            asyncio.run(validator.compile_only(tmp_path))

    def test_java_only_tree_fails_compile_check(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "Foo.java").write_text("Here is my explanation of the fix, no code.\n")
        validator = CommandBuildValidator()

        with pytest.raises(ToolInvocationError):
            asyncio.run(validator.compile_only(tmp_path))

    def test_timeout_raises(self, tmp_path):
        validator = CommandBuildValidator(
            compile_command=[sys.executable, "-c", "import time; time.sleep(10)"],
            timeout=0.5,
        )

        with pytest.raises(ToolInvocationError, match="timed out"):
            asyncio.run(validator.compile_only(tmp_path))


def test_tail_keeps_end_of_long_output():
    text = "x" * 100 + "ERROR at end"

    trimmed = tail(text, limit=20)

    assert trimmed.endswith("ERROR at end")
    assert trimmed.startswith("...")
