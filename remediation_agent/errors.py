"""
Error taxonomy for the remediation agent.

Scan-phase errors are fatal: they abort the whole operation and are reported
verbatim. Fix-phase errors are contained to the file being fixed and drive
the bounded retry loop.
"""

from typing import List, Optional


class RemediationError(Exception):
    """Base exception for all remediation agent errors."""


class ConfigError(RemediationError, ValueError):
    """Raised when a configuration value is missing or invalid."""


# --- Scan phase (fatal) ---


class ScanError(RemediationError):
    """Base for preflight and fetch failures against the issue source."""


class ScannerConnectionError(ScanError):
    """Scanner server is unreachable."""


class ScannerAuthError(ScanError):
    """Credentials were rejected by the scanner server."""


class ProjectNotFoundError(ScanError):
    """Target project does not exist on the scanner server."""


class ProjectPermissionError(ScanError):
    """Credentials are valid but the project cannot be browsed."""


# --- Fix phase (contained per file) ---


class FixAttemptError(RemediationError):
    """A single fix attempt failed; the orchestrator may retry."""

    def __init__(self, message: str, diagnostic: str = ""):
        super().__init__(message)
        self.diagnostic = diagnostic


class CompileFailed(FixAttemptError):
    """Candidate content did not pass the whole-project compile check."""


class InvalidRewriteOutput(FixAttemptError):
    """Rewriter produced no usable replacement body."""


class ToolInvocationError(FixAttemptError):
    """Unexpected failure while calling the rewriter or the build validator."""


class RetriesExhausted(RemediationError):
    """Every attempt for a file failed; the baseline has been restored."""

    def __init__(self, file_path: str, attempts: int, last_error: Optional[str] = None):
        message = f"{file_path}: gave up after {attempts} attempt(s)"
        if last_error:
            message += f" ({last_error})"
        super().__init__(message)
        self.file_path = file_path
        self.attempts = attempts
        self.last_error = last_error


__all__: List[str] = [
    "RemediationError",
    "ConfigError",
    "ScanError",
    "ScannerConnectionError",
    "ScannerAuthError",
    "ProjectNotFoundError",
    "ProjectPermissionError",
    "FixAttemptError",
    "CompileFailed",
    "InvalidRewriteOutput",
    "ToolInvocationError",
    "RetriesExhausted",
]
