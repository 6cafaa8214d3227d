"""Local fallback issue source: regex detectors plus an optional deep scan."""

import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Pattern, Sequence, Tuple

from claude_agent_sdk import (
    ClaudeSDKClient,
    ClaudeAgentOptions,
    tool,
    create_sdk_mcp_server,
    ResultMessage,
)

from ..config import LocalScanSettings
from ..models import Facets, Issue, IssueType, Severity
from ..tools import StorageTool
from ..utils import get_logger
from .issue_source import IssueSelectors, IssueSource, SourceResult


logger = get_logger("pipeline.local_source")

COMMENT_PREFIXES = ("//", "/*", "*", "#")
TEST_DIR_NAMES = frozenset({"test", "tests", "__tests__"})


@dataclass(frozen=True)
class PatternDetector:
    """One regex rule mapped to a fixed (rule, type, severity) triple."""
    rule: str
    type: IssueType
    severity: Severity
    pattern: Pattern[str]
    message: str
    effort_minutes: int = 5

    def matches(self, line: str) -> bool:
        return self.pattern.search(line) is not None


DEFAULT_DETECTORS: Tuple[PatternDetector, ...] = (
    PatternDetector(
        rule="java:S2068",
        type=IssueType.VULNERABILITY,
        severity=Severity.CRITICAL,
        pattern=re.compile(
            r"(?i)\b\w*(password|passwd|pwd|secret|token|api_?key|credential)\w*\s*=\s*\"[^\"]+\""
        ),
        message="Remove this hard-coded credential.",
        effort_minutes=30,
    ),
    PatternDetector(
        rule="java:S3649",
        type=IssueType.VULNERABILITY,
        severity=Severity.BLOCKER,
        pattern=re.compile(r"\.(executeQuery|executeUpdate|execute|prepareStatement)\s*\(\s*\"[^\"]*\"\s*\+"),
        message="Use a parameterized query instead of concatenating values into SQL.",
        effort_minutes=30,
    ),
    PatternDetector(
        rule="java:S4790",
        type=IssueType.VULNERABILITY,
        severity=Severity.CRITICAL,
        pattern=re.compile(r"MessageDigest\.getInstance\s*\(\s*\"(MD2|MD5|SHA-?1)\""),
        message="Use a stronger hashing algorithm than MD5/SHA-1.",
        effort_minutes=15,
    ),
    PatternDetector(
        rule="java:S4973",
        type=IssueType.BUG,
        severity=Severity.MAJOR,
        pattern=re.compile(r"(==|!=)\s*\"|\"\s*(==|!=)"),
        message="Strings should be compared using equals().",
    ),
    PatternDetector(
        rule="java:S1147",
        type=IssueType.CODE_SMELL,
        severity=Severity.BLOCKER,
        pattern=re.compile(r"\bSystem\.exit\s*\("),
        message="Remove this call to System.exit().",
        effort_minutes=30,
    ),
    PatternDetector(
        rule="java:S106",
        type=IssueType.CODE_SMELL,
        severity=Severity.MAJOR,
        pattern=re.compile(r"\bSystem\.(out|err)\.print"),
        message="Replace this use of System.out or System.err by a logger.",
        effort_minutes=10,
    ),
    PatternDetector(
        rule="java:S1148",
        type=IssueType.CODE_SMELL,
        severity=Severity.MINOR,
        pattern=re.compile(r"\.printStackTrace\s*\(\s*\)"),
        message="Use a logger to log this exception instead of printStackTrace().",
        effort_minutes=10,
    ),
    PatternDetector(
        rule="java:S108",
        type=IssueType.CODE_SMELL,
        severity=Severity.MAJOR,
        pattern=re.compile(r"catch\s*\([^)]*\)\s*\{\s*\}"),
        message="Either remove or fill this empty catch block.",
    ),
)


def is_comment_line(line: str) -> bool:
    return line.lstrip().startswith(COMMENT_PREFIXES)


def is_test_path(relative_path: str) -> bool:
    return any(part.lower() in TEST_DIR_NAMES for part in Path(relative_path).parts[:-1])


class IssueKeyFactory:
    """Synthesizes per-run unique keys of the form "<path>:<line>"."""

    def __init__(self):
        self._seen: Dict[str, int] = {}

    def next_key(self, file_path: str, line: int) -> str:
        base = f"{file_path}:{line}"
        count = self._seen.get(base, 0) + 1
        self._seen[base] = count
        return base if count == 1 else f"{base}#{count}"


class DeepScanner(ABC):
    """Generative scan of a single file, layered on top of pattern detection."""

    @abstractmethod
    async def scan_file(self, file_path: str, content: str) -> List[Dict[str, Any]]:
        """
        Return raw findings for a file.

        Each finding is a dict with line_start, rule, message and optionally
        line_end, issue_type and severity.
        """


DEEP_SCAN_PROMPT = """
You are a static analysis expert. Review the following file and report real defects only:
bugs, security vulnerabilities and significant code smells.

## File
{file_path}

```
{content}
```

## For Each Issue Found
Call the `store_issue` tool with:
- line_start / line_end: 1-based line numbers
- rule: a short rule identifier (e.g. java:S2095)
- issue_type: one of [BUG, VULNERABILITY, CODE_SMELL]
- severity: one of [BLOCKER, CRITICAL, MAJOR, MINOR, INFO]
- message: one sentence describing the problem

Do not report style preferences. Call store_issue once per issue.
"""


class ClaudeDeepScanner(DeepScanner):
    """Deep scan through the Claude Agent SDK, collecting results via a tool call."""

    def __init__(self, model: Optional[str] = None, max_turns: int = 10):
        self.model = model
        self.max_turns = max_turns

    def build_options(self, scan_server) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            system_prompt="You are a static analysis expert. Report only real, actionable issues.",
            mcp_servers={"scan": scan_server},
            tools=[],  # only the store_issue MCP tool
            allowed_tools=["mcp__scan__store_issue"],
            max_turns=self.max_turns,
            model=self.model,
        )

    async def scan_file(self, file_path: str, content: str) -> List[Dict[str, Any]]:
        storage = StorageTool(required=("line_start", "message"))

        @tool(
            "store_issue",
            "Store an issue found in the file",
            {
                "line_start": int,
                "line_end": int,
                "rule": str,
                "issue_type": str,
                "severity": str,
                "message": str,
            }
        )
        async def store_issue(args: dict[str, Any]) -> dict[str, Any]:
            return storage.store(args)

        scan_server = create_sdk_mcp_server(
            name="deep-scan",
            version="1.0.0",
            tools=[store_issue]
        )

        options = self.build_options(scan_server)

        async with ClaudeSDKClient(options=options) as client:
            await client.query(DEEP_SCAN_PROMPT.format(file_path=file_path, content=content))

            async for message in client.receive_response():
                if isinstance(message, ResultMessage):
                    logger.debug(f"Deep scan of {file_path} finished in {message.duration_ms}ms")
                    if message.is_error:
                        logger.warning(f"Deep scan of {file_path} reported an error: {message.result}")

        return storage.values


class LocalPatternSource(IssueSource):
    """
    Scans source files under the project root without a remote service.

    Pattern detection is deterministic and always runs; the deep scan only
    adds findings on top of it.
    """

    is_remote = False

    def __init__(
        self,
        project_dir: Path,
        settings: Optional[LocalScanSettings] = None,
        detectors: Sequence[PatternDetector] = DEFAULT_DETECTORS,
        deep_scanner: Optional[DeepScanner] = None,
        model: Optional[str] = None,
    ):
        self.project_dir = Path(project_dir)
        self.settings = settings or LocalScanSettings()
        self.detectors = tuple(detectors)
        if deep_scanner is None and self.settings.deep_scan:
            deep_scanner = ClaudeDeepScanner(model=model)
        self.deep_scanner = deep_scanner

    def iter_source_files(self) -> Iterator[Tuple[str, Path]]:
        """Yield (relative posix path, absolute path) for every source file."""
        excluded = {name.lower() for name in self.settings.exclude_dirs} | TEST_DIR_NAMES

        for root, dirs, files in os.walk(self.project_dir):
            dirs[:] = sorted(d for d in dirs if d.lower() not in excluded)
            for name in sorted(files):
                if not name.endswith(tuple(self.settings.extensions)):
                    continue
                path = Path(root) / name
                relative = path.relative_to(self.project_dir).as_posix()
                if is_test_path(relative):
                    continue
                yield relative, path

    def scan_text(self, relative_path: str, text: str, keys: IssueKeyFactory) -> List[Issue]:
        """Run every detector over every non-comment line of a file."""
        issues: List[Issue] = []

        for number, line in enumerate(text.splitlines(), start=1):
            if is_comment_line(line):
                continue
            for detector in self.detectors:
                if detector.matches(line):
                    issues.append(Issue(
                        key=keys.next_key(relative_path, number),
                        rule=detector.rule,
                        type=detector.type,
                        severity=detector.severity,
                        message=detector.message,
                        file_path=relative_path,
                        line_start=number,
                        line_end=number,
                        effort_minutes=detector.effort_minutes,
                        tags=frozenset({"pattern"}),
                    ))

        return issues

    async def _deep_scan(self, relative_path: str, text: str, keys: IssueKeyFactory) -> List[Issue]:
        try:
            findings = await self.deep_scanner.scan_file(relative_path, text)
        except Exception as e:
            logger.warning(f"Deep scan failed for {relative_path}, keeping pattern results: {e}")
            return []

        issues = []
        for data in findings:
            try:
                line_start = int(data.get("line_start", 0))
                issues.append(Issue(
                    key=keys.next_key(relative_path, line_start),
                    rule=data.get("rule") or "ai:deep-scan",
                    type=_parse_or(IssueType.parse, data.get("issue_type"), IssueType.CODE_SMELL),
                    severity=_parse_or(Severity.parse, data.get("severity"), Severity.MAJOR),
                    message=data.get("message", ""),
                    file_path=relative_path,
                    line_start=line_start,
                    line_end=int(data.get("line_end") or line_start),
                    tags=frozenset({"deep-scan"}),
                ))
            except (ValueError, TypeError) as e:
                logger.warning(f"Ignoring malformed deep-scan finding in {relative_path}: {e}")
        return issues

    async def fetch_all(self, selectors: IssueSelectors) -> SourceResult:
        keys = IssueKeyFactory()
        matches: List[Issue] = []
        scanned = 0

        for relative, path in self.iter_source_files():
            text = path.read_text(encoding="utf-8", errors="replace")
            scanned += 1
            matches.extend(self.scan_text(relative, text, keys))

            if self.deep_scanner is not None and \
                    text.count("\n") + 1 >= self.settings.deep_scan_min_lines:
                matches.extend(await self._deep_scan(relative, text, keys))

        matches = [issue for issue in matches if selectors.accepts(issue)]
        logger.info(f"Local scan: {len(matches)} issues in {scanned} files")

        facets = Facets.from_issues(matches)
        truncated = len(matches) > selectors.max_issues
        if truncated:
            matches = cap_by_severity(matches, selectors.max_issues)
            logger.warning(f"Keeping the {selectors.max_issues} most severe issues")

        return SourceResult(issues=matches, facets=facets, truncated=truncated)


def cap_by_severity(issues: List[Issue], limit: int) -> List[Issue]:
    """Keep the `limit` most severe issues, preserving their original order."""
    ranked = sorted(range(len(issues)), key=lambda i: -issues[i].severity.rank)
    keep = set(ranked[:limit])
    return [issue for i, issue in enumerate(issues) if i in keep]


def _parse_or(parse, value, default):
    if not value:
        return default
    try:
        return parse(value)
    except ValueError:
        return default
