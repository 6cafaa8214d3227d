"""Remote issue source backed by a SonarQube-compatible scanner."""

from dataclasses import replace
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..config import ScannerSettings
from ..models import Facets, Issue, IssueType, Severity, parse_effort
from ..tools import IssuePage, IssueQuery, SonarClient
from ..utils import get_logger
from .issue_source import IssueSelectors, IssueSource, SourceResult


# The scanner refuses to page past this many matches for a single query
MAX_RESULT_WINDOW = 10_000

logger = get_logger("pipeline.remote_source")


def normalize_issue(raw: Dict[str, Any], component_map: Dict[str, str]) -> Optional[Issue]:
    """
    Convert a raw scanner finding into an Issue.

    Findings with an unsupported type or severity are dropped (None).
    Findings whose component has no file path are kept with an empty
    file_path so the planner can report them as unlocatable.
    """
    key = raw.get("key", "")
    try:
        issue_type = IssueType.parse(raw.get("type", ""))
        severity = Severity.parse(raw.get("severity", ""))
    except ValueError:
        logger.warning(f"Dropping issue {key}: unsupported type/severity "
                       f"{raw.get('type')}/{raw.get('severity')}")
        return None

    text_range = raw.get("textRange") or {}
    line_start = int(text_range.get("startLine") or raw.get("line") or 0)
    line_end = int(text_range.get("endLine") or line_start)

    component = raw.get("component", "")
    file_path = component_map.get(component, "")
    if not file_path:
        logger.warning(f"Issue {key}: cannot resolve component '{component}' to a file, "
                       f"keeping it as unlocatable")

    return Issue(
        key=key,
        rule=raw.get("rule", ""),
        type=issue_type,
        severity=severity,
        message=raw.get("message", ""),
        file_path=file_path,
        line_start=line_start,
        line_end=line_end,
        effort_minutes=parse_effort(raw.get("effort") or raw.get("debt")),
        tags=frozenset(raw.get("tags", [])),
        component=component or None,
    )


class RemoteIssueSource(IssueSource):
    """
    Fetches issues from the scanner's paged search API.

    Features:
    - Two-step preflight (server, then project), failing closed
    - Lazy page iteration with a hard page ceiling
    - Severity-first narrowing when the match count exceeds the cap
    - Facets read once from the first response
    """

    is_remote = True

    def __init__(
        self,
        settings: ScannerSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Scanner connection settings
            transport: Optional httpx transport override (used by tests)
        """
        self.settings = settings
        self._transport = transport
        self.requests_made = 0

    @property
    def page_size(self) -> int:
        return self.settings.page_size

    @property
    def max_pages(self) -> int:
        return max(1, MAX_RESULT_WINDOW // self.page_size)

    def _client(self) -> SonarClient:
        return SonarClient(self.settings, transport=self._transport)

    async def fetch_all(self, selectors: IssueSelectors) -> SourceResult:
        """Preflight, then fetch up to selectors.max_issues issues."""
        async with self._client() as client:
            await client.preflight()
            return await self._fetch(client, selectors)

    async def _fetch(self, client: SonarClient, selectors: IssueSelectors) -> SourceResult:
        query = IssueQuery(
            project_key=self.settings.project_key,
            branch=self.settings.branch,
            types=selectors.types,
            severities=selectors.severities,
            page_size=self.page_size,
        )

        first = await self._search(client, query, page=1, with_facets=True)
        total = first.total
        logger.info(f"Scanner reports {total} matching issues (cap {selectors.max_issues})")

        if total <= selectors.max_issues and total <= MAX_RESULT_WINDOW:
            issues = await self._collect(client, query, selectors.max_issues, first_page=first)
        else:
            logger.info("Too many matches, narrowing by severity (highest first)")
            issues = await self._narrow_by_severity(client, query, selectors, first.facets)

        truncated = len(issues) < total
        if truncated:
            logger.warning(f"Returning {len(issues)} of {total} issues")

        return SourceResult(issues=issues, facets=first.facets, truncated=truncated)

    async def _search(self, client: SonarClient, query: IssueQuery, page: int,
                      with_facets: bool = False) -> IssuePage:
        self.requests_made += 1
        return await client.search_issues(query, page=page, with_facets=with_facets)

    async def iter_pages(
        self,
        client: SonarClient,
        query: IssueQuery,
        first_page: Optional[IssuePage] = None,
    ) -> AsyncIterator[IssuePage]:
        """
        Yield successive pages until a short page, the reported total, or the
        page ceiling. Pages are only requested when the consumer asks for them.
        """
        page_number = 1
        page = first_page

        while page_number <= self.max_pages:
            if page is None:
                page = await self._search(client, query, page=page_number)
            yield page

            if len(page) < query.page_size:
                return
            if page_number * query.page_size >= page.total:
                return
            page_number += 1
            page = None

        logger.warning(f"Stopped after {self.max_pages} pages (result window {MAX_RESULT_WINDOW})")

    async def _collect(
        self,
        client: SonarClient,
        query: IssueQuery,
        limit: int,
        first_page: Optional[IssuePage] = None,
    ) -> List[Issue]:
        """Consume pages until `limit` normalized issues are collected."""
        issues: List[Issue] = []

        async for page in self.iter_pages(client, query, first_page):
            for raw in page.issues:
                issue = normalize_issue(raw, page.component_map)
                if issue is not None:
                    issues.append(issue)
            if len(issues) >= limit:
                break

        return issues[:limit]

    async def _narrow_by_severity(
        self,
        client: SonarClient,
        query: IssueQuery,
        selectors: IssueSelectors,
        facets: Optional[Facets],
    ) -> List[Issue]:
        """Fill the cap one severity at a time, most severe first."""
        collected: List[Issue] = []

        for severity in Severity.descending():
            remaining = selectors.max_issues - len(collected)
            if remaining <= 0:
                break
            if severity not in selectors.severities:
                continue
            if facets is not None and facets.by_severity and facets.severity_count(severity) == 0:
                continue

            narrowed = replace(query, severities=frozenset({severity}))
            batch = await self._collect(client, narrowed, remaining)
            logger.info(f"  {severity.value}: {len(batch)} issues")
            collected.extend(batch)

        return collected
