"""SonarQube-compatible scanner API client."""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

import httpx

from ..config import ScannerSettings
from ..errors import (
    ProjectNotFoundError,
    ProjectPermissionError,
    ScanError,
    ScannerAuthError,
    ScannerConnectionError,
)
from ..models import Facets, IssueType, Severity
from ..utils import get_logger


FILE_QUALIFIER = "FIL"


@dataclass
class ConnectionStatus:
    """Result of the server reachability/credentials check."""
    connected: bool
    version: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProjectStatus:
    """Result of the project existence/browse check."""
    found: bool
    name: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class IssueQuery:
    """Filters for one issue search."""
    project_key: str
    branch: Optional[str] = None
    types: FrozenSet[IssueType] = frozenset(IssueType)
    severities: FrozenSet[Severity] = frozenset(Severity)
    page_size: int = 500

    def params(self, page: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "componentKeys": self.project_key,
            "resolved": "false",
            "types": ",".join(sorted(t.value for t in self.types)),
            "severities": ",".join(s.value for s in Severity.descending() if s in self.severities),
            "ps": self.page_size,
            "p": page,
        }
        if self.branch:
            params["branch"] = self.branch
        return params


@dataclass
class IssuePage:
    """One page of raw issues plus its side-channel metadata."""
    page: int
    total: int
    issues: List[Dict[str, Any]] = field(default_factory=list)
    component_map: Dict[str, str] = field(default_factory=dict)  # component key -> file path
    facets: Optional[Facets] = None

    def __len__(self) -> int:
        return len(self.issues)


class SonarClient:
    """
    Thin async wrapper around the scanner web API.

    Handles:
    - Reachability and credential checks
    - Project lookup
    - Paged issue search with component resolution and facets
    """

    def __init__(
        self,
        settings: ScannerSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Scanner connection settings
            transport: Optional transport override (used by tests)
        """
        self.settings = settings
        self.logger = get_logger("tools.sonar")
        auth = (settings.token, "") if settings.token else None
        self._client = httpx.AsyncClient(
            base_url=settings.url,
            auth=auth,
            timeout=settings.timeout,
            transport=transport or httpx.AsyncHTTPTransport(retries=settings.http_retries),
        )

    async def __aenter__(self) -> "SonarClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            return await self._client.get(endpoint, params=params)
        except httpx.RequestError as e:
            raise ScannerConnectionError(
                f"Cannot reach scanner at {self.settings.url}: {e}"
            ) from e

    def _decode(self, response: httpx.Response, error_cls=ScannerConnectionError) -> Dict[str, Any]:
        """Parse a JSON body; proxies and login pages answer with HTML."""
        try:
            data = response.json()
        except ValueError as e:
            raise error_cls(
                f"Unexpected non-JSON response from {response.request.url} (HTTP {response.status_code})"
            ) from e
        if not isinstance(data, dict):
            raise error_cls(f"Unexpected response shape from {response.request.url}")
        return data

    async def check_connection(self) -> ConnectionStatus:
        """Verify the server is up and the credentials are accepted."""
        try:
            response = await self._get("/api/system/status")
            if response.status_code != 200:
                return ConnectionStatus(
                    connected=False,
                    error=f"Server status check failed with HTTP {response.status_code}",
                )
            status = self._decode(response)
        except ScannerConnectionError as e:
            return ConnectionStatus(connected=False, error=str(e))

        version = status.get("version")
        if status.get("status") != "UP":
            return ConnectionStatus(
                connected=False,
                version=version,
                error=f"Scanner is not ready (status {status.get('status')})",
            )

        try:
            response = await self._get("/api/authentication/validate")
            if response.status_code == 401:
                return ConnectionStatus(connected=True, version=version, error="auth_invalid")
            valid = self._decode(response).get("valid", False)
        except ScannerConnectionError as e:
            return ConnectionStatus(connected=False, version=version, error=str(e))

        if not valid:
            return ConnectionStatus(connected=True, version=version, error="auth_invalid")

        return ConnectionStatus(connected=True, version=version)

    async def check_project(self, project_key: str) -> ProjectStatus:
        """Verify the project exists and can be browsed."""
        response = await self._get("/api/components/show", params={"component": project_key})

        if response.status_code == 200:
            component = self._decode(response).get("component", {})
            return ProjectStatus(found=True, name=component.get("name", project_key))
        if response.status_code == 404:
            return ProjectStatus(found=False, error="not_found")
        if response.status_code == 403:
            return ProjectStatus(found=True, error="permission_denied")
        if response.status_code == 401:
            return ProjectStatus(found=False, error="auth_invalid")
        return ProjectStatus(found=False, error=f"HTTP {response.status_code}")

    async def preflight(self) -> ProjectStatus:
        """
        Two-step preflight: server then project.

        Raises:
            ScannerConnectionError: Server unreachable
            ScannerAuthError: Credentials rejected
            ProjectNotFoundError: Project does not exist
            ProjectPermissionError: Project exists but cannot be browsed
        """
        status = await self.check_connection()
        if not status.connected:
            raise ScannerConnectionError(status.error or "Scanner unreachable")
        if status.error == "auth_invalid":
            raise ScannerAuthError(f"Credentials rejected by {self.settings.url}")
        self.logger.info(f"Connected to scanner {self.settings.url} (version {status.version})")

        key = self.settings.project_key
        project = await self.check_project(key)
        if project.error == "permission_denied":
            raise ProjectPermissionError(f"No permission to browse project '{key}'")
        if project.error == "auth_invalid":
            raise ScannerAuthError(f"Credentials rejected while looking up project '{key}'")
        if not project.found:
            raise ProjectNotFoundError(f"Project '{key}' not found ({project.error})")
        self.logger.info(f"Project '{key}' found: {project.name}")
        return project

    async def search_issues(self, query: IssueQuery, page: int, with_facets: bool = False) -> IssuePage:
        """
        Fetch one page of unresolved issues.

        Args:
            query: Search filters
            page: 1-based page number
            with_facets: Ask the server for type/severity facet counts

        Returns:
            IssuePage with raw issues, file component map and optional facets
        """
        params = query.params(page)
        if with_facets:
            params["facets"] = "types,severities"

        response = await self._get("/api/issues/search", params=params)
        if response.status_code == 401:
            raise ScannerAuthError("Credentials rejected during issue search")
        if response.status_code == 403:
            raise ProjectPermissionError(f"No permission to search issues of '{query.project_key}'")
        if response.status_code == 404:
            raise ProjectNotFoundError(f"Project '{query.project_key}' not found")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ScanError(f"Issue search failed: {e}") from e

        data = self._decode(response, ScanError)
        total = data.get("paging", {}).get("total", data.get("total", 0))

        component_map = {
            c["key"]: c["path"]
            for c in data.get("components", [])
            if c.get("qualifier") == FILE_QUALIFIER and c.get("path")
        }

        return IssuePage(
            page=page,
            total=int(total),
            issues=data.get("issues", []),
            component_map=component_map,
            facets=parse_facets(data.get("facets")) if with_facets else None,
        )


def parse_facets(raw: Optional[List[Dict[str, Any]]]) -> Optional[Facets]:
    """Read type/severity counts from the search response's facets block."""
    if not raw:
        return None

    facets = Facets()
    for facet in raw:
        prop = facet.get("property")
        for entry in facet.get("values", []):
            try:
                if prop == "types":
                    facets.by_type[IssueType.parse(entry["val"])] = int(entry["count"])
                elif prop == "severities":
                    facets.by_severity[Severity.parse(entry["val"])] = int(entry["count"])
            except (KeyError, ValueError):
                continue  # e.g. SECURITY_HOTSPOT
    return facets
