"""Repository analysis against the GitHub and GitLab REST APIs.

The repository record itself is required: a missing repository is `NotFound`
and any other API or transport failure is an `UpstreamFailure`. README,
license file and dependency graph lookups are best effort and leave their
fields empty when they fail.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote, urlparse

import requests

from galaxy_workflow.collaborators import RepositoryAnalysis
from galaxy_workflow.config import WorkflowSettings
from galaxy_workflow.errors import NotFound, UpstreamFailure
from galaxy_workflow.workflow.galaxy_creation import normalize_git_url, parse_repository_url

logger = logging.getLogger(__name__)

README_FILES = ("README.md", "README.txt", "README")
LICENSE_FILES = ("LICENSE", "LICENSE.txt", "LICENSE.md", "COPYING", "COPYING.txt")
README_LIMIT = 10_000

# Checked in order against the text of a license file.
_LICENSE_MARKERS = (
    ("MIT", "MIT"),
    ("Apache", "Apache-2.0"),
    ("GPL", "GPL-3.0"),
    ("BSD", "BSD-3-Clause"),
)


def detect_license(text: str) -> str | None:
    for marker, spdx_id in _LICENSE_MARKERS:
        if marker in text:
            return spdx_id
    return None


def sbom_dependencies(data: dict[str, Any]) -> list[str]:
    """Dependency names from a dependency-graph SBOM response.

    Reads SPDX `packages` and CycloneDX-style `components` (libraries and
    applications only). The entry describing the repository itself is skipped.
    """

    sbom = data.get("sbom") or {}
    described = set(sbom.get("documentDescribes") or [])
    names: list[str] = []
    for package in sbom.get("packages") or []:
        if package.get("SPDXID") in described:
            continue
        name = package.get("name")
        if name:
            version = package.get("versionInfo")
            names.append(f"{name}@{version}" if version else name)
    for component in sbom.get("components") or []:
        if component.get("type") not in ("library", "application"):
            continue
        name = component.get("name")
        if name:
            version = component.get("version")
            names.append(f"{name}@{version}" if version else name)
    return names


class HttpRepositoryAnalyzer:
    """Fetches repository metadata, README, license and dependencies over HTTP."""

    def __init__(
        self,
        *,
        github_token: str = "",
        gitlab_token: str = "",
        github_api_url: str = "https://api.github.com",
        github_raw_url: str = "https://raw.githubusercontent.com",
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._github_token = github_token
        self._gitlab_token = gitlab_token
        self._github_api_url = github_api_url.rstrip("/")
        self._github_raw_url = github_raw_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "galaxy-workflow"})

    @classmethod
    def from_settings(
        cls, settings: WorkflowSettings, *, session: requests.Session | None = None
    ) -> HttpRepositoryAnalyzer:
        return cls(
            github_token=settings.github_token,
            gitlab_token=settings.gitlab_token,
            github_api_url=settings.github_api_url,
            timeout=settings.repository_api_timeout_seconds,
            session=session,
        )

    async def analyze(self, url: str) -> RepositoryAnalysis:
        return await asyncio.to_thread(self.analyze_sync, url)

    def analyze_sync(self, url: str) -> RepositoryAnalysis:
        provider, owner, repo = parse_repository_url(url)
        normalized = normalize_git_url(url)
        if provider == "github":
            analysis = self._analyze_github(normalized, owner, repo)
        else:
            analysis = self._analyze_gitlab(normalized, owner, repo)
        logger.info(
            "Repository analyzed",
            extra={
                "provider": provider,
                "repository": f"{owner}/{repo}",
                "license": analysis.license,
                "dependencies": len(analysis.dependencies),
                "readme_chars": len(analysis.readme),
            },
        )
        return analysis

    def _github_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}
        if self._github_token:
            headers["Authorization"] = f"Bearer {self._github_token}"
        return headers

    def _gitlab_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._gitlab_token:
            headers["Authorization"] = f"Bearer {self._gitlab_token}"
        return headers

    def _require_json(self, url: str, headers: dict[str, str], what: str) -> dict[str, Any]:
        try:
            resp = self._session.get(url, headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            raise UpstreamFailure(f"{what} request failed: {e}") from e
        if resp.status_code == 404:
            raise NotFound("Repository not found")
        try:
            resp.raise_for_status()
            data: dict[str, Any] = resp.json()
        except requests.HTTPError as e:
            raise UpstreamFailure(f"{what} error: {resp.status_code}") from e
        except ValueError as e:
            raise UpstreamFailure(f"{what} returned invalid JSON") from e
        return data

    def _optional(self, url: str, headers: dict[str, str] | None = None) -> requests.Response | None:
        try:
            resp = self._session.get(url, headers=headers or {}, timeout=self._timeout)
        except requests.RequestException as e:
            logger.debug("Optional repository lookup failed", extra={"url": url, "error": str(e)})
            return None
        return resp if resp.ok else None

    def _first_text(self, urls: list[str], headers: dict[str, str] | None = None) -> str | None:
        for url in urls:
            resp = self._optional(url, headers)
            if resp is not None:
                return resp.text
        return None

    def _analyze_github(self, url: str, owner: str, repo: str) -> RepositoryAnalysis:
        api = f"{self._github_api_url}/repos/{owner}/{repo}"
        data = self._require_json(api, self._github_headers(), "GitHub API")
        branch = data.get("default_branch") or "main"

        raw = f"{self._github_raw_url}/{owner}/{repo}/{branch}"
        readme = self._first_text([f"{raw}/{name}" for name in README_FILES]) or ""

        license_id = (data.get("license") or {}).get("spdx_id")
        if not license_id or license_id == "NOASSERTION":
            text = self._first_text([f"{raw}/{name}" for name in LICENSE_FILES])
            license_id = detect_license(text) if text else None

        dependencies: list[str] = []
        sbom = self._optional(f"{api}/dependency-graph/sbom", self._github_headers())
        if sbom is not None:
            try:
                dependencies = sbom_dependencies(sbom.json())
            except ValueError:
                logger.debug("Dependency graph returned invalid JSON", extra={"repo": repo})

        return RepositoryAnalysis(
            url=url,
            provider="github",
            owner=owner,
            repo=repo,
            description=data.get("description") or "",
            license=license_id,
            readme=readme[:README_LIMIT],
            dependencies=dependencies,
            default_branch=branch,
            language=data.get("language"),
            topics=list(data.get("topics") or []),
        )

    def _analyze_gitlab(self, url: str, owner: str, repo: str) -> RepositoryAnalysis:
        parsed = urlparse(url)
        path = parsed.path.strip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        api = f"https://{parsed.hostname}/api/v4/projects/{quote(path, safe='')}"
        data = self._require_json(api, self._gitlab_headers(), "GitLab API")
        branch = data.get("default_branch") or "main"

        def file_urls(names: tuple[str, ...]) -> list[str]:
            return [
                f"{api}/repository/files/{quote(name, safe='')}/raw?ref={quote(branch, safe='')}"
                for name in names
            ]

        readme = self._first_text(file_urls(README_FILES), self._gitlab_headers()) or ""
        text = self._first_text(file_urls(LICENSE_FILES), self._gitlab_headers())

        return RepositoryAnalysis(
            url=url,
            provider="gitlab",
            owner=owner,
            repo=repo,
            description=data.get("description") or "",
            license=detect_license(text) if text else None,
            readme=readme[:README_LIMIT],
            default_branch=branch,
            topics=list(data.get("topics") or []),
        )
