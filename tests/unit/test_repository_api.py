"""Unit tests for repository analysis over the GitHub and GitLab APIs.

HTTP is served by a transport adapter mounted on a real `requests.Session`, so
no network access is needed.
"""

from __future__ import annotations

import asyncio
import json

import pytest
import requests
from requests.adapters import BaseAdapter

from galaxy_workflow.errors import NotFound, UpstreamFailure
from galaxy_workflow.workflow.galaxy_creation import TemplateMetadataGenerator
from galaxy_workflow.workflow.repository_api import (
    README_LIMIT,
    HttpRepositoryAnalyzer,
    detect_license,
    sbom_dependencies,
)


class StubTransport(BaseAdapter):
    """Answers requests from a URL -> (status, body) table; everything else is 404."""

    def __init__(self, routes: dict[str, tuple[int, object]]) -> None:
        super().__init__()
        self.routes = routes
        self.requests: list[requests.PreparedRequest] = []

    def send(self, request: requests.PreparedRequest, **kwargs: object) -> requests.Response:
        self.requests.append(request)
        status, body = self.routes.get(request.url or "", (404, "Not Found"))
        if isinstance(body, Exception):
            raise body
        response = requests.Response()
        response.status_code = status
        response.url = request.url or ""
        response.request = request
        content = body if isinstance(body, str) else json.dumps(body)
        response._content = content.encode("utf-8")
        response.encoding = "utf-8"
        return response

    def close(self) -> None:
        pass


def _analyzer(
    routes: dict[str, tuple[int, object]], **kwargs: str
) -> tuple[HttpRepositoryAnalyzer, StubTransport]:
    transport = StubTransport(routes)
    session = requests.Session()
    session.mount("https://", transport)
    return HttpRepositoryAnalyzer(session=session, **kwargs), transport


GITHUB_REPO = "https://api.github.com/repos/acme/rocket"
RAW = "https://raw.githubusercontent.com/acme/rocket/trunk"


def test_github_analysis_collects_metadata_readme_license_and_dependencies() -> None:
    analyzer, transport = _analyzer(
        {
            GITHUB_REPO: (
                200,
                {
                    "description": "Rockets for everyone",
                    "default_branch": "trunk",
                    "language": "Python",
                    "topics": ["space", "cli"],
                    "license": {"spdx_id": "Apache-2.0"},
                },
            ),
            f"{RAW}/README.md": (200, "# Rocket\n" + "x" * (README_LIMIT * 2)),
            f"{GITHUB_REPO}/dependency-graph/sbom": (
                200,
                {
                    "sbom": {
                        "documentDescribes": ["SPDXRef-com.github.acme-rocket"],
                        "packages": [
                            {"SPDXID": "SPDXRef-com.github.acme-rocket", "name": "acme/rocket"},
                            {"SPDXID": "SPDXRef-pip-requests", "name": "requests", "versionInfo": "2.32.0"},
                            {"SPDXID": "SPDXRef-pip-click", "name": "click"},
                        ],
                    }
                },
            ),
        },
        github_token="secret",
    )

    analysis = asyncio.run(analyzer.analyze("git@github.com:acme/rocket.git"))

    assert (analysis.provider, analysis.owner, analysis.repo) == ("github", "acme", "rocket")
    assert analysis.description == "Rockets for everyone"
    assert analysis.license == "Apache-2.0"
    assert analysis.default_branch == "trunk"
    assert analysis.readme.startswith("# Rocket")
    assert len(analysis.readme) == README_LIMIT
    assert analysis.dependencies == ["requests@2.32.0", "click"]
    assert transport.requests[0].headers["Authorization"] == "Bearer secret"

    metadata = asyncio.run(TemplateMetadataGenerator().generate(analysis.to_facts()))
    assert metadata.description == "Rockets for everyone"
    assert metadata.tags == ["github", "python", "Apache-2.0", "space", "cli"]


def test_github_license_falls_back_to_license_file() -> None:
    analyzer, _ = _analyzer(
        {
            GITHUB_REPO: (200, {"default_branch": "trunk", "license": {"spdx_id": "NOASSERTION"}}),
            f"{RAW}/COPYING": (200, "GNU GENERAL PUBLIC LICENSE (GPL)"),
        }
    )

    analysis = analyzer.analyze_sync("https://github.com/acme/rocket")

    assert analysis.license == "GPL-3.0"
    assert analysis.readme == ""
    assert analysis.dependencies == []


def test_missing_repository_is_not_found() -> None:
    analyzer, _ = _analyzer({})

    with pytest.raises(NotFound, match="Repository not found"):
        analyzer.analyze_sync("https://github.com/acme/missing")


def test_api_errors_become_upstream_failures() -> None:
    rate_limited, _ = _analyzer({GITHUB_REPO: (403, {"message": "API rate limit exceeded"})})
    with pytest.raises(UpstreamFailure, match="403"):
        rate_limited.analyze_sync("https://github.com/acme/rocket")

    unreachable, _ = _analyzer({GITHUB_REPO: (0, requests.ConnectionError("connection refused"))})
    with pytest.raises(UpstreamFailure, match="connection refused"):
        unreachable.analyze_sync("https://github.com/acme/rocket")


def test_gitlab_analysis_uses_project_path_and_file_api() -> None:
    project = "https://gitlab.com/api/v4/projects/group%2Fsub%2Frocket"
    analyzer, transport = _analyzer(
        {
            project: (200, {"description": "", "default_branch": "main", "topics": ["infra"]}),
            f"{project}/repository/files/README/raw?ref=main": (200, "Rocket tooling"),
            f"{project}/repository/files/LICENSE.md/raw?ref=main": (200, "The MIT License"),
        },
        gitlab_token="gl-token",
    )

    analysis = analyzer.analyze_sync("https://gitlab.com/group/sub/rocket.git")

    assert (analysis.provider, analysis.owner, analysis.repo) == ("gitlab", "sub", "rocket")
    assert analysis.readme == "Rocket tooling"
    assert analysis.license == "MIT"
    assert analysis.topics == ["infra"]
    assert transport.requests[0].headers["Authorization"] == "Bearer gl-token"


def test_detect_license_and_sbom_components() -> None:
    assert detect_license("Permission is hereby granted... MIT") == "MIT"
    assert detect_license("All rights reserved") is None
    assert sbom_dependencies(
        {
            "sbom": {
                "components": [
                    {"type": "library", "name": "lodash", "version": "4.17.21"},
                    {"type": "file", "name": "ignored"},
                ]
            }
        }
    ) == ["lodash@4.17.21"]
