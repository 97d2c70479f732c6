"""External collaborators consumed through narrow interfaces.

Production deployments plug in real services (identity provider, metadata
generation, ledger recording, payments). The small implementations at the
bottom are local stand-ins used by the CLI, the server defaults and the tests.
"""

from __future__ import annotations

import hashlib
import json
import random
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from galaxy_workflow.errors import PermissionDenied


@dataclass(frozen=True, slots=True)
class RepositoryAnalysis:
    """Facts gathered about a source repository."""

    url: str
    provider: str
    owner: str
    repo: str
    description: str = ""
    license: str | None = None
    readme: str = ""
    dependencies: list[str] = field(default_factory=list)
    default_branch: str | None = None
    language: str | None = None
    topics: list[str] = field(default_factory=list)

    def to_facts(self) -> dict[str, object]:
        return {
            "url": self.url,
            "provider": self.provider,
            "owner": self.owner,
            "repo": self.repo,
            "description": self.description,
            "license": self.license,
            "readme": self.readme,
            "dependencies": list(self.dependencies),
            "default_branch": self.default_branch,
            "language": self.language,
            "topics": list(self.topics),
        }


@dataclass(frozen=True, slots=True)
class GalaxyMetadata:
    name: str
    description: str
    tags: list[str] = field(default_factory=list)


class IdentityProvider(Protocol):
    def verify(self, token: str) -> str:
        """Return the verified identity behind `token` or raise PermissionDenied."""
        ...


class RepositoryAnalyzer(Protocol):
    async def analyze(self, url: str) -> RepositoryAnalysis: ...


class MetadataGenerator(Protocol):
    """Given raw facts, return descriptive text and tags for a new galaxy."""

    async def generate(self, facts: dict[str, object]) -> GalaxyMetadata: ...


class LedgerRecorder(Protocol):
    """Record a committed fact and return an opaque transaction reference."""

    def record(self, kind: str, payload: dict[str, Any]) -> str: ...


class CoordinateSource(Protocol):
    def next_coordinates(self, resource_id: str) -> tuple[float, float]: ...


class PaymentGateway(Protocol):
    def charge(self, *, amount: float, participant_id: str, galaxy_id: str, memo: str | None) -> str:
        """Charge `amount` and return the payment transaction reference."""
        ...


class StaticIdentityProvider:
    """Token -> identity lookup from configuration."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    def verify(self, token: str) -> str:
        identity = self._tokens.get(token.strip())
        if identity is None:
            raise PermissionDenied("Unknown or expired credentials")
        return identity


class LocalLedgerRecorder:
    """Derives a deterministic-looking transaction hash from the payload."""

    def __init__(self) -> None:
        self._counter = 0

    def record(self, kind: str, payload: dict[str, Any]) -> str:
        self._counter += 1
        body = json.dumps(
            {"kind": kind, "payload": payload, "n": self._counter, "t": time.time_ns()},
            sort_keys=True,
            default=str,
        )
        return "0x" + hashlib.sha256(body.encode("utf-8")).hexdigest()


class RandomCoordinateSource:
    """Uniform placement inside a square map."""

    def __init__(self, *, size: float = 1000.0, rng: random.Random | None = None) -> None:
        self._size = size
        self._rng = rng or random.Random()

    def next_coordinates(self, resource_id: str) -> tuple[float, float]:
        _ = resource_id
        return (
            round(self._rng.uniform(0, self._size), 2),
            round(self._rng.uniform(0, self._size), 2),
        )
