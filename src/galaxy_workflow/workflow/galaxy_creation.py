"""The galaxy creation workflow.

repository-url -> repository-analysis -> galaxy-creation -> agreement ->
ledger-transaction -> placement -> complete

The ledger transaction is irreversible: once it has been entered the workflow
only moves forward or is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlparse

from galaxy_workflow.collaborators import (
    GalaxyMetadata,
    LedgerRecorder,
    MetadataGenerator,
    RepositoryAnalysis,
    RepositoryAnalyzer,
)
from galaxy_workflow.errors import InputValidationError
from galaxy_workflow.ledger.galaxies import GalaxyRecord, GalaxyRegistry
from galaxy_workflow.ledger.positions import PlacementRecord, PositionLedger
from galaxy_workflow.workflow.stage_runner import EffectfulTask, PacingTask, StagePlan
from galaxy_workflow.workflow.stepper import StageDefinition, WorkflowContext, WorkflowDefinition

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "galaxy-creation"

SUPPORTED_HOSTS = ("github.com", "gitlab.com")


def normalize_git_url(url: str) -> str:
    """Turn `git@host:owner/repo(.git)` into `https://host/owner/repo(.git)`."""

    url = url.strip()
    if url.startswith("git@"):
        return "https://" + url[len("git@") :].replace(":", "/", 1)
    return url


def validate_git_url(url: str) -> str | None:
    """Return an error message for `url`, or None when it is acceptable."""

    if not url.strip():
        return "Please enter a Git repository URL"
    parsed = urlparse(normalize_git_url(url))
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return "Invalid URL format"
    if not any(host in parsed.hostname for host in SUPPORTED_HOSTS):
        return "Only GitHub and GitLab repositories are supported"
    return None


def parse_repository_url(url: str) -> tuple[str, str, str]:
    """Split a validated repository URL into (provider, owner, repo)."""

    parsed = urlparse(normalize_git_url(url))
    host = parsed.hostname or ""
    provider = "github" if "github.com" in host else "gitlab"
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        raise InputValidationError(f"Repository URL {url!r} does not name an owner and a repository")
    owner, repo = parts[-2], parts[-1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return provider, owner, repo


class UrlRepositoryAnalyzer:
    """Offline analyzer deriving what it can from the URL alone."""

    async def analyze(self, url: str) -> RepositoryAnalysis:
        provider, owner, repo = parse_repository_url(url)
        return RepositoryAnalysis(
            url=normalize_git_url(url), provider=provider, owner=owner, repo=repo
        )


class TemplateMetadataGenerator:
    """Offline metadata generator building text from repository facts."""

    async def generate(self, facts: dict[str, object]) -> GalaxyMetadata:
        repo = str(facts.get("repo") or "project")
        owner = str(facts.get("owner") or "")
        description = str(facts.get("description") or "") or (
            f"{repo} by {owner}" if owner else repo
        )
        tags = [str(facts.get("provider") or "git")]
        for key in ("language", "license"):
            value = facts.get(key)
            if value:
                tags.append(str(value).lower() if key == "language" else str(value))
        topics = facts.get("topics") or []
        if isinstance(topics, list):
            tags.extend(str(t) for t in topics[:3] if str(t) not in tags)
        return GalaxyMetadata(name=repo, description=description, tags=tags)


def build_galaxy_creation_workflow(
    *,
    analyzer: RepositoryAnalyzer,
    metadata: MetadataGenerator,
    galaxies: GalaxyRegistry,
    positions: PositionLedger,
    recorder: LedgerRecorder,
    maintainer_id: str,
) -> WorkflowDefinition:
    """Wire the collaborators into the seven creation stages.

    Inputs: `repository_url`. Outputs by stage id: the `RepositoryAnalysis`,
    the created `GalaxyRecord`, the ledger reference dict and the
    `PlacementRecord`.
    """

    def check_repository_url(context: WorkflowContext, _from: int, _to: int) -> bool:
        raw = str(context.inputs.get("repository_url") or "")
        error = validate_git_url(raw)
        if error is not None:
            raise InputValidationError(error)
        context.validated["repository_url"] = normalize_git_url(raw)
        return True

    def accept_agreement(context: WorkflowContext, _from: int, _to: int) -> bool:
        # Moving on from the agreement stage is the acceptance.
        context.validated["agreement_accepted"] = True
        return True

    def analysis_plan(context: WorkflowContext) -> StagePlan:
        url = context.validated["repository_url"]
        return StagePlan(
            pacing=(
                PacingTask("Connecting to repository", "Connected to repository"),
                PacingTask("Reading repository metadata", "Repository metadata read"),
                PacingTask("Scanning dependencies", "Dependencies scanned"),
            ),
            effect=EffectfulTask(
                "Analyzing repository", lambda: analyzer.analyze(url), "Repository analyzed"
            ),
        )

    def creation_plan(context: WorkflowContext) -> StagePlan:
        analysis: RepositoryAnalysis = context.outputs["repository-analysis"]

        async def create() -> GalaxyRecord:
            # Retries and re-entering the stage reuse the galaxy already registered.
            existing = await asyncio.to_thread(
                galaxies.find_by_project_link, analysis.url, maintainer=maintainer_id
            )
            if existing is not None:
                logger.info(
                    "Reusing galaxy registered for repository",
                    extra={"galaxy_id": existing.id, "project_link": analysis.url},
                )
                return existing
            generated = await metadata.generate(analysis.to_facts())
            return await asyncio.to_thread(
                galaxies.create,
                name=generated.name,
                maintainer=maintainer_id,
                description=generated.description,
                project_link=analysis.url,
                tags=generated.tags,
            )

        return StagePlan(
            pacing=(
                PacingTask("Designing galaxy layout", "Galaxy layout designed"),
                PacingTask("Preparing star map", "Star map prepared"),
            ),
            effect=EffectfulTask("Generating galaxy details", create, "Galaxy created"),
        )

    def ledger_plan(context: WorkflowContext) -> StagePlan:
        galaxy: GalaxyRecord = context.outputs["galaxy-creation"]

        async def record() -> dict[str, str]:
            ledger_tx = await asyncio.to_thread(
                recorder.record,
                "galaxy",
                {"galaxy_id": galaxy.id, "name": galaxy.name, "maintainer": galaxy.maintainer},
            )
            await asyncio.to_thread(
                galaxies.attach_ledger_reference,
                galaxy.id,
                ledger_id=galaxy.id,
                ledger_tx=ledger_tx,
            )
            logger.info(
                "Galaxy recorded on ledger",
                extra={"galaxy_id": galaxy.id, "ledger_tx": ledger_tx},
            )
            return {"ledger_id": galaxy.id, "ledger_tx": ledger_tx}

        return StagePlan(
            pacing=(
                PacingTask("Preparing transaction", "Transaction prepared"),
                PacingTask("Waiting for confirmation", "Transaction confirmed"),
            ),
            effect=EffectfulTask("Recording galaxy", record, "Galaxy recorded", retry=False),
        )

    def placement_plan(context: WorkflowContext) -> StagePlan:
        galaxy: GalaxyRecord = context.outputs["galaxy-creation"]

        async def place() -> PlacementRecord:
            return await asyncio.to_thread(positions.set_position, galaxy.id, maintainer_id)

        return StagePlan(
            pacing=(PacingTask("Finding a free spot", "Spot found"),),
            effect=EffectfulTask("Placing galaxy", place, "Galaxy placed", retry=False),
        )

    return WorkflowDefinition(
        name=WORKFLOW_NAME,
        stages=(
            StageDefinition("repository-url", "Repository URL", precondition=check_repository_url),
            StageDefinition("repository-analysis", "Repository analysis", runner=analysis_plan),
            StageDefinition("galaxy-creation", "Galaxy creation", runner=creation_plan),
            StageDefinition("agreement", "Agreement", precondition=accept_agreement),
            StageDefinition(
                "ledger-transaction", "Ledger transaction", runner=ledger_plan, irreversible=True
            ),
            StageDefinition("placement", "Placement", runner=placement_plan),
            StageDefinition("complete", "Complete"),
        ),
    )
