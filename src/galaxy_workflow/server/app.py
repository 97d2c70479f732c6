"""FastAPI app factory.

Endpoints are thin wrappers over the session gate, the galaxy registry and the
placement ledger. Failures leave the services as `WorkflowError`s and are
reported with a status chosen by their `code`.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from galaxy_workflow import __version__
from galaxy_workflow.collaborators import (
    CoordinateSource,
    IdentityProvider,
    LedgerRecorder,
    LocalLedgerRecorder,
    RandomCoordinateSource,
    StaticIdentityProvider,
)
from galaxy_workflow.config import WorkflowSettings
from galaxy_workflow.errors import PermissionDenied, WorkflowError
from galaxy_workflow.events import EventChannel
from galaxy_workflow.ledger.galaxies import GalaxyRecord, GalaxyRegistry
from galaxy_workflow.ledger.positions import PlacementOutcome, PlacementRecord, PositionLedger
from galaxy_workflow.server.models import (
    CreateGalaxyRequest,
    CreateSessionRequest,
    ErrorDetail,
    OperationRequest,
    PlacementRequest,
    SessionResponse,
    StepResponse,
)
from galaxy_workflow.session.gate import StepGate
from galaxy_workflow.session.models import GuardedOutcome, describe_step
from galaxy_workflow.session.operations import OperationRegistry
from galaxy_workflow.store import DocumentStore

logger = logging.getLogger(__name__)

STATUS_BY_CODE: dict[str, int] = {
    "ValidationError": 422,
    "StepMismatch": 409,
    "Conflict": 409,
    "NotFound": 404,
    "PermissionDenied": 403,
    "UpstreamFailure": 502,
}


def _http_error(code: str, message: str) -> HTTPException:
    detail = ErrorDetail(error=code, message=message)
    return HTTPException(status_code=STATUS_BY_CODE.get(code, 500), detail=detail.model_dump())


def _bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=401,
            detail="Bearer token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token.strip()


def create_app(
    settings: WorkflowSettings | None = None,
    *,
    store: DocumentStore | None = None,
    identity: IdentityProvider | None = None,
    recorder: LedgerRecorder | None = None,
    coordinates: CoordinateSource | None = None,
    channel: EventChannel | None = None,
) -> FastAPI:
    settings = settings or WorkflowSettings()
    store = store or DocumentStore(settings.state_path)
    identity = identity or StaticIdentityProvider(settings.parsed_identity_tokens())
    channel = channel or EventChannel()

    gate = StepGate(store, operations=OperationRegistry.from_settings(settings), channel=channel)
    galaxies = GalaxyRegistry(store)
    positions = PositionLedger(
        store,
        coordinates=coordinates or RandomCoordinateSource(),
        recorder=recorder or LocalLedgerRecorder(),
        channel=channel,
    )

    app = FastAPI(
        title="Galaxy Workflow",
        version=__version__,
        description="REST API over the step-gated session ledger and the placement ledger.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Exposed for request handlers and tests.
    app.state.settings = settings
    app.state.gate = gate
    app.state.galaxies = galaxies
    app.state.positions = positions
    app.state.channel = channel

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def requester(authorization: str | None) -> str:
        try:
            return identity.verify(_bearer_token(authorization))
        except PermissionDenied as e:
            raise _http_error(e.code, str(e)) from e

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/v1/sessions", response_model=SessionResponse)
    def create_session(req: CreateSessionRequest) -> SessionResponse:
        try:
            creation = gate.create_session(req.identity_key, req.to_identities())
        except WorkflowError as e:
            raise _http_error(e.code, str(e)) from e
        return SessionResponse(
            created=creation.created,
            identity_key=creation.session.identity_key,
            step=creation.session.current_step,
            members=creation.members,
        )

    @app.get("/api/v1/sessions/{identity_key}/step", response_model=StepResponse)
    def get_step(identity_key: str) -> StepResponse:
        try:
            step = gate.get_step(identity_key)
        except WorkflowError as e:
            raise _http_error(e.code, str(e)) from e
        entry = describe_step(step)
        return StepResponse(
            identity_key=identity_key,
            step=step,
            step_name=entry[0] if entry else None,
            role=entry[1] if entry else None,
            completed=entry is None,
        )

    @app.post("/api/v1/sessions/{identity_key}/operations", response_model=GuardedOutcome)
    def run_operation(identity_key: str, req: OperationRequest) -> GuardedOutcome:
        outcome = gate.run_operation(identity_key, req.required_step, req.op_name, req.op_args)
        if not outcome.success:
            raise _http_error(outcome.error or "WorkflowError", outcome.message or "")
        return outcome

    @app.post("/api/v1/galaxies", response_model=GalaxyRecord, status_code=201)
    def create_galaxy(
        req: CreateGalaxyRequest, authorization: str | None = Header(default=None)
    ) -> GalaxyRecord:
        maintainer = requester(authorization)
        try:
            return galaxies.create(
                name=req.name,
                maintainer=maintainer,
                description=req.description,
                project_link=req.project_link,
                tags=req.tags,
            )
        except WorkflowError as e:
            raise _http_error(e.code, str(e)) from e

    @app.get("/api/v1/galaxies/{galaxy_id}", response_model=GalaxyRecord)
    def get_galaxy(galaxy_id: str) -> GalaxyRecord:
        try:
            return galaxies.get(galaxy_id)
        except WorkflowError as e:
            raise _http_error(e.code, str(e)) from e

    @app.get("/api/v1/resources/{resource_id}/positions", response_model=list[PlacementRecord])
    def get_history(resource_id: str) -> list[PlacementRecord]:
        return positions.get_history(resource_id)

    @app.post("/api/v1/resources/{resource_id}/positions", response_model=PlacementOutcome)
    def set_position(
        resource_id: str,
        req: PlacementRequest | None = None,
        authorization: str | None = Header(default=None),
    ) -> PlacementOutcome:
        identity_id = requester(authorization)
        coords = (req or PlacementRequest()).model_dump(exclude_none=True)
        outcome = positions.place(resource_id, identity_id, **coords)
        if not outcome.success:
            raise _http_error(outcome.error or "WorkflowError", outcome.message or "")
        return outcome

    logger.info("App created", extra={"state_path": str(settings.state_path)})
    return app
