"""CLI entrypoint for galaxy-workflow.

Every command works against the JSON document store named by
`WORKFLOW_STATE_PATH`, so sessions and placements persist between runs.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import BaseModel, ValidationError

from galaxy_workflow import __version__
from galaxy_workflow.collaborators import LocalLedgerRecorder, RandomCoordinateSource
from galaxy_workflow.config import WorkflowSettings
from galaxy_workflow.errors import Conflict, StepMismatch, WorkflowError
from galaxy_workflow.events import EventChannel, StageFailed
from galaxy_workflow.ledger.galaxies import GalaxyRegistry
from galaxy_workflow.ledger.positions import PositionLedger
from galaxy_workflow.logging import configure_logging, log_context
from galaxy_workflow.session.gate import StepGate
from galaxy_workflow.session.operations import OperationRegistry
from galaxy_workflow.store import DocumentStore
from galaxy_workflow.workflow.galaxy_creation import (
    TemplateMetadataGenerator,
    UrlRepositoryAnalyzer,
    build_galaxy_creation_workflow,
)
from galaxy_workflow.workflow.onboarding import build_onboarding_workflow
from galaxy_workflow.workflow.repository_api import HttpRepositoryAnalyzer
from galaxy_workflow.workflow.stage_runner import StageRunner
from galaxy_workflow.workflow.stepper import (
    StepperStatus,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowStepper,
)

logger = logging.getLogger(__name__)


def _print_json(value: Any) -> None:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif isinstance(value, list):
        value = [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
    print(json.dumps(value, indent=2, default=str))


def _parse_args_json(value: str) -> dict[str, Any]:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"Not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("Operation arguments must be a JSON object")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="galaxy-workflow",
        description="Step-gated sessions, galaxy placements and guided workflows",
    )
    parser.add_argument("--version", action="version", version=f"galaxy-workflow {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    create_session = subparsers.add_parser(
        "create-session", help="Create the session of an identity key (idempotent)"
    )
    create_session.add_argument("--identity-key", required=True, help="e.g. an email address")
    create_session.add_argument(
        "--no-members",
        action="store_true",
        help="Create the session without the demo maintainer and contributor",
    )

    step = subparsers.add_parser("step", help="Show the current step of a session")
    step.add_argument("--identity-key", required=True)

    execute = subparsers.add_parser("execute", help="Run a guarded operation for a session step")
    execute.add_argument("--identity-key", required=True)
    execute.add_argument("--required-step", type=int, required=True)
    execute.add_argument("--op", dest="op_name", required=True, help="Operation name")
    execute.add_argument(
        "--args",
        dest="op_args",
        type=_parse_args_json,
        default={},
        help='Operation arguments as a JSON object, e.g. \'{"galaxy_id": "..."}\'',
    )

    create_galaxy = subparsers.add_parser("create-galaxy", help="Register a galaxy")
    create_galaxy.add_argument("--name", required=True)
    create_galaxy.add_argument("--maintainer", required=True, help="Owner identity")
    create_galaxy.add_argument("--description", default="")
    create_galaxy.add_argument("--project-link", default="")

    append_position = subparsers.add_parser(
        "append-position", help="Append a placement record for a resource"
    )
    append_position.add_argument("--resource-id", required=True)
    append_position.add_argument("--x", type=float, required=True)
    append_position.add_argument("--y", type=float, required=True)
    append_position.add_argument("--external-ref", required=True)

    history = subparsers.add_parser("history", help="List the placements of a resource")
    history.add_argument("--resource-id", required=True)

    set_position = subparsers.add_parser(
        "set-position", help="Place a resource on behalf of its owner"
    )
    set_position.add_argument("--resource-id", required=True)
    set_position.add_argument("--requester", required=True, help="Requester identity")
    set_position.add_argument("--x", type=float, default=None)
    set_position.add_argument("--y", type=float, default=None)

    onboard = subparsers.add_parser("onboard", help="Run the demo onboarding workflow")
    onboard.add_argument("--email", required=True)
    onboard.add_argument("--galaxy-id", required=True, help="Galaxy receiving the sunshines")

    import_repo = subparsers.add_parser(
        "import-repository", help="Run the galaxy creation workflow for a repository URL"
    )
    import_repo.add_argument("--url", required=True)
    import_repo.add_argument("--maintainer", required=True, help="Owner identity")
    import_repo.add_argument(
        "--online",
        action="store_true",
        help="Analyze the repository through the GitHub/GitLab API instead of the URL alone",
    )

    serve = subparsers.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


async def _drive(
    definition: WorkflowDefinition,
    settings: WorkflowSettings,
    inputs: dict[str, Any],
) -> WorkflowContext | None:
    """Run a workflow unattended; interactive stages are confirmed as they come."""

    channel = EventChannel()
    failures: list[StageFailed] = []
    channel.subscribe(StageFailed, failures.append)

    finished: list[WorkflowContext] = []
    stepper = WorkflowStepper(
        definition,
        runner=StageRunner.from_settings(settings),
        on_complete=finished.append,
        on_error=lambda message: print(message, file=sys.stderr),
        channel=channel,
        auto_advance_delay=settings.auto_advance_delay_seconds,
    )
    await stepper.attach(inputs)
    while stepper.status is StepperStatus.ACTIVE:
        await stepper.wait_idle()
        if stepper.status is not StepperStatus.ACTIVE:
            break
        if stepper.stage_index == definition.last_index:
            await stepper.complete_final_stage()
        else:
            await stepper.next()

    if failures:
        logger.warning(
            "Workflow failed",
            extra={"workflow": definition.name, "stage_id": failures[-1].stage_id},
        )
        return None
    return finished[0] if finished else None


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = WorkflowSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    if args.command == "serve":
        import uvicorn

        from galaxy_workflow.server.app import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)
        return 0

    try:
        store = DocumentStore(settings.state_path)
        gate = StepGate(store, operations=OperationRegistry.from_settings(settings))
        galaxies = GalaxyRegistry(store)
        recorder = LocalLedgerRecorder()
        positions = PositionLedger(
            store, coordinates=RandomCoordinateSource(), recorder=recorder
        )

        if args.command == "create-session":
            creation = gate.create_session(args.identity_key, [] if args.no_members else None)
            _print_json(
                {
                    "created": creation.created,
                    "step": creation.session.current_step,
                    "members": [m.model_dump(mode="json") for m in creation.members],
                }
            )
            return 0

        if args.command == "step":
            print(gate.get_step(args.identity_key))
            return 0

        if args.command == "execute":
            operation = gate.operations.build(args.op_name, args.op_args)
            result = gate.guarded_execute(args.identity_key, args.required_step, operation)
            _print_json(result)
            return 0

        if args.command == "create-galaxy":
            galaxy = galaxies.create(
                name=args.name,
                maintainer=args.maintainer,
                description=args.description,
                project_link=args.project_link,
            )
            _print_json(galaxy)
            return 0

        if args.command == "append-position":
            record = positions.append_position(args.resource_id, args.x, args.y, args.external_ref)
            _print_json(record)
            return 0

        if args.command == "history":
            _print_json(positions.get_history(args.resource_id))
            return 0

        if args.command == "set-position":
            record = positions.set_position(
                args.resource_id, args.requester, **_coordinates(args.x, args.y)
            )
            _print_json(record)
            return 0

        if args.command == "onboard":
            galaxies.get(args.galaxy_id)
            definition = build_onboarding_workflow(gate=gate, galaxy_id=args.galaxy_id)
            with log_context(identity_key=args.email.strip().lower()):
                context = asyncio.run(_drive(definition, settings, {"email": args.email}))
            if context is None:
                return 1
            _print_json(context.outputs.get("obtain-sunshines"))
            return 0

        if args.command == "import-repository":
            definition = build_galaxy_creation_workflow(
                analyzer=(
                    HttpRepositoryAnalyzer.from_settings(settings)
                    if args.online
                    else UrlRepositoryAnalyzer()
                ),
                metadata=TemplateMetadataGenerator(),
                galaxies=galaxies,
                positions=positions,
                recorder=recorder,
                maintainer_id=args.maintainer,
            )
            with log_context(repository_url=args.url):
                context = asyncio.run(
                    _drive(definition, settings, {"repository_url": args.url})
                )
            if context is None:
                return 1
            _print_json(galaxies.get(context.outputs["galaxy-creation"].id))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (StepMismatch, Conflict) as e:
        logger.warning(str(e), extra={"code": e.code})
        print(str(e), file=sys.stderr)
        return 3

    except WorkflowError as e:
        logger.warning(str(e), extra={"code": e.code})
        print(str(e), file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1


def _coordinates(x: float | None, y: float | None) -> dict[str, float]:
    if x is None or y is None:
        return {}
    return {"x": x, "y": y}


if __name__ == "__main__":
    raise SystemExit(main())
