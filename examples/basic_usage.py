#!/usr/bin/env python3
"""Programmatic workflow example.

This demonstrates using the components directly:

* load settings from `.env`
* register a galaxy and place it on the map
* run the demo onboarding workflow, printing stage progress as it happens

State is kept in memory unless `--persist` is given.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from galaxy_workflow.collaborators import LocalLedgerRecorder, RandomCoordinateSource
from galaxy_workflow.config import WorkflowSettings
from galaxy_workflow.events import EventChannel, StageEntered, StageFailed, StageProgressed
from galaxy_workflow.ledger.galaxies import GalaxyRegistry
from galaxy_workflow.ledger.positions import PositionLedger
from galaxy_workflow.logging import configure_logging
from galaxy_workflow.session.gate import StepGate
from galaxy_workflow.session.operations import OperationRegistry
from galaxy_workflow.store import DocumentStore
from galaxy_workflow.workflow.onboarding import build_onboarding_workflow
from galaxy_workflow.workflow.stage_runner import StageRunner
from galaxy_workflow.workflow.stepper import StepperStatus, WorkflowStepper


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the demo onboarding (programmatic example).")
    parser.add_argument("--email", required=True, help="Identity key of the demo session")
    parser.add_argument("--galaxy", default="demo-galaxy", help="Name of the galaxy to support")
    parser.add_argument(
        "--persist", action="store_true", help="Use WORKFLOW_STATE_PATH instead of memory"
    )
    return parser.parse_args(argv)


async def _onboard(stepper: WorkflowStepper, email: str) -> None:
    await stepper.attach()
    stepper.set_input("email", email)
    await stepper.next()
    await stepper.wait_idle()
    if stepper.status is StepperStatus.ACTIVE:
        await stepper.complete_final_stage()


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = WorkflowSettings()
    configure_logging(settings.log_level)

    store = DocumentStore(settings.state_path if args.persist else None)
    channel = EventChannel()
    channel.subscribe(StageEntered, lambda e: print(f"-> {e.stage_id}"))
    channel.subscribe(StageProgressed, lambda e: print(f"   {e.progress:3d}%"))
    channel.subscribe(StageFailed, lambda e: print(f"!! {e.stage_id}: {e.message}"))

    galaxy = GalaxyRegistry(store).create(name=args.galaxy, maintainer="demo-maintainer")
    placement = PositionLedger(
        store, coordinates=RandomCoordinateSource(), recorder=LocalLedgerRecorder()
    ).set_position(galaxy.id, "demo-maintainer")
    print(f"Placed {galaxy.name} at ({placement.x}, {placement.y}) in {placement.external_ref}")

    gate = StepGate(store, operations=OperationRegistry.from_settings(settings), channel=channel)
    stepper = WorkflowStepper(
        build_onboarding_workflow(gate=gate, galaxy_id=galaxy.id),
        runner=StageRunner.from_settings(settings),
        on_complete=lambda context: print(f"Done: {context.outputs['obtain-sunshines']}"),
        channel=channel,
        auto_advance_delay=settings.auto_advance_delay_seconds,
    )
    asyncio.run(_onboard(stepper, args.email))
    return 0 if stepper.status is StepperStatus.COMPLETED else 1


if __name__ == "__main__":
    raise SystemExit(main())
