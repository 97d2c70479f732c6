from __future__ import annotations

import asyncio

import pytest

from galaxy_workflow.errors import InputValidationError
from galaxy_workflow.ledger.galaxies import GalaxyRecord, GalaxyRegistry
from galaxy_workflow.session.gate import StepGate
from galaxy_workflow.workflow.onboarding import build_onboarding_workflow
from galaxy_workflow.workflow.stage_runner import StageRunner
from galaxy_workflow.workflow.stepper import StepperStatus, WorkflowContext, WorkflowStepper


def _run(stepper: WorkflowStepper, email: str) -> None:
    async def scenario() -> None:
        await stepper.attach()
        stepper.set_input("email", email)
        await stepper.next()
        await stepper.wait_idle()
        if stepper.status is StepperStatus.ACTIVE:
            await stepper.complete_final_stage()

    asyncio.run(scenario())


def test_onboarding_obtains_sunshines_once(
    gate: StepGate,
    galaxies: GalaxyRegistry,
    galaxy: GalaxyRecord,
    fast_runner: StageRunner,
) -> None:
    finished: list[WorkflowContext] = []
    definition = build_onboarding_workflow(gate=gate, galaxy_id=galaxy.id)
    stepper = WorkflowStepper(definition, runner=fast_runner, on_complete=finished.append)

    _run(stepper, "  Ada@Example.com ")

    assert stepper.status is StepperStatus.COMPLETED
    context = finished[0]
    assert context.validated["identity_key"] == "ada@example.com"
    assert context.outputs["start-session"].created is True
    assert context.outputs["obtain-sunshines"]["sunshines"] == pytest.approx(90.0)

    assert gate.get_step("ada@example.com") == 1
    user = next(m for m in gate.members("ada@example.com") if m.role == "user")
    assert user.sunshines == pytest.approx(90.0)
    assert galaxies.get(galaxy.id).sunshines == pytest.approx(90.0)


def test_replayed_onboarding_fails_closed(
    gate: StepGate,
    galaxies: GalaxyRegistry,
    galaxy: GalaxyRecord,
    fast_runner: StageRunner,
) -> None:
    definition = build_onboarding_workflow(gate=gate, galaxy_id=galaxy.id)
    _run(WorkflowStepper(definition, runner=fast_runner), "ada@example.com")

    errors: list[str] = []
    replay = WorkflowStepper(definition, runner=fast_runner, on_error=errors.append)
    _run(replay, "ada@example.com")

    assert replay.status is StepperStatus.DETACHED
    assert errors == ["Invalid step. Expected step 0, but current step is 1"]
    assert gate.get_step("ada@example.com") == 1
    assert galaxies.get(galaxy.id).sunshines == pytest.approx(90.0)


def test_invalid_email_is_rejected(gate: StepGate, galaxy: GalaxyRecord, fast_runner: StageRunner) -> None:
    stepper = WorkflowStepper(
        build_onboarding_workflow(gate=gate, galaxy_id=galaxy.id), runner=fast_runner
    )

    async def scenario() -> None:
        await stepper.attach({"email": "not-an-email"})
        with pytest.raises(InputValidationError, match="Please enter a valid email address"):
            await stepper.next()

    asyncio.run(scenario())
    assert stepper.stage_index == 0
