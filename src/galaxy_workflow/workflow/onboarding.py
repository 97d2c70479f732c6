"""The demo onboarding workflow: email -> start-session -> obtain-sunshines -> done."""

from __future__ import annotations

import asyncio
import re

from galaxy_workflow.errors import InputValidationError, NotFound
from galaxy_workflow.session.gate import StepGate
from galaxy_workflow.session.models import SessionCreation
from galaxy_workflow.workflow.stage_runner import EffectfulTask, PacingTask, StagePlan
from galaxy_workflow.workflow.stepper import StageDefinition, WorkflowContext, WorkflowDefinition

WORKFLOW_NAME = "demo-onboarding"

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def build_onboarding_workflow(*, gate: StepGate, galaxy_id: str) -> WorkflowDefinition:
    """Inputs: `email`. The sunshines are credited to `galaxy_id`."""

    def check_email(context: WorkflowContext, _from: int, _to: int) -> bool:
        email = str(context.inputs.get("email") or "").strip().lower()
        if not _EMAIL.match(email):
            raise InputValidationError("Please enter a valid email address")
        context.validated["identity_key"] = email
        return True

    def session_plan(context: WorkflowContext) -> StagePlan:
        key = context.validated["identity_key"]
        return StagePlan(
            pacing=(
                PacingTask("Preparing demo session", "Demo session prepared"),
                PacingTask("Inviting a maintainer", "Maintainer joined"),
                PacingTask("Inviting a contributor", "Contributor joined"),
            ),
            effect=EffectfulTask(
                "Starting session",
                lambda: asyncio.to_thread(gate.create_session, key),
                "Session started",
            ),
        )

    def sunshine_plan(context: WorkflowContext) -> StagePlan:
        key = context.validated["identity_key"]
        creation: SessionCreation = context.outputs["start-session"]
        user = next((m for m in creation.members if m.role == "user"), None)
        if user is None:
            raise NotFound(f"Session {key!r} has no user participant")
        operation = gate.operations.obtain_sunshines(galaxy_id=galaxy_id, participant_id=user.id)
        return StagePlan(
            pacing=(PacingTask("Processing donation", "Donation processed"),),
            effect=EffectfulTask(
                "Obtaining sunshines",
                lambda: asyncio.to_thread(gate.guarded_execute, key, 0, operation),
                "Sunshines obtained",
                retry=False,
            ),
        )

    return WorkflowDefinition(
        name=WORKFLOW_NAME,
        stages=(
            StageDefinition("email", "Email", precondition=check_email),
            StageDefinition("start-session", "Start session", runner=session_plan),
            StageDefinition(
                "obtain-sunshines", "Obtain sunshines", runner=sunshine_plan, irreversible=True
            ),
            StageDefinition("done", "Done"),
        ),
    )
