"""Step-gated sessions: idempotent creation and exactly-once guarded operations."""

from galaxy_workflow.session.gate import StepGate
from galaxy_workflow.session.models import (
    DEMO_STEPS,
    GuardedOutcome,
    ParticipantIdentity,
    SessionCreation,
    StepSession,
    describe_step,
)
from galaxy_workflow.session.operations import (
    AdvanceStep,
    GuardedOperation,
    ObtainSunshines,
    OperationRegistry,
)

__all__ = [
    "DEMO_STEPS",
    "AdvanceStep",
    "GuardedOperation",
    "GuardedOutcome",
    "ObtainSunshines",
    "OperationRegistry",
    "ParticipantIdentity",
    "SessionCreation",
    "StepGate",
    "StepSession",
    "describe_step",
]
