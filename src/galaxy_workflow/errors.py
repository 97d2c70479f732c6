"""Error taxonomy shared by the session gate, the ledgers and the stepper.

Every error carries a stable `code` so boundary layers (HTTP, CLI, the
guarded-operation outcome) can report it without inspecting the class.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(eq=False)
class WorkflowError(Exception):
    """Base class for all expected failures."""

    message: str

    code: ClassVar[str] = "WorkflowError"
    retryable: ClassVar[bool] = False

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class InputValidationError(WorkflowError):
    """A stage precondition or operation argument failed validation.

    Recoverable: the initiator corrects the input. No state changes.
    """

    stage_index: int | None = None

    code: ClassVar[str] = "ValidationError"


@dataclass(eq=False)
class StepMismatch(WorkflowError):
    """A guarded operation was attempted at the wrong session step (replay)."""

    expected: int | None = None
    actual: int | None = None

    code: ClassVar[str] = "StepMismatch"


@dataclass(eq=False)
class SessionCompleted(StepMismatch):
    """The session already moved past its last step."""


@dataclass(eq=False)
class Conflict(WorkflowError):
    """A concurrent writer committed first."""

    code: ClassVar[str] = "Conflict"


@dataclass(eq=False)
class NotFound(WorkflowError):
    code: ClassVar[str] = "NotFound"


@dataclass(eq=False)
class PermissionDenied(WorkflowError):
    code: ClassVar[str] = "PermissionDenied"


@dataclass(eq=False)
class UpstreamFailure(WorkflowError):
    """A collaborator (store, metadata, ledger recorder, payment) failed or timed out."""

    code: ClassVar[str] = "UpstreamFailure"
    retryable: ClassVar[bool] = True


@dataclass(eq=False)
class StageAbandoned(WorkflowError):
    """The stage was left before its real call started, so the call was skipped."""

    code: ClassVar[str] = "StageAbandoned"
