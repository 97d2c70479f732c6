"""Named side-effecting operations executed behind the step gate.

An operation only describes its effect on the open transaction; the gate
decides whether it may run and commits it together with the step advance.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ClassVar, Protocol

from pydantic import BaseModel, Field, ValidationError

from galaxy_workflow.collaborators import PaymentGateway
from galaxy_workflow.config import WorkflowSettings
from galaxy_workflow.errors import Conflict, InputValidationError, NotFound
from galaxy_workflow.session.models import StepSession, steps_named
from galaxy_workflow.store import DONATIONS, GALAXIES, PARTICIPANTS, Transaction


class GuardedOperation(Protocol):
    """An effect committed together with a step advance.

    `allowed_steps` lists the step counter values the operation may consume;
    None means any step.
    """

    name: ClassVar[str]
    allowed_steps: ClassVar[frozenset[int] | None]

    def apply(self, tx: Transaction, session: StepSession) -> dict[str, object]: ...


class ObtainSunshinesArgs(BaseModel):
    galaxy_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    amount: float | None = Field(default=None, gt=0)
    memo: str | None = None


@dataclass(frozen=True, slots=True)
class ObtainSunshines:
    """Convert a donation into sunshines for a participant and its galaxy.

    Both the participant and the galaxy aggregate are credited with
    `amount * multiplier`. Only valid at the "obtain_sunshine" step. One
    donation per participant; a second one is a `Conflict` even when it comes
    through another session that includes the same participant.
    """

    galaxy_id: str
    participant_id: str
    amount: float
    multiplier: float
    memo: str | None = None
    payments: PaymentGateway | None = None

    name: ClassVar[str] = "obtain_sunshines"
    allowed_steps: ClassVar[frozenset[int] | None] = steps_named("obtain_sunshine")

    def apply(self, tx: Transaction, session: StepSession) -> dict[str, object]:
        if self.participant_id not in session.members:
            raise NotFound(
                f"Participant {self.participant_id!r} is not part of session "
                f"{session.identity_key!r}"
            )
        tx.require(PARTICIPANTS, self.participant_id)
        tx.require(GALAXIES, self.galaxy_id)

        if tx.find(DONATIONS, participant_id=self.participant_id):
            raise Conflict("Sunshines were already obtained by this participant")

        payment_ref = None
        if self.payments is not None:
            payment_ref = self.payments.charge(
                amount=self.amount,
                participant_id=self.participant_id,
                galaxy_id=self.galaxy_id,
                memo=self.memo,
            )

        credited = self.amount * self.multiplier
        total = tx.increment(PARTICIPANTS, self.participant_id, "sunshines", credited)
        tx.increment(GALAXIES, self.galaxy_id, "sunshines", credited)

        donation_id = uuid.uuid4().hex
        tx.insert(
            DONATIONS,
            donation_id,
            {
                "id": donation_id,
                "participant_id": self.participant_id,
                "galaxy_id": self.galaxy_id,
                "amount": self.amount,
                "sunshines": credited,
                "memo": self.memo,
                "payment_ref": payment_ref,
                "created_at": datetime.now(tz=UTC).isoformat(),
            },
        )
        return {"sunshines": credited, "total_sunshines": total, "payment_ref": payment_ref}


@dataclass(frozen=True, slots=True)
class AdvanceStep:
    """No payload; commits the step advance alone."""

    name: ClassVar[str] = "advance"
    allowed_steps: ClassVar[frozenset[int] | None] = None

    def apply(self, tx: Transaction, session: StepSession) -> dict[str, object]:
        _ = tx
        return {"step": session.current_step + 1}


class OperationRegistry:
    """Builds guarded operations from an operation name and raw arguments."""

    def __init__(
        self,
        *,
        multiplier: float = 1.8,
        donation_amount: float = 50.0,
        payments: PaymentGateway | None = None,
    ) -> None:
        self._multiplier = multiplier
        self._donation_amount = donation_amount
        self._payments = payments

    @classmethod
    def from_settings(
        cls, settings: WorkflowSettings, *, payments: PaymentGateway | None = None
    ) -> OperationRegistry:
        return cls(
            multiplier=settings.credit_multiplier,
            donation_amount=settings.donation_amount,
            payments=payments,
        )

    @property
    def multiplier(self) -> float:
        return self._multiplier

    def names(self) -> list[str]:
        return [ObtainSunshines.name, AdvanceStep.name]

    def obtain_sunshines(
        self,
        *,
        galaxy_id: str,
        participant_id: str,
        amount: float | None = None,
        memo: str | None = None,
    ) -> ObtainSunshines:
        return ObtainSunshines(
            galaxy_id=galaxy_id,
            participant_id=participant_id,
            amount=amount if amount is not None else self._donation_amount,
            multiplier=self._multiplier,
            memo=memo,
            payments=self._payments,
        )

    def build(self, name: str, args: dict[str, object] | None = None) -> GuardedOperation:
        args = args or {}
        try:
            if name == ObtainSunshines.name:
                parsed = ObtainSunshinesArgs.model_validate(args)
                return self.obtain_sunshines(**parsed.model_dump())
            if name == AdvanceStep.name:
                return AdvanceStep()
        except ValidationError as e:
            raise InputValidationError(f"Invalid arguments for {name!r}: {e}") from e
        raise InputValidationError(
            f"Unknown operation {name!r}; expected one of: {', '.join(self.names())}"
        )
