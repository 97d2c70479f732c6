"""Step-gated session ledger.

Each identity key names exactly one session. A session's step counter guards
the side-effecting operations of the demo: the operation for step N runs only
while the counter equals N, and its effect is committed in the same
transaction that moves the counter to N + 1. An operation bound to particular
entries of the step table is refused at any other step. Replays fail closed
with `StepMismatch`; a writer that loses a race fails with `Conflict`.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from datetime import UTC, datetime

from galaxy_workflow.errors import (
    Conflict,
    InputValidationError,
    NotFound,
    SessionCompleted,
    StepMismatch,
    UpstreamFailure,
    WorkflowError,
)
from galaxy_workflow.events import EventChannel, SessionCreated, StepAdvanced
from galaxy_workflow.session.models import (
    DEMO_STEPS,
    GuardedOutcome,
    ParticipantIdentity,
    SessionCreation,
    StepSession,
    default_demo_members,
)
from galaxy_workflow.session.operations import GuardedOperation, OperationRegistry
from galaxy_workflow.store import PARTICIPANTS, SESSIONS, DocumentStore, Transaction

logger = logging.getLogger(__name__)


def _dedupe(members: Sequence[ParticipantIdentity]) -> list[ParticipantIdentity]:
    seen: set[str] = set()
    unique: list[ParticipantIdentity] = []
    for member in members:
        if member.id in seen:
            continue
        seen.add(member.id)
        unique.append(member)
    return unique


class StepGate:
    """Creates sessions and runs guarded operations against them."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        operations: OperationRegistry | None = None,
        channel: EventChannel | None = None,
        step_count: int = len(DEMO_STEPS),
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._operations = operations or OperationRegistry()
        self._channel = channel
        self._step_count = step_count
        self._rng = rng or random.Random()

    @property
    def operations(self) -> OperationRegistry:
        return self._operations

    def create_session(
        self,
        identity_key: str,
        initial_members: Sequence[ParticipantIdentity] | None = None,
    ) -> SessionCreation:
        """Create the session for `identity_key` unless it already exists.

        With no member list the demo trio is generated. Calling this again for
        the same key returns the stored session and members unchanged.
        """

        key = identity_key.strip()
        if not key:
            raise InputValidationError("Identity key must not be empty")

        existing = self._store.get(SESSIONS, key)
        if existing is not None:
            return self._existing(StepSession.model_validate(existing))

        candidates = _dedupe(
            default_demo_members(key, rng=self._rng)
            if initial_members is None
            else initial_members
        )

        with self._store.transaction() as tx:
            raced = tx.get(SESSIONS, key)
            if raced is not None:
                session = StepSession.model_validate(raced)
                return SessionCreation(
                    created=False, session=session, members=self._members_in(tx, session)
                )

            for member in candidates:
                if tx.get(PARTICIPANTS, member.id) is None:
                    tx.insert(PARTICIPANTS, member.id, member.model_dump(mode="json"))
            session = StepSession(
                identity_key=key,
                created_at=datetime.now(tz=UTC).isoformat(),
                members=[m.id for m in candidates],
            )
            tx.insert(SESSIONS, key, session.model_dump(mode="json"))
            members = self._members_in(tx, session)

        logger.info(
            "Session created", extra={"identity_key": key, "members": len(session.members)}
        )
        if self._channel is not None:
            self._channel.publish(
                SessionCreated(identity_key=key, member_ids=tuple(session.members))
            )
        return SessionCreation(created=True, session=session, members=members)

    def _existing(self, session: StepSession) -> SessionCreation:
        with self._store.transaction() as tx:
            members = self._members_in(tx, session)
        return SessionCreation(created=False, session=session, members=members)

    @staticmethod
    def _members_in(tx: Transaction, session: StepSession) -> list[ParticipantIdentity]:
        members: list[ParticipantIdentity] = []
        for member_id in session.members:
            raw = tx.get(PARTICIPANTS, member_id)
            if raw is not None:
                members.append(ParticipantIdentity.model_validate(raw))
        return members

    def get_session(self, identity_key: str) -> StepSession:
        raw = self._store.get(SESSIONS, identity_key.strip())
        if raw is None:
            raise NotFound(f"Session {identity_key!r} not found")
        return StepSession.model_validate(raw)

    def get_step(self, identity_key: str) -> int:
        return self.get_session(identity_key).current_step

    def members(self, identity_key: str) -> list[ParticipantIdentity]:
        return self._existing(self.get_session(identity_key)).members

    def get_participant(self, participant_id: str) -> ParticipantIdentity:
        raw = self._store.get(PARTICIPANTS, participant_id)
        if raw is None:
            raise NotFound(f"Participant {participant_id!r} not found")
        return ParticipantIdentity.model_validate(raw)

    def guarded_execute(
        self, identity_key: str, required_step: int, operation: GuardedOperation
    ) -> dict[str, object]:
        """Run `operation` once for `required_step` and advance the step.

        The operation's writes and the step advance are one transaction: both
        commit or neither does. The step is compared again inside the
        transaction, so two callers holding the same `required_step` resolve to
        one success and one `Conflict`/`StepMismatch`.
        """

        key = identity_key.strip()
        current = self.get_session(key).current_step
        if current != required_step:
            logger.warning(
                "Guarded operation rejected",
                extra={
                    "identity_key": key,
                    "operation": operation.name,
                    "required_step": required_step,
                    "current_step": current,
                },
            )
            raise StepMismatch(
                f"Invalid step. Expected step {required_step}, but current step is {current}",
                expected=required_step,
                actual=current,
            )
        if current >= self._step_count:
            raise SessionCompleted(
                "The demo is already completed", expected=required_step, actual=current
            )
        allowed = getattr(operation, "allowed_steps", None)
        if allowed is not None and required_step not in allowed:
            logger.warning(
                "Guarded operation not valid at this step",
                extra={
                    "identity_key": key,
                    "operation": operation.name,
                    "required_step": required_step,
                    "allowed_steps": sorted(allowed),
                },
            )
            raise StepMismatch(
                f"Operation {operation.name!r} can only run at step "
                f"{', '.join(str(s) for s in sorted(allowed))}",
                expected=min(allowed) if allowed else None,
                actual=current,
            )

        try:
            with self._store.transaction() as tx:
                committed = StepSession.model_validate(tx.require(SESSIONS, key))
                if committed.current_step != required_step:
                    raise Conflict(
                        f"Step {required_step} of session {key!r} was consumed concurrently"
                    )
                result = operation.apply(tx, committed)
                tx.update(SESSIONS, key, step=required_step + 1)
        except WorkflowError:
            raise
        except Exception as e:
            logger.exception(
                "Guarded operation failed",
                extra={"identity_key": key, "operation": operation.name},
            )
            raise UpstreamFailure(f"Operation {operation.name!r} failed: {e}") from e

        new_step = required_step + 1
        logger.info(
            "Guarded operation committed",
            extra={"identity_key": key, "operation": operation.name, "step": new_step},
        )
        if self._channel is not None:
            self._channel.publish(
                StepAdvanced(identity_key=key, operation=operation.name, step=new_step)
            )
        return result

    def run_operation(
        self,
        identity_key: str,
        required_step: int,
        op_name: str,
        op_args: dict[str, object] | None = None,
    ) -> GuardedOutcome:
        """Named-operation entry point reporting failures as an outcome."""

        try:
            operation = self._operations.build(op_name, op_args)
            result = self.guarded_execute(identity_key, required_step, operation)
        except WorkflowError as e:
            return GuardedOutcome(success=False, error=e.code, message=str(e))
        return GuardedOutcome(success=True, result=result)
