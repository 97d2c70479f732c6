"""Unit tests for the step-gated session ledger."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import ClassVar

import pytest

from galaxy_workflow.errors import (
    Conflict,
    InputValidationError,
    NotFound,
    SessionCompleted,
    StepMismatch,
    UpstreamFailure,
)
from galaxy_workflow.events import EventChannel, SessionCreated, StepAdvanced
from galaxy_workflow.ledger.galaxies import GalaxyRecord, GalaxyRegistry
from galaxy_workflow.session.gate import StepGate
from galaxy_workflow.session.models import DEMO_STEPS, ParticipantIdentity, StepSession, describe_step
from galaxy_workflow.session.operations import AdvanceStep, OperationRegistry
from galaxy_workflow.store import PARTICIPANTS, DocumentStore, Transaction


def _user(handle: str = "ada") -> ParticipantIdentity:
    return ParticipantIdentity(handle=handle, role="user")


@dataclass(frozen=True)
class CrashAfterWrite:
    participant_id: str

    name: ClassVar[str] = "crash"

    def apply(self, tx: Transaction, session: StepSession) -> dict[str, object]:
        tx.increment(PARTICIPANTS, self.participant_id, "sunshines", 1000)
        raise RuntimeError("backend went away")


def test_create_session_is_idempotent(gate: StepGate, store: DocumentStore) -> None:
    first = gate.create_session("ada@example.com")
    second = gate.create_session("ada@example.com")

    assert first.created is True
    assert second.created is False
    assert [m.id for m in first.members] == [m.id for m in second.members]
    assert [m.role for m in first.members] == ["user", "maintainer", "contributor"]
    assert len(store.find(PARTICIPANTS)) == 3


def test_default_members_derive_user_handle_from_key(gate: StepGate) -> None:
    creation = gate.create_session("Ada.Lovelace@example.com")

    assert creation.members[0].handle == "ada-lovelace"
    assert creation.session.current_step == 0
    assert creation.session.step is None


def test_explicit_member_list_is_used_verbatim(gate: StepGate) -> None:
    empty = gate.create_session("empty@example.com", [])
    assert empty.created is True
    assert empty.members == []

    user = _user()
    creation = gate.create_session("dup@example.com", [user, user])
    assert [m.id for m in creation.members] == [user.id]


def test_blank_identity_key_is_rejected(gate: StepGate) -> None:
    with pytest.raises(InputValidationError):
        gate.create_session("   ")


def test_guarded_step_is_single_use(gate: StepGate) -> None:
    gate.create_session("k", [])

    assert gate.guarded_execute("k", 0, AdvanceStep()) == {"step": 1}
    with pytest.raises(StepMismatch) as exc:
        gate.guarded_execute("k", 0, AdvanceStep())
    assert exc.value.expected == 0
    assert exc.value.actual == 1
    assert str(exc.value) == "Invalid step. Expected step 0, but current step is 1"

    assert gate.guarded_execute("k", 1, AdvanceStep()) == {"step": 2}
    assert gate.get_step("k") == 2


def test_obtain_sunshines_credits_participant_and_galaxy(
    gate: StepGate, galaxies: GalaxyRegistry, galaxy: GalaxyRecord
) -> None:
    user = _user()
    assert gate.create_session("u1", [user]).created is True

    op = gate.operations.obtain_sunshines(galaxy_id=galaxy.id, participant_id=user.id, amount=50)
    result = gate.guarded_execute("u1", 0, op)

    assert result["sunshines"] == pytest.approx(90.0)
    assert gate.get_step("u1") == 1
    assert gate.get_participant(user.id).sunshines == pytest.approx(90.0)
    assert galaxies.get(galaxy.id).sunshines == pytest.approx(90.0)

    with pytest.raises(StepMismatch):
        gate.guarded_execute("u1", 0, op)
    assert gate.get_participant(user.id).sunshines == pytest.approx(90.0)
    assert galaxies.get(galaxy.id).sunshines == pytest.approx(90.0)


def test_second_donation_is_a_conflict(gate: StepGate, galaxy: GalaxyRecord) -> None:
    user = _user()
    gate.create_session("u1", [user])
    gate.create_session("u2", [user])
    op = gate.operations.obtain_sunshines(galaxy_id=galaxy.id, participant_id=user.id)
    gate.guarded_execute("u1", 0, op)

    with pytest.raises(Conflict):
        gate.guarded_execute("u2", 0, op)
    assert gate.get_step("u1") == 1
    assert gate.get_step("u2") == 0


def test_obtain_sunshines_only_runs_at_its_own_step(
    gate: StepGate, galaxies: GalaxyRegistry, galaxy: GalaxyRecord
) -> None:
    gate.create_session("k")
    maintainer = next(m for m in gate.members("k") if m.role == "maintainer")
    gate.guarded_execute("k", 0, AdvanceStep())
    gate.guarded_execute("k", 1, AdvanceStep())
    assert describe_step(2) == ("assign_contributor", "maintainer")

    outcome = gate.run_operation(
        "k", 2, "obtain_sunshines", {"galaxy_id": galaxy.id, "participant_id": maintainer.id}
    )

    assert outcome.success is False
    assert outcome.error == "StepMismatch"
    assert gate.get_step("k") == 2
    assert gate.get_participant(maintainer.id).sunshines == maintainer.sunshines
    assert galaxies.get(galaxy.id).sunshines == 0


def test_failed_operation_commits_nothing(gate: StepGate) -> None:
    user = _user()
    gate.create_session("k", [user])

    with pytest.raises(UpstreamFailure) as exc:
        gate.guarded_execute("k", 0, CrashAfterWrite(user.id))

    assert isinstance(exc.value.__cause__, RuntimeError)
    assert gate.get_step("k") == 0
    assert gate.get_participant(user.id).sunshines == 0


def test_participant_outside_session_is_not_found(gate: StepGate, galaxy: GalaxyRecord) -> None:
    gate.create_session("k", [_user()])
    stranger = gate.create_session("other", [_user("bob")]).members[0]

    op = gate.operations.obtain_sunshines(galaxy_id=galaxy.id, participant_id=stranger.id)
    with pytest.raises(NotFound):
        gate.guarded_execute("k", 0, op)
    assert gate.get_step("k") == 0


def test_concurrent_calls_for_same_step_succeed_once(
    store: DocumentStore, galaxies: GalaxyRegistry, galaxy: GalaxyRecord
) -> None:
    gate = StepGate(store, operations=OperationRegistry(multiplier=1.8))
    user = _user()
    gate.create_session("race", [user])
    op = gate.operations.obtain_sunshines(galaxy_id=galaxy.id, participant_id=user.id, amount=50)
    barrier = threading.Barrier(2)

    def attempt() -> object:
        barrier.wait()
        try:
            return gate.guarded_execute("race", 0, op)
        except (StepMismatch, Conflict) as e:
            return e

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(lambda _: attempt(), range(2)))

    successes = [o for o in outcomes if isinstance(o, dict)]
    failures = [o for o in outcomes if isinstance(o, (StepMismatch, Conflict))]
    assert len(successes) == 1
    assert len(failures) == 1
    assert gate.get_step("race") == 1
    assert gate.get_participant(user.id).sunshines == pytest.approx(90.0)
    assert galaxies.get(galaxy.id).sunshines == pytest.approx(90.0)


def test_session_past_last_step_is_completed(store: DocumentStore) -> None:
    gate = StepGate(store, step_count=1)
    gate.create_session("k", [])
    gate.guarded_execute("k", 0, AdvanceStep())

    with pytest.raises(SessionCompleted) as exc:
        gate.guarded_execute("k", 1, AdvanceStep())
    assert exc.value.code == "StepMismatch"


def test_unknown_session_is_not_found(gate: StepGate) -> None:
    with pytest.raises(NotFound):
        gate.get_step("nobody")
    with pytest.raises(NotFound):
        gate.guarded_execute("nobody", 0, AdvanceStep())


def test_run_operation_reports_outcomes(gate: StepGate) -> None:
    gate.create_session("k", [])

    ok = gate.run_operation("k", 0, "advance")
    assert ok.success is True
    assert ok.result == {"step": 1}

    replay = gate.run_operation("k", 0, "advance")
    assert replay.success is False
    assert replay.error == "StepMismatch"

    unknown = gate.run_operation("k", 1, "teleport")
    assert unknown.success is False
    assert unknown.error == "ValidationError"

    bad_args = gate.run_operation("k", 1, "obtain_sunshines", {"galaxy_id": ""})
    assert bad_args.error == "ValidationError"

    missing = gate.run_operation("nobody", 0, "advance")
    assert missing.error == "NotFound"


def test_gate_publishes_typed_events(gate: StepGate, channel: EventChannel) -> None:
    created: list[SessionCreated] = []
    advanced: list[StepAdvanced] = []
    channel.subscribe(SessionCreated, created.append)
    channel.subscribe(StepAdvanced, advanced.append)

    gate.create_session("k", [])
    gate.create_session("k", [])
    gate.guarded_execute("k", 0, AdvanceStep())

    assert [e.identity_key for e in created] == ["k"]
    assert advanced == [StepAdvanced(identity_key="k", operation="advance", step=1)]


def test_demo_step_table() -> None:
    assert len(DEMO_STEPS) == 10
    assert describe_step(0) == ("obtain_sunshine", "user")
    assert describe_step(9) == ("place_star_in_galaxy", "contributor")
    assert describe_step(10) is None
