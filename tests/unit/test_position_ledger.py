from __future__ import annotations

import pytest

from galaxy_workflow.errors import InputValidationError, NotFound, PermissionDenied, UpstreamFailure
from galaxy_workflow.events import EventChannel, PositionAppended
from galaxy_workflow.ledger.galaxies import GalaxyRecord, GalaxyRegistry
from galaxy_workflow.ledger.positions import PositionLedger
from galaxy_workflow.store import DocumentStore


class BrokenLedger:
    def record(self, kind: str, payload: dict[str, object]) -> str:
        raise ConnectionError("ledger unreachable")


def test_append_position_orders_per_resource(positions: PositionLedger) -> None:
    orders = [positions.append_position("g1", i, i, f"tx{i}").order for i in range(3)]
    other = positions.append_position("g2", 0, 0, "tx-other")

    assert orders == [1, 2, 3]
    assert other.order == 1
    assert [r.order for r in positions.get_history("g1")] == [1, 2, 3]


def test_history_keeps_every_record(positions: PositionLedger) -> None:
    assert positions.append_position("g1", 10, 20, "tx1").order == 1
    assert positions.append_position("g1", 30, 40, "tx2").order == 2

    history = [(r.order, r.x, r.y, r.external_ref) for r in positions.get_history("g1")]
    assert history == [(1, 10, 20, "tx1"), (2, 30, 40, "tx2")]
    latest = positions.latest("g1")
    assert latest is not None and latest.external_ref == "tx2"
    assert positions.latest("unknown") is None
    assert positions.get_history("unknown") == []


def test_append_position_rejects_blank_resource(positions: PositionLedger) -> None:
    with pytest.raises(InputValidationError):
        positions.append_position(" ", 1, 2, "tx")


def test_set_position_by_owner(
    positions: PositionLedger,
    galaxies: GalaxyRegistry,
    galaxy: GalaxyRecord,
    channel: EventChannel,
) -> None:
    appended: list[PositionAppended] = []
    channel.subscribe(PositionAppended, appended.append)

    record = positions.set_position(galaxy.id, "maint-1")

    assert (record.order, record.x, record.y, record.external_ref) == (1, 10.0, 20.0, "tx1")
    updated = galaxies.get(galaxy.id)
    assert (updated.x, updated.y) == (10.0, 20.0)
    assert appended == [
        PositionAppended(resource_id=galaxy.id, order=1, x=10.0, y=20.0, external_ref="tx1")
    ]

    moved = positions.set_position(galaxy.id, "maint-1", x=1.5, y=2.5)
    assert moved.order == 2
    assert (galaxies.get(galaxy.id).x, galaxies.get(galaxy.id).y) == (1.5, 2.5)
    assert len(positions.get_history(galaxy.id)) == 2


def test_set_position_by_stranger_is_denied(
    positions: PositionLedger, galaxy: GalaxyRecord, recorder
) -> None:
    with pytest.raises(PermissionDenied):
        positions.set_position(galaxy.id, "intruder")

    assert positions.get_history(galaxy.id) == []
    assert recorder.records == []


def test_set_position_unknown_resource(positions: PositionLedger) -> None:
    with pytest.raises(NotFound):
        positions.set_position("nope", "maint-1")


def test_set_position_recorder_failure_appends_nothing(
    store: DocumentStore, galaxy: GalaxyRecord, coordinates
) -> None:
    ledger = PositionLedger(store, coordinates=coordinates, recorder=BrokenLedger())

    with pytest.raises(UpstreamFailure) as exc:
        ledger.set_position(galaxy.id, "maint-1")

    assert isinstance(exc.value.__cause__, ConnectionError)
    assert ledger.get_history(galaxy.id) == []


def test_place_reports_outcome(positions: PositionLedger, galaxy: GalaxyRecord) -> None:
    denied = positions.place(galaxy.id, "intruder")
    assert denied.success is False
    assert denied.error == "PermissionDenied"

    placed = positions.place(galaxy.id, "maint-1")
    assert placed.success is True
    assert (placed.x, placed.y, placed.order, placed.external_ref) == (10.0, 20.0, 1, "tx1")
