"""Append-only placement ledger.

Every coordinate change of a resource is a new `PlacementRecord` with the next
per-resource order index and the external transaction reference that recorded
it. Records are never edited or removed; the current position is simply the
record with the highest order.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from galaxy_workflow.collaborators import CoordinateSource, LedgerRecorder
from galaxy_workflow.errors import (
    InputValidationError,
    NotFound,
    PermissionDenied,
    UpstreamFailure,
    WorkflowError,
)
from galaxy_workflow.events import EventChannel, PositionAppended
from galaxy_workflow.store import GALAXIES, PLACEMENTS, DocumentStore, Transaction

logger = logging.getLogger(__name__)


class PlacementRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_id: str
    x: float
    y: float
    order: int = Field(ge=1)
    external_ref: str
    recorded_at: str


class PlacementOutcome(BaseModel):
    success: bool
    x: float | None = None
    y: float | None = None
    order: int | None = None
    external_ref: str | None = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def from_record(cls, record: PlacementRecord) -> PlacementOutcome:
        return cls(
            success=True,
            x=record.x,
            y=record.y,
            order=record.order,
            external_ref=record.external_ref,
        )


def _placement_id(resource_id: str, order: int) -> str:
    return f"{resource_id}#{order}"


class PositionLedger:
    def __init__(
        self,
        store: DocumentStore,
        *,
        coordinates: CoordinateSource | None = None,
        recorder: LedgerRecorder | None = None,
        channel: EventChannel | None = None,
    ) -> None:
        self._store = store
        self._coordinates = coordinates
        self._recorder = recorder
        self._channel = channel

    def append_position(
        self, resource_id: str, x: float, y: float, external_ref: str
    ) -> PlacementRecord:
        """Append the next placement of `resource_id`; prior records stay untouched."""

        if not resource_id.strip():
            raise InputValidationError("Resource id must not be empty")

        with self._store.transaction() as tx:
            record = self._append(tx, resource_id, x, y, external_ref)
        self._announce(record)
        return record

    @staticmethod
    def _append(
        tx: Transaction, resource_id: str, x: float, y: float, external_ref: str
    ) -> PlacementRecord:
        orders = [doc["order"] for doc in tx.find(PLACEMENTS, resource_id=resource_id)]
        record = PlacementRecord(
            resource_id=resource_id,
            x=x,
            y=y,
            order=max(orders, default=0) + 1,
            external_ref=external_ref,
            recorded_at=datetime.now(tz=UTC).isoformat(),
        )
        # insert() refuses an existing id, so an order can never be reused.
        tx.insert(
            PLACEMENTS, _placement_id(resource_id, record.order), record.model_dump(mode="json")
        )
        return record

    def _announce(self, record: PlacementRecord) -> None:
        logger.info(
            "Placement appended",
            extra={
                "resource_id": record.resource_id,
                "order": record.order,
                "external_ref": record.external_ref,
            },
        )
        if self._channel is not None:
            self._channel.publish(
                PositionAppended(
                    resource_id=record.resource_id,
                    order=record.order,
                    x=record.x,
                    y=record.y,
                    external_ref=record.external_ref,
                )
            )

    def get_history(self, resource_id: str) -> list[PlacementRecord]:
        records = [
            PlacementRecord.model_validate(doc)
            for doc in self._store.find(PLACEMENTS, resource_id=resource_id)
        ]
        records.sort(key=lambda r: r.order)
        return records

    def latest(self, resource_id: str) -> PlacementRecord | None:
        history = self.get_history(resource_id)
        return history[-1] if history else None

    def set_position(
        self,
        resource_id: str,
        requester_identity: str,
        *,
        x: float | None = None,
        y: float | None = None,
    ) -> PlacementRecord:
        """Place `resource_id` on behalf of its owner.

        Coordinates come from the coordinate source unless both are given, and
        the transaction reference from the ledger recorder. Nothing is appended
        when the requester is not the owner or a collaborator fails.
        """

        owner = self._owner_of(resource_id)
        if requester_identity != owner:
            logger.warning(
                "Placement refused",
                extra={"resource_id": resource_id, "requester": requester_identity},
            )
            raise PermissionDenied(f"Only the owner of {resource_id!r} may place it")

        try:
            if x is None or y is None:
                if self._coordinates is None:
                    raise InputValidationError("Coordinates are required")
                x, y = self._coordinates.next_coordinates(resource_id)
            if self._recorder is None:
                raise UpstreamFailure("No ledger recorder configured")
            external_ref = self._recorder.record(
                "placement", {"resource_id": resource_id, "x": x, "y": y}
            )
        except WorkflowError:
            raise
        except Exception as e:
            raise UpstreamFailure(f"Placement of {resource_id!r} failed: {e}") from e

        with self._store.transaction() as tx:
            record = self._append(tx, resource_id, x, y, external_ref)
            tx.update(GALAXIES, resource_id, x=record.x, y=record.y)
        self._announce(record)
        return record

    def place(self, resource_id: str, requester_identity: str, **coords: float) -> PlacementOutcome:
        """`set_position` reporting failures as an outcome."""

        try:
            record = self.set_position(resource_id, requester_identity, **coords)
        except WorkflowError as e:
            return PlacementOutcome(success=False, error=e.code, message=str(e))
        return PlacementOutcome.from_record(record)

    def _owner_of(self, resource_id: str) -> str:
        galaxy = self._store.get(GALAXIES, resource_id)
        if galaxy is None:
            raise NotFound(f"Resource {resource_id!r} not found")
        return str(galaxy.get("maintainer") or "")
