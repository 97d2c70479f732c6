"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
import random
from typing import Any

import pytest

from galaxy_workflow.config import WorkflowSettings
from galaxy_workflow.events import EventChannel
from galaxy_workflow.ledger.galaxies import GalaxyRecord, GalaxyRegistry
from galaxy_workflow.ledger.positions import PositionLedger
from galaxy_workflow.session.gate import StepGate
from galaxy_workflow.session.operations import OperationRegistry
from galaxy_workflow.store import DocumentStore
from galaxy_workflow.workflow.stage_runner import StageRunner


class FixedCoordinates:
    """Coordinate source returning the same spot every time."""

    def __init__(self, x: float = 10.0, y: float = 20.0) -> None:
        self.calls: list[str] = []
        self._xy = (x, y)

    def next_coordinates(self, resource_id: str) -> tuple[float, float]:
        self.calls.append(resource_id)
        return self._xy


class RecordingLedger:
    """Ledger recorder handing out tx1, tx2, ... and remembering what it recorded."""

    def __init__(self) -> None:
        self.records: list[tuple[str, dict[str, Any]]] = []

    def record(self, kind: str, payload: dict[str, Any]) -> str:
        self.records.append((kind, payload))
        return f"tx{len(self.records)}"


async def instant(_seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def settings() -> WorkflowSettings:
    """Provide settings with every delay disabled."""
    return WorkflowSettings(
        _env_file=None,
        pacing_min_seconds=0.0,
        pacing_max_seconds=0.0,
        effect_animation_seconds=0.0,
        effect_timeout_seconds=5.0,
        effect_max_retries=0,
        effect_retry_backoff_seconds=0.0,
        auto_advance_delay_seconds=0.0,
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(7)


@pytest.fixture
def store() -> DocumentStore:
    """Provide an in-memory document store."""
    return DocumentStore()


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel()


@pytest.fixture
def gate(store: DocumentStore, channel: EventChannel, rng: random.Random) -> StepGate:
    return StepGate(store, operations=OperationRegistry(multiplier=1.8), channel=channel, rng=rng)


@pytest.fixture
def galaxies(store: DocumentStore) -> GalaxyRegistry:
    return GalaxyRegistry(store)


@pytest.fixture
def galaxy(galaxies: GalaxyRegistry) -> GalaxyRecord:
    """Provide a galaxy owned by `maint-1`."""
    return galaxies.create(name="rocket", maintainer="maint-1", description="A rocket")


@pytest.fixture
def coordinates() -> FixedCoordinates:
    return FixedCoordinates()


@pytest.fixture
def recorder() -> RecordingLedger:
    return RecordingLedger()


@pytest.fixture
def positions(
    store: DocumentStore,
    coordinates: FixedCoordinates,
    recorder: RecordingLedger,
    channel: EventChannel,
) -> PositionLedger:
    return PositionLedger(store, coordinates=coordinates, recorder=recorder, channel=channel)


@pytest.fixture
def fast_runner(rng: random.Random) -> StageRunner:
    """Provide a stage runner whose timers never wait."""
    return StageRunner(
        pacing_range=(0.0, 0.0),
        effect_animation_seconds=0.0,
        effect_timeout_seconds=None,
        max_retries=0,
        retry_backoff_seconds=0.0,
        rng=rng,
        sleep=instant,
    )
