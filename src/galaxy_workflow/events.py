"""Typed publish/subscribe channel.

Events are frozen dataclasses and subscriptions are keyed by event class, so a
handler registered for `StageCompleted` only ever receives `StageCompleted`
payloads. There are no string-keyed events and no ambient global channel: the
channel is passed explicitly to the components that publish on it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionCreated:
    identity_key: str
    member_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class StepAdvanced:
    identity_key: str
    operation: str
    step: int


@dataclass(frozen=True, slots=True)
class PositionAppended:
    resource_id: str
    order: int
    x: float
    y: float
    external_ref: str


@dataclass(frozen=True, slots=True)
class StageEntered:
    workflow: str
    stage_index: int
    stage_id: str


@dataclass(frozen=True, slots=True)
class StageProgressed:
    workflow: str
    stage_index: int
    progress: int
    subtasks: tuple[tuple[str, str, int], ...] = field(default=())


@dataclass(frozen=True, slots=True)
class StageCompleted:
    workflow: str
    stage_index: int
    stage_id: str


@dataclass(frozen=True, slots=True)
class StageFailed:
    workflow: str
    stage_index: int
    stage_id: str
    code: str
    message: str


@dataclass(frozen=True, slots=True)
class WorkflowCancelled:
    workflow: str
    stage_index: int | None


@dataclass(frozen=True, slots=True)
class WorkflowCompleted:
    workflow: str


E = TypeVar("E")


class EventChannel:
    """Synchronous, in-process fan-out of typed events."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register `handler` for `event_type`; the returned callable unsubscribes it."""

        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: object) -> None:
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed", extra={"event": type(event).__name__}
                )
