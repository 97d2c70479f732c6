"""Guided multi-stage workflow state machine.

A `WorkflowDefinition` is a fixed, ordered list of stages. The stepper keeps
the current stage index within bounds, gates forward moves on the current
stage's precondition, runs automatic stages through a `StageRunner` and
advances when such a stage completes.

Navigation is explicit method calls (`next()`, `previous()`, `cancel()`,
`complete_final_stage()`). Stage runs are background tasks; each run carries
an entry token and its completion is ignored unless the stepper is still
attached and still showing that very entry of the stage.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from galaxy_workflow.errors import InputValidationError, UpstreamFailure, WorkflowError
from galaxy_workflow.events import (
    EventChannel,
    StageCompleted,
    StageEntered,
    StageFailed,
    StageProgressed,
    WorkflowCancelled,
    WorkflowCompleted,
)
from galaxy_workflow.logging import bind_log_context
from galaxy_workflow.workflow.stage_runner import (
    Sleep,
    StageExecutionState,
    StagePlan,
    StageRunner,
)

logger = logging.getLogger(__name__)


@dataclass
class WorkflowContext:
    """Explicit state threaded through the stages of one workflow run.

    - `inputs`: raw values entered by the initiator
    - `validated`: values produced by preconditions for later stages
    - `outputs`: results of completed automatic stages, by stage id
    - `errors`: the current validation message of a stage, by stage id
    """

    inputs: dict[str, Any] = field(default_factory=dict)
    validated: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


Precondition = Callable[[WorkflowContext, int, int], bool]
PlanFactory = Callable[[WorkflowContext], StagePlan]


@dataclass(frozen=True, slots=True)
class StageDefinition:
    """One stage of a workflow.

    `precondition(context, from_index, to_index)` gates leaving this stage
    forward. It may raise `InputValidationError` to surface a specific message
    and may write to `context.validated`; it must not call backends.
    `runner` turns the context into the stage's `StagePlan`; stages without a
    runner are interactive. Once an `irreversible` stage has been entered the
    stepper no longer moves backwards.
    """

    id: str
    title: str = ""
    precondition: Precondition | None = None
    runner: PlanFactory | None = None
    irreversible: bool = False

    @property
    def label(self) -> str:
        return self.title or self.id


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    name: str
    stages: tuple[StageDefinition, ...]

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError(f"Workflow {self.name!r} has no stages")
        ids = [s.id for s in self.stages]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Workflow {self.name!r} has duplicate stage ids")

    @property
    def last_index(self) -> int:
        return len(self.stages) - 1


class StepperStatus(str, Enum):
    DETACHED = "detached"
    ACTIVE = "active"
    COMPLETED = "completed"


class WorkflowStepper:
    def __init__(
        self,
        definition: WorkflowDefinition,
        *,
        runner: StageRunner,
        on_complete: Callable[[WorkflowContext], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        on_cancel: Callable[[], None] | None = None,
        channel: EventChannel | None = None,
        auto_advance_delay: float = 0.0,
        cancel_on_error: bool = True,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._definition = definition
        self._runner = runner
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_cancel = on_cancel
        self._channel = channel
        self._auto_advance_delay = auto_advance_delay
        self._cancel_on_error = cancel_on_error
        self._sleep = sleep

        self._status = StepperStatus.DETACHED
        self._stage_index: int | None = None
        self._entry = 0
        self._context = WorkflowContext()
        self._execution: dict[int, StageExecutionState] = {}
        self._background: set[asyncio.Task[None]] = set()

    @property
    def definition(self) -> WorkflowDefinition:
        return self._definition

    @property
    def status(self) -> StepperStatus:
        return self._status

    @property
    def stage_index(self) -> int | None:
        return self._stage_index

    @property
    def current_stage(self) -> StageDefinition | None:
        if self._stage_index is None:
            return None
        return self._definition.stages[self._stage_index]

    @property
    def context(self) -> WorkflowContext:
        return self._context

    def execution_state(self, stage_index: int | None = None) -> StageExecutionState | None:
        index = self._stage_index if stage_index is None else stage_index
        if index is None:
            return None
        return self._execution.get(index)

    async def attach(self, inputs: dict[str, Any] | None = None) -> None:
        """Start a fresh run at the first stage."""

        if self._status is StepperStatus.ACTIVE:
            raise RuntimeError(f"Workflow {self._definition.name!r} is already running")
        self._reset()
        self._context.inputs.update(inputs or {})
        self._status = StepperStatus.ACTIVE
        self._enter(0)

    def set_input(self, key: str, value: Any) -> None:
        """Record raw input for the current stage and clear its validation error."""

        self._context.inputs[key] = value
        stage = self.current_stage
        if stage is not None:
            self._context.errors.pop(stage.id, None)

    async def next(self) -> bool:
        """Advance one stage if the current stage's gate allows it.

        Raises `InputValidationError` (and records it for the current stage)
        when the gate refuses; the stage index is then unchanged.
        """

        if self._status is not StepperStatus.ACTIVE or self._stage_index is None:
            return False
        index = self._stage_index
        if index >= self._definition.last_index:
            return False
        self._check_gate(index, index + 1)
        self._enter(index + 1)
        return True

    async def previous(self) -> bool:
        if self._status is not StepperStatus.ACTIVE or not self._stage_index:
            return False
        index = self._stage_index
        if any(s.irreversible for s in self._definition.stages[: index + 1]):
            logger.info(
                "Backward navigation blocked by irreversible stage",
                extra={"workflow": self._definition.name, "stage_index": index},
            )
            return False

        for later, stage in enumerate(self._definition.stages[index:], start=index):
            self._context.outputs.pop(stage.id, None)
            self._context.errors.pop(stage.id, None)
            self._execution.pop(later, None)
        self._enter(index - 1)
        return True

    async def auto_advance(self, stage_index: int) -> bool:
        """Advance after the automatic stage `stage_index` completed.

        Ignored when the stepper has left that stage in the meantime.
        """

        if self._status is not StepperStatus.ACTIVE or self._stage_index != stage_index:
            logger.info(
                "Ignoring stale auto-advance",
                extra={"workflow": self._definition.name, "stage_index": stage_index},
            )
            return False
        try:
            if stage_index == self._definition.last_index:
                return await self.complete_final_stage()
            return await self.next()
        except InputValidationError:
            # The message is kept in context.errors for the stage.
            return False

    async def cancel(self) -> None:
        """Tear down the run; committed side effects are left as they are."""

        if self._status is StepperStatus.DETACHED:
            return
        index = self._stage_index
        logger.info(
            "Workflow cancelled",
            extra={"workflow": self._definition.name, "stage_index": index},
        )
        self._reset()
        self._publish(WorkflowCancelled(workflow=self._definition.name, stage_index=index))
        if self._on_cancel is not None:
            self._on_cancel()

    async def complete_final_stage(self) -> bool:
        last = self._definition.last_index
        if self._status is not StepperStatus.ACTIVE or self._stage_index != last:
            return False
        self._check_gate(last, last + 1)

        final_context = copy.deepcopy(self._context)
        self._status = StepperStatus.COMPLETED
        self._entry += 1
        logger.info("Workflow completed", extra={"workflow": self._definition.name})
        self._publish(WorkflowCompleted(workflow=self._definition.name))
        if self._on_complete is not None:
            self._on_complete(final_context)
        return True

    async def wait_idle(self) -> None:
        """Wait for every in-flight stage run, including ones already detached."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _reset(self) -> None:
        self._entry += 1
        self._status = StepperStatus.DETACHED
        self._stage_index = None
        self._context = WorkflowContext()
        self._execution = {}

    def _is_live(self, stage_index: int, entry: int) -> bool:
        return (
            self._status is StepperStatus.ACTIVE
            and self._stage_index == stage_index
            and self._entry == entry
        )

    def _check_gate(self, from_index: int, to_index: int) -> None:
        stage = self._definition.stages[from_index]
        self._context.errors.pop(stage.id, None)

        error: InputValidationError | None = None
        if stage.runner is not None and stage.id not in self._context.outputs:
            error = InputValidationError(
                f"{stage.label} has not finished yet", stage_index=from_index
            )
        elif stage.precondition is not None:
            try:
                if not stage.precondition(self._context, from_index, to_index):
                    error = InputValidationError(
                        f"{stage.label} is not complete", stage_index=from_index
                    )
            except InputValidationError as e:
                e.stage_index = from_index
                error = e

        if error is not None:
            self._context.errors[stage.id] = error.message
            logger.info(
                "Stage gate refused",
                extra={
                    "workflow": self._definition.name,
                    "stage_index": from_index,
                    "reason": error.message,
                },
            )
            raise error

    def _enter(self, index: int) -> None:
        self._stage_index = index
        self._entry += 1
        stage = self._definition.stages[index]
        self._publish(
            StageEntered(workflow=self._definition.name, stage_index=index, stage_id=stage.id)
        )
        if stage.runner is not None and stage.id not in self._context.outputs:
            self._spawn(self._run_stage(index, self._entry))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_stage(self, index: int, entry: int) -> None:
        stage = self._definition.stages[index]
        if stage.runner is None:
            raise RuntimeError(f"Stage {stage.id!r} has no runner")
        # Each stage run is its own task, so the binding ends with the run.
        bind_log_context(workflow=self._definition.name, stage_id=stage.id)
        logger.info(
            "Stage started",
            extra={"workflow": self._definition.name, "stage_index": index, "stage_id": stage.id},
        )

        def on_update(state: StageExecutionState) -> None:
            if not self._is_live(index, entry):
                return
            self._execution[index] = state
            self._publish(
                StageProgressed(
                    workflow=self._definition.name,
                    stage_index=index,
                    progress=state.progress,
                    subtasks=state.snapshot(),
                )
            )

        try:
            plan = stage.runner(self._context)
            result = await self._runner.run(
                plan, on_update=on_update, is_live=lambda: self._is_live(index, entry)
            )
        except WorkflowError as e:
            await self._stage_failed(index, entry, e)
            return
        except Exception as e:
            logger.exception(
                "Stage raised unexpectedly",
                extra={"workflow": self._definition.name, "stage_id": stage.id},
            )
            await self._stage_failed(index, entry, UpstreamFailure(str(e) or type(e).__name__))
            return

        if not self._is_live(index, entry):
            logger.info(
                "Ignoring stale stage completion",
                extra={"workflow": self._definition.name, "stage_index": index},
            )
            return

        self._context.outputs[stage.id] = result.output
        logger.info(
            "Stage completed",
            extra={"workflow": self._definition.name, "stage_index": index, "stage_id": stage.id},
        )
        self._publish(
            StageCompleted(workflow=self._definition.name, stage_index=index, stage_id=stage.id)
        )

        if self._auto_advance_delay:
            await self._sleep(self._auto_advance_delay)
        if self._is_live(index, entry):
            await self.auto_advance(index)

    async def _stage_failed(self, index: int, entry: int, error: WorkflowError) -> None:
        stage = self._definition.stages[index]
        if not self._is_live(index, entry):
            logger.info(
                "Ignoring failure of a detached stage run",
                extra={"workflow": self._definition.name, "stage_index": index, "error": str(error)},
            )
            return

        logger.warning(
            "Stage failed",
            extra={
                "workflow": self._definition.name,
                "stage_index": index,
                "stage_id": stage.id,
                "code": error.code,
                "error": str(error),
            },
        )
        self._publish(
            StageFailed(
                workflow=self._definition.name,
                stage_index=index,
                stage_id=stage.id,
                code=error.code,
                message=str(error),
            )
        )
        if self._cancel_on_error:
            await self.cancel()
        if self._on_error is not None:
            self._on_error(str(error))

    def _publish(self, event: object) -> None:
        if self._channel is not None:
            self._channel.publish(event)
