"""Stage execution with decorative pacing and one real operation.

A stage is a set of sub-tasks. Pacing sub-tasks only animate: each jumps from
0% to 100% after a random delay drawn from the configured range. The single
effectful sub-task animates to 99% after a fixed delay and then awaits the real
call; it reaches 100% only when that call succeeds. All sub-tasks run in one
task group, so the stage is joined (never raced) and a failure of the real call
cancels the remaining pacing timers.

The visible "done" state therefore always reflects a real, successful result,
whatever the network latency.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from galaxy_workflow.config import WorkflowSettings
from galaxy_workflow.errors import StageAbandoned, UpstreamFailure, WorkflowError

logger = logging.getLogger(__name__)

SubTaskStatus = Literal["pending", "in-progress", "completed", "failed"]

Sleep = Callable[[float], Awaitable[None]]
ProgressCallback = Callable[["StageExecutionState"], None]
LivenessCheck = Callable[[], bool]


@dataclass(slots=True)
class SubTaskState:
    description: str
    status: SubTaskStatus = "pending"
    progress: int = 0
    effectful: bool = False

    def advance(self, progress: int, description: str | None = None) -> None:
        self.progress = progress
        self.status = "completed" if progress >= 100 else "in-progress"
        if description:
            self.description = description


@dataclass(slots=True)
class StageExecutionState:
    """Ephemeral per-stage progress as shown to the initiator."""

    subtasks: list[SubTaskState]

    @property
    def complete(self) -> bool:
        # Every sub-task must independently reach 100%.
        return bool(self.subtasks) and all(
            t.status == "completed" and t.progress >= 100 for t in self.subtasks
        )

    @property
    def failed(self) -> bool:
        return any(t.status == "failed" for t in self.subtasks)

    @property
    def progress(self) -> int:
        if not self.subtasks:
            return 0
        return sum(t.progress for t in self.subtasks) // len(self.subtasks)

    @property
    def status(self) -> SubTaskStatus:
        if self.failed:
            return "failed"
        if self.complete:
            return "completed"
        if any(t.status != "pending" for t in self.subtasks):
            return "in-progress"
        return "pending"

    def snapshot(self) -> tuple[tuple[str, str, int], ...]:
        return tuple((t.description, t.status, t.progress) for t in self.subtasks)


@dataclass(frozen=True, slots=True)
class PacingTask:
    description: str
    done_description: str | None = None


@dataclass(frozen=True, slots=True)
class EffectfulTask:
    """The one real asynchronous operation of a stage.

    `retry` should be False when a repeated call could duplicate an external
    side effect (for example a ledger write whose outcome is unknown after a
    timeout).
    """

    description: str
    call: Callable[[], Awaitable[Any]]
    done_description: str | None = None
    retry: bool = True


@dataclass(frozen=True, slots=True)
class StagePlan:
    pacing: tuple[PacingTask, ...] = ()
    effect: EffectfulTask | None = None


@dataclass(frozen=True, slots=True)
class StageResult:
    output: Any
    state: StageExecutionState


class StageRunner:
    """Runs one `StagePlan` and reports its output or its failure."""

    def __init__(
        self,
        *,
        pacing_range: tuple[float, float] = (0.3, 2.4),
        effect_animation_seconds: float = 0.6,
        effect_timeout_seconds: float | None = 30.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        low, high = pacing_range
        if low < 0 or high < low:
            raise ValueError(f"Invalid pacing range: {pacing_range!r}")
        self._pacing_range = (low, high)
        self._effect_animation_seconds = effect_animation_seconds
        self._effect_timeout_seconds = effect_timeout_seconds or None
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds
        self._rng = rng or random.Random()
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings: WorkflowSettings, *, rng: random.Random | None = None
    ) -> StageRunner:
        return cls(
            pacing_range=settings.pacing_range,
            effect_animation_seconds=settings.effect_animation_seconds,
            effect_timeout_seconds=settings.effect_timeout_seconds,
            max_retries=settings.effect_max_retries,
            retry_backoff_seconds=settings.effect_retry_backoff_seconds,
            rng=rng,
        )

    async def run(
        self,
        plan: StagePlan,
        *,
        on_update: ProgressCallback | None = None,
        is_live: LivenessCheck | None = None,
    ) -> StageResult:
        """Run every sub-task of `plan` and join them.

        Raises the effectful sub-task's `WorkflowError` when the real call fails;
        in that case the stage never reports complete. `is_live` is consulted
        right before each attempt of the real call: once it returns False the
        call is not started and `StageAbandoned` is raised instead.
        """

        subtasks = [SubTaskState(description=p.description) for p in plan.pacing]
        if plan.effect is not None:
            subtasks.append(SubTaskState(description=plan.effect.description, effectful=True))
        state = StageExecutionState(subtasks=subtasks)

        def notify() -> None:
            if on_update is not None:
                on_update(state)

        for subtask in subtasks:
            subtask.status = "in-progress"
        notify()

        effect_task: asyncio.Task[Any] | None = None
        failure: BaseException | None = None
        try:
            async with asyncio.TaskGroup() as group:
                for subtask, pacing in zip(subtasks, plan.pacing):
                    group.create_task(self._pace(subtask, pacing, notify))
                if plan.effect is not None:
                    effect_task = group.create_task(
                        self._run_effect(subtasks[-1], plan.effect, notify, is_live)
                    )
        except ExceptionGroup as failures:
            # Only the effectful sub-task can fail; pacing timers were cancelled.
            failure = failures.exceptions[0]
        if failure is not None:
            raise failure

        output = effect_task.result() if effect_task is not None else None
        return StageResult(output=output, state=state)

    async def _pace(self, subtask: SubTaskState, task: PacingTask, notify: Callable[[], None]) -> None:
        await self._sleep(self._rng.uniform(*self._pacing_range))
        subtask.advance(100, task.done_description)
        notify()

    async def _run_effect(
        self,
        subtask: SubTaskState,
        task: EffectfulTask,
        notify: Callable[[], None],
        is_live: LivenessCheck | None = None,
    ) -> Any:
        await self._sleep(self._effect_animation_seconds)
        subtask.advance(99)
        notify()

        try:
            output = await self._call(task, is_live)
        except WorkflowError:
            subtask.status = "failed"
            notify()
            raise

        subtask.advance(100, task.done_description)
        notify()
        return output

    async def _call(self, task: EffectfulTask, is_live: LivenessCheck | None = None) -> Any:
        attempts = 1 + (self._max_retries if task.retry else 0)
        attempt = 1
        while True:
            if is_live is not None and not is_live():
                logger.info(
                    "Skipping effectful sub-task of an abandoned stage",
                    extra={"task": task.description, "attempt": attempt},
                )
                raise StageAbandoned(f"{task.description} was skipped: the stage was left")
            try:
                return await self._attempt(task)
            except WorkflowError as e:
                if not e.retryable or attempt >= attempts:
                    raise
                delay = self._retry_backoff_seconds * 2 ** (attempt - 1)
                logger.info(
                    "Retrying effectful sub-task",
                    extra={
                        "task": task.description,
                        "attempt": attempt,
                        "delay": delay,
                        "error": str(e),
                    },
                )
            await self._sleep(delay)
            attempt += 1

    async def _attempt(self, task: EffectfulTask) -> Any:
        try:
            if self._effect_timeout_seconds is None:
                return await task.call()
            return await asyncio.wait_for(task.call(), self._effect_timeout_seconds)
        except WorkflowError:
            raise
        except TimeoutError as e:
            raise UpstreamFailure(
                f"{task.description} timed out after {self._effect_timeout_seconds}s"
            ) from e
        except Exception as e:
            logger.exception("Effectful sub-task raised", extra={"task": task.description})
            raise UpstreamFailure(str(e) or type(e).__name__) from e
