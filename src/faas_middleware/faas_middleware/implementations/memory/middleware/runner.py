# ABOUTME: Sequential and error-stage runners that walk middleware steps over an execution context
# ABOUTME: Every run calls its done callback exactly once, whether steps proceed, fail or raise

import asyncio
import inspect
from collections import deque
from typing import Any, Iterable, Optional, Set

from loguru import logger

from faas_middleware.exceptions import MiddlewareExecutionError, MiddlewarePipelineError
from faas_middleware.models.middleware import ExecutionContext, PipelineStage
from faas_middleware.models.types import Done, Step

# Step and handler tasks still running. The event loop only keeps weak
# references to tasks, and nothing else roots an in-flight invocation.
_active_tasks: Set["asyncio.Task[Any]"] = set()


def step_name(step: Any) -> str:
    """Best-effort readable name for a step or handler, used in logs and execution paths."""
    name = getattr(step, "__qualname__", None) or getattr(step, "__name__", None)
    if name is None:
        # functools.partial and similar wrappers
        wrapped = getattr(step, "func", None)
        if wrapped is not None:
            return step_name(wrapped)
        return step.__class__.__name__
    return name


def track_task(task: "asyncio.Task[Any]") -> "asyncio.Task[Any]":
    """Keep a strong reference to ``task`` until it finishes."""
    _active_tasks.add(task)
    task.add_done_callback(_active_tasks.discard)
    return task


def active_task_count() -> int:
    """Number of step and handler tasks that have not finished yet."""
    return len(_active_tasks)


def is_coroutine_callable(obj: Any) -> bool:
    """Whether calling ``obj`` produces a coroutine (async functions, methods and callable objects)."""
    if inspect.iscoroutinefunction(obj):
        return True
    call = getattr(obj, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


class _Proceed:
    """Single-use proceed callback handed to one step."""

    __slots__ = ("_runner", "_step_name", "called")

    def __init__(self, runner: "SequentialRunner", name: str):
        self._runner = runner
        self._step_name = name
        self.called = False

    def __call__(self, error: Optional[Any] = None) -> None:
        if self.called:
            self._runner._logger.warning(f"Step {self._step_name} called proceed more than once, ignoring")
            return
        self.called = True
        self._runner._on_proceed(error)

    def consume(self) -> bool:
        """Mark the callback as used without advancing. Returns False if it was already used."""
        if self.called:
            return False
        self.called = True
        return True


class SequentialRunner:
    """
    Walks an ordered snapshot of steps over a shared execution context.

    Each step is called as ``step(context, proceed)`` and the runner does not
    advance until ``proceed`` is called. ``proceed(error)`` stops the walk and
    reports the error; a step raising before it proceeds is treated the same
    way. Coroutine-function steps are called as ``step(context)`` on the
    running event loop and their return value is passed to ``proceed``.

    ``done`` is called exactly once per run. A runner is single-use.
    """

    def __init__(
        self,
        steps: Iterable[Step],
        context: ExecutionContext,
        done: Done,
        stage: PipelineStage = PipelineStage.BEFORE,
        log_steps: bool = True,
    ):
        """
        Initialize the runner.

        Args:
            steps: Steps to walk. Copied immediately so later registration cannot affect this run.
            context: Execution context handed to every step.
            done: Completion callback, called with the stage error or None.
            stage: Stage this runner executes, used for logging.
            log_steps: Whether to emit a debug record for every step.
        """
        self._steps = deque(steps)
        self.total_steps = len(self._steps)
        self._context = context
        self._done = done
        self._stage = stage
        self._log_steps = log_steps
        self._started = False
        self._finished = False
        self._logger = logger.bind(name=__name__, context_id=context.id, stage=stage.value)

    @property
    def finished(self) -> bool:
        return self._finished

    def run(self) -> None:
        """
        Start walking the steps.

        Raises:
            MiddlewarePipelineError: If this runner was already started.
        """
        if self._started:
            raise MiddlewarePipelineError(
                "Runner has already been started",
                code="RUNNER_ALREADY_STARTED",
                details={"stage": self._stage.value, "context_id": self._context.id},
            )
        self._started = True
        self._start()

    def _start(self) -> None:
        self._next_step()

    def _on_proceed(self, error: Optional[Any]) -> None:
        if error:
            self._finish(error)
            return
        self._next_step()

    def _on_step_raised(self, exc: BaseException) -> None:
        self._finish(exc)

    def _on_exhausted(self) -> None:
        self._finish(None)

    def _next_step(self) -> None:
        if not self._steps:
            self._on_exhausted()
            return
        self._invoke(self._steps.popleft())

    def _invoke(self, step: Step) -> None:
        name = step_name(step)
        if self._log_steps:
            position = self.total_steps - len(self._steps)
            self._logger.debug(f"Running {self._stage.value} step {position}/{self.total_steps}: {name}")

        self._context.add_execution_step(name)
        proceed = _Proceed(self, name)
        try:
            if is_coroutine_callable(step):
                self._schedule(step, proceed, name)
            else:
                step(self._context, proceed)
        except Exception as exc:
            if not proceed.consume():
                # Raised downstream of proceed(); this stage has already moved on
                raise
            self._logger.debug(f"{self._stage.value} step {name} raised {type(exc).__name__}: {exc}")
            self._on_step_raised(exc)

    def _schedule(self, step: Step, proceed: _Proceed, name: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise MiddlewareExecutionError(
                f"Coroutine step {name} needs a running event loop",
                code="NO_RUNNING_LOOP",
                details={"step": name, "stage": self._stage.value},
            ) from exc

        task = track_task(loop.create_task(step(self._context)))
        task.add_done_callback(lambda finished: self._settle(finished, proceed, name))

    def _settle(self, task: "asyncio.Task[Any]", proceed: _Proceed, name: str) -> None:
        if task.cancelled():
            if proceed.consume():
                self._on_step_raised(
                    MiddlewareExecutionError(
                        f"Coroutine step {name} was cancelled",
                        code="STEP_CANCELLED",
                        details={"step": name, "stage": self._stage.value},
                    )
                )
            return

        exc = task.exception()
        if exc is not None:
            if proceed.consume():
                self._logger.debug(f"{self._stage.value} step {name} raised {type(exc).__name__}: {exc}")
                self._on_step_raised(exc)
            return

        proceed(task.result())

    def _finish(self, error: Optional[Any]) -> None:
        if self._finished:
            self._logger.warning(f"{self._stage.value} runner already finished, ignoring late completion")
            return
        self._finished = True
        self._steps.clear()

        if error:
            self._logger.debug(f"{self._stage.value} stage stopped with error: {error!r}")
        self._done(error)


class ErrorRunner(SequentialRunner):
    """
    Runner for the error stage.

    Unlike the sequential runner, every error step gets a turn: ``proceed()``
    marks the pending error as handled and ``proceed(error)`` keeps it pending,
    and the walk continues either way. Once the steps are exhausted ``done``
    receives None if any step recovered, otherwise the pending error.
    A step that raises ends the stage immediately with that exception.
    """

    def __init__(self, steps: Iterable[Step], context: ExecutionContext, done: Done, log_steps: bool = True):
        super().__init__(steps, context, done, stage=PipelineStage.ERROR, log_steps=log_steps)

    def _start(self) -> None:
        self._context._handled_error = False
        # Seeded like a proceed call so the first error step runs with the error pending
        self._on_proceed(self._context.error)

    def _on_proceed(self, error: Optional[Any]) -> None:
        if not error:
            self._context._handled_error = True
        else:
            self._context.error = error
        self._next_step()

    def _on_exhausted(self) -> None:
        if self._context._handled_error:
            self._logger.debug("Error stage recovered")
            self._finish(None)
        else:
            self._finish(self._context.error)


def run_middlewares(
    steps: Iterable[Step],
    context: ExecutionContext,
    done: Done,
    stage: PipelineStage = PipelineStage.BEFORE,
    log_steps: bool = True,
) -> SequentialRunner:
    """Build and start a SequentialRunner. Returns the runner for inspection."""
    runner = SequentialRunner(steps, context, done, stage=stage, log_steps=log_steps)
    runner.run()
    return runner


def run_error_middlewares(
    steps: Iterable[Step],
    context: ExecutionContext,
    done: Done,
    log_steps: bool = True,
) -> ErrorRunner:
    """Build and start an ErrorRunner. Returns the runner for inspection."""
    runner = ErrorRunner(steps, context, done, log_steps=log_steps)
    runner.run()
    return runner
