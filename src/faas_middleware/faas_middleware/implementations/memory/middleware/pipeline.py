# ABOUTME: MiddlewarePipeline implementation wrapping a handler with before, after and error stages
# ABOUTME: Callable drop-in replacement for the handler plus the chainable registration API

import asyncio
import inspect
import threading
from collections.abc import Mapping
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from faas_middleware.config.settings import get_settings
from faas_middleware.exceptions import (
    MiddlewareConfigurationError,
    MiddlewareExecutionError,
    MiddlewarePipelineError,
    MiddlewareValidationError,
)
from faas_middleware.interfaces.middleware import STAGE_SLOTS, AbstractMiddlewarePipeline, Middleware
from faas_middleware.models.middleware import ExecutionContext, InvocationOutcome, PipelineStage
from faas_middleware.models.types import Handler, InvocationCallback, Step
from .runner import ErrorRunner, SequentialRunner, is_coroutine_callable, step_name, track_task

_current_context: ContextVar[Optional[ExecutionContext]] = ContextVar(
    "faas_middleware_current_context", default=None
)

# Values use() rejects outright, on top of None, classes and plain functions
_SCALAR_TYPES = (str, bytes, bytearray, int, float, complex, bool)


def current_context() -> ExecutionContext:
    """
    Get the execution context of the handler that is currently running.

    The context is published while a pipeline calls its handler, including
    tasks the handler creates during that call.

    Raises:
        MiddlewarePipelineError: If no handler is running.
    """
    context = _current_context.get()
    if context is None:
        raise MiddlewarePipelineError("No pipeline handler is running", code="NO_ACTIVE_CONTEXT")
    return context


class _Invocation:
    """State machine for a single pipeline invocation."""

    def __init__(
        self,
        pipeline: "MiddlewarePipeline",
        context: ExecutionContext,
        callback: InvocationCallback,
        before: List[Step],
        after: List[Step],
        errors: List[Step],
    ):
        self._handler = pipeline.handler
        self._log_steps = pipeline.log_steps
        self._context = context
        self._callback = callback
        self._before = before
        self._after = after
        self._errors = errors
        self._handler_called_back = False
        self._entered_error_stage = False
        self._terminated = False
        self._logger = pipeline._logger.bind(context_id=context.id)

    def start(self) -> None:
        self._logger.info(
            f"Invocation {self._context.id} started with {len(self._before)} before, "
            f"{len(self._after)} after and {len(self._errors)} error steps"
        )
        self._context.stage = PipelineStage.BEFORE
        SequentialRunner(
            self._before, self._context, self._on_before_done, stage=PipelineStage.BEFORE, log_steps=self._log_steps
        ).run()

    def _on_before_done(self, error: Optional[Any]) -> None:
        if error:
            self._handle_error(error)
            return
        self._run_handler()

    def _run_handler(self) -> None:
        self._context.stage = PipelineStage.HANDLER
        token = _current_context.set(self._context)
        try:
            if is_coroutine_callable(self._handler):
                self._schedule_handler()
            else:
                self._handler(self._context.request, self._context.invocation_meta, self._on_handler_done)
        except Exception as exc:
            if self._handler_called_back:
                raise
            self._logger.debug(f"Handler raised {type(exc).__name__}: {exc}")
            self._on_handler_done(exc)
        finally:
            _current_context.reset(token)

    def _schedule_handler(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise MiddlewareExecutionError(
                f"Coroutine handler {step_name(self._handler)} needs a running event loop",
                code="NO_RUNNING_LOOP",
                details={"step": step_name(self._handler), "stage": PipelineStage.HANDLER.value},
            ) from exc

        coro = self._handler(self._context.request, self._context.invocation_meta)
        task = track_task(loop.create_task(coro))
        task.add_done_callback(self._settle_handler)

    def _settle_handler(self, task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            self._on_handler_done(
                MiddlewareExecutionError(
                    f"Coroutine handler {step_name(self._handler)} was cancelled",
                    code="STEP_CANCELLED",
                    details={"step": step_name(self._handler), "stage": PipelineStage.HANDLER.value},
                )
            )
            return

        exc = task.exception()
        if exc is not None:
            self._on_handler_done(exc)
        else:
            self._on_handler_done(None, task.result())

    def _on_handler_done(self, error: Optional[Any] = None, response: Any = None) -> None:
        if self._handler_called_back:
            self._logger.warning("Handler called back more than once, ignoring")
            return
        self._handler_called_back = True
        self._context.response = response

        if error:
            self._handle_error(error)
            return

        self._context.stage = PipelineStage.AFTER
        SequentialRunner(
            self._after, self._context, self._on_after_done, stage=PipelineStage.AFTER, log_steps=self._log_steps
        ).run()

    def _on_after_done(self, error: Optional[Any]) -> None:
        if error:
            self._handle_error(error)
            return
        self._terminate(None)

    def _handle_error(self, error: Any) -> None:
        self._logger.debug(f"Entering error stage from {self._context.stage.value}: {error!r}")
        self._entered_error_stage = True
        self._context.error = error
        self._context.stage = PipelineStage.ERROR
        # Errors raised by error steps go straight to termination
        ErrorRunner(self._errors, self._context, self._terminate, log_steps=self._log_steps).run()

    def _terminate(self, error: Optional[Any]) -> None:
        if self._terminated:
            self._logger.warning(f"Invocation {self._context.id} already terminated, ignoring")
            return
        self._terminated = True
        self._context.stage = PipelineStage.TERMINATED

        if error:
            self._context.outcome = InvocationOutcome.FAILED
        elif self._entered_error_stage:
            self._context.outcome = InvocationOutcome.RECOVERED
        else:
            self._context.outcome = InvocationOutcome.SUCCESS

        duration_ms = self._context.get_execution_duration()
        if error:
            self._logger.error(
                f"Invocation {self._context.id} failed in {duration_ms:.2f}ms: {type(error).__name__}: {error}"
            )
            self._callback(error)
        else:
            self._logger.info(
                f"Invocation {self._context.id} completed in {duration_ms:.2f}ms, "
                f"outcome: {self._context.outcome.value}"
            )
            self._callback(None, self._context.response)


class MiddlewarePipeline(AbstractMiddlewarePipeline):
    """
    Wraps a request handler with ordered before, after and error steps.

    The pipeline is called exactly like the handler it wraps,
    ``pipeline(request, invocation_meta, callback)``, and calls ``callback``
    exactly once per invocation. Before steps run in registration order, the
    handler runs, then after steps run in reverse registration order. Any
    error routes to the error steps, which may recover it.

    Registration lists are the only state kept on the pipeline. Every
    invocation gets its own ExecutionContext and a snapshot of the lists, so
    overlapping invocations do not interfere and registration during an
    in-flight invocation does not affect it.
    """

    def __init__(self, handler: Handler, name: Optional[str] = None, log_steps: Optional[bool] = None):
        """
        Initialize the pipeline.

        Args:
            handler: ``handler(request, invocation_meta, callback)`` or
                ``async handler(request, invocation_meta) -> response``.
            name: Pipeline name used in logs. Defaults to the handler's name.
            log_steps: Emit a debug record per step. Defaults to the LOG_STEPS setting.

        Raises:
            MiddlewareValidationError: If the handler is not callable.
        """
        if not callable(handler):
            raise MiddlewareValidationError(
                "Handler must be callable",
                code="HANDLER_NOT_CALLABLE",
                details={"type": type(handler).__name__},
            )

        settings = get_settings()
        self.handler = handler
        self.name = name or getattr(handler, "__name__", None) or settings.PIPELINE_NAME
        self.log_steps = settings.LOG_STEPS if log_steps is None else log_steps

        self._before_steps: List[Step] = []
        self._after_steps: List[Step] = []
        self._error_steps: List[Step] = []

        # Guards the registration lists against registration from other threads
        self._lock = threading.RLock()

        self._logger = logger.bind(name=f"{__name__}.{self.name}")

    # Registration

    def use(self, middleware: "Middleware | Mapping[str, Step]") -> "MiddlewarePipeline":
        """
        Register every stage slot offered by a middleware object or mapping.

        Slots are validated before any of them is registered, so a rejected
        middleware leaves the pipeline unchanged.

        Raises:
            MiddlewareConfigurationError: If the argument is not object-shaped
                or offers none of before, after and on_error.
            MiddlewareValidationError: If a provided slot is not callable.
        """
        if (
            middleware is None
            or isinstance(middleware, _SCALAR_TYPES)
            or inspect.isclass(middleware)
            or inspect.isroutine(middleware)
        ):
            raise MiddlewareConfigurationError(
                "Middleware must be an object",
                code="MIDDLEWARE_NOT_OBJECT",
                details={"type": type(middleware).__name__},
            )

        if isinstance(middleware, Mapping):
            slots = {slot: middleware.get(slot) for slot in STAGE_SLOTS}
        else:
            slots = {slot: getattr(middleware, slot, None) for slot in STAGE_SLOTS}

        if all(step is None for step in slots.values()):
            raise MiddlewareConfigurationError(
                'Middleware must contain at least one key among "before", "after", "on_error"',
                code="MIDDLEWARE_NO_STAGES",
                details={"type": type(middleware).__name__},
            )

        for slot, step in slots.items():
            if step is not None:
                self._validate_step(step, slot)

        with self._lock:
            if slots["before"] is not None:
                self.before(slots["before"])
            if slots["after"] is not None:
                self.after(slots["after"])
            if slots["on_error"] is not None:
                self.on_error(slots["on_error"])

        return self

    def before(self, step: Step) -> "MiddlewarePipeline":
        """Append a before step; before steps run in registration order."""
        self._validate_step(step, "before")
        with self._lock:
            self._before_steps.append(step)
            count = len(self._before_steps)
        self._logger.debug(f"Before step {step_name(step)} registered. Total count: {count}")
        return self

    def after(self, step: Step) -> "MiddlewarePipeline":
        """Prepend an after step; after steps run in reverse registration order."""
        self._validate_step(step, "after")
        with self._lock:
            self._after_steps.insert(0, step)
            count = len(self._after_steps)
        self._logger.debug(f"After step {step_name(step)} registered. Total count: {count}")
        return self

    def on_error(self, step: Step) -> "MiddlewarePipeline":
        """Append an error step; error steps run in registration order."""
        self._validate_step(step, "on_error")
        with self._lock:
            self._error_steps.append(step)
            count = len(self._error_steps)
        self._logger.debug(f"Error step {step_name(step)} registered. Total count: {count}")
        return self

    @staticmethod
    def _validate_step(step: Any, stage: str) -> None:
        if not callable(step):
            raise MiddlewareValidationError(
                f"{stage} step must be callable",
                code="STEP_NOT_CALLABLE",
                details={"stage": stage, "type": type(step).__name__},
            )

    # Invocation

    def __call__(self, request: Any, invocation_meta: Any, callback: InvocationCallback) -> ExecutionContext:
        """
        Run one invocation.

        Args:
            request: Opaque input data.
            invocation_meta: Opaque metadata passed alongside the request.
            callback: Called exactly once, as ``callback(error)`` or ``callback(None, response)``.

        Returns:
            ExecutionContext: The invocation's context. It keeps changing until
            the callback fires when steps or the handler complete asynchronously.

        Raises:
            MiddlewarePipelineError: If the callback is not callable.
            Exception: Re-raised unchanged when it comes from code that runs after
                the current stage already moved on, so it cannot be routed to the
                error steps without firing the callback twice. This covers an
                exception raised by ``callback`` itself, and a step or handler that
                raises after calling ``proceed`` or its handler callback. By the time
                it propagates the callback has already fired, exactly once.
        """
        if not callable(callback):
            raise MiddlewarePipelineError(
                "Invocation callback must be callable",
                code="CALLBACK_NOT_CALLABLE",
                details={"pipeline_name": self.name, "type": type(callback).__name__},
            )

        with self._lock:
            before = list(self._before_steps)
            after = list(self._after_steps)
            errors = list(self._error_steps)

        context = ExecutionContext(request=request, invocation_meta=invocation_meta)
        _Invocation(self, context, callback, before, after, errors).start()
        return context

    async def invoke(self, request: Any, invocation_meta: Any = None) -> Any:
        """
        Run one invocation and await its outcome.

        Returns:
            The response, when the invocation succeeds or is recovered.

        Raises:
            The unrecovered error. Error values that are not exceptions are
            wrapped in MiddlewareExecutionError.
        """
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Any]" = loop.create_future()

        def settle(error: Optional[Any] = None, response: Any = None) -> None:
            if future.done():
                return
            if not error:
                future.set_result(response)
            elif isinstance(error, BaseException):
                future.set_exception(error)
            else:
                future.set_exception(
                    MiddlewareExecutionError(
                        f"Invocation failed with non-exception error: {error!r}",
                        code="NON_EXCEPTION_ERROR",
                        details={"error": error, "pipeline_name": self.name},
                    )
                )

        self(request, invocation_meta, settle)
        return await future

    # Introspection

    @property
    def middlewares(self) -> Mapping[str, Tuple[Step, ...]]:
        """Read-only snapshot of the registered steps, in execution order, keyed by stage."""
        with self._lock:
            return MappingProxyType(
                {
                    "before": tuple(self._before_steps),
                    "after": tuple(self._after_steps),
                    "on_error": tuple(self._error_steps),
                }
            )

    def get_middleware_count(self, stage: Optional[str] = None) -> int:
        """
        Get the number of registered steps.

        Args:
            stage: One of before, after, on_error. Counts all stages when None.

        Raises:
            ValueError: If the stage name is unknown.
        """
        view = self.middlewares
        if stage is None:
            return sum(len(steps) for steps in view.values())
        if stage not in view:
            raise ValueError(f"Unknown stage {stage!r}, expected one of {list(view)}")
        return len(view[stage])

    def get_pipeline_info(self) -> Dict[str, Any]:
        """
        Get information about the current pipeline state.

        Returns:
            dict: Pipeline name, handler name, step counts and step names per stage.
        """
        view = self.middlewares
        return {
            "name": self.name,
            "handler": step_name(self.handler),
            "middleware_count": sum(len(steps) for steps in view.values()),
            "stages": {stage: [step_name(step) for step in steps] for stage, steps in view.items()},
        }

    def __repr__(self) -> str:
        view = self.middlewares
        return (
            f"{self.__class__.__name__}(name={self.name!r}, before={len(view['before'])}, "
            f"after={len(view['after'])}, on_error={len(view['on_error'])})"
        )


def wrap(handler: Handler, name: Optional[str] = None, log_steps: Optional[bool] = None) -> MiddlewarePipeline:
    """
    Wrap a handler in a new MiddlewarePipeline.

    Example::

        pipeline = wrap(handler).before(parse_body).after(serialize).on_error(to_http_error)
        pipeline(event, context, callback)
    """
    return MiddlewarePipeline(handler, name=name, log_steps=log_steps)
