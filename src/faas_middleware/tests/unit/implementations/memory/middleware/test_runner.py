# ABOUTME: Unit tests for SequentialRunner and ErrorRunner
# ABOUTME: Tests ordering, short-circuiting, recovery tracking, snapshots and exactly-once completion

import asyncio
from typing import Any, List

import pytest

from faas_middleware.exceptions import MiddlewareExecutionError, MiddlewarePipelineError
from faas_middleware.implementations.memory.middleware import (
    ErrorRunner,
    SequentialRunner,
    active_task_count,
    run_error_middlewares,
    run_middlewares,
)
from faas_middleware.models.middleware import ExecutionContext, PipelineStage
from tests.constants import TestDelays, TestTimeouts


class DoneRecorder:
    """Completion callback that records every error it receives."""

    def __init__(self) -> None:
        self.calls: List[Any] = []

    def __call__(self, error: Any = None) -> None:
        self.calls.append(error)


def recording_step(name: str, order: List[str], error: Any = None):
    def step(context, proceed):
        order.append(name)
        if error is None:
            proceed()
        else:
            proceed(error)

    step.__qualname__ = name
    return step


class TestSequentialRunner:
    """Unit tests for SequentialRunner."""

    @pytest.mark.unit
    def test_runs_steps_in_order(self):
        order: List[str] = []
        done = DoneRecorder()
        context = ExecutionContext()

        run_middlewares([recording_step(n, order) for n in ("a", "b", "c")], context, done)

        assert order == ["a", "b", "c"]
        assert done.calls == [None]
        assert context.execution_path == ["a", "b", "c"]

    @pytest.mark.unit
    def test_empty_steps_complete_immediately(self):
        done = DoneRecorder()

        runner = run_middlewares([], ExecutionContext(), done)

        assert done.calls == [None]
        assert runner.finished is True

    @pytest.mark.unit
    def test_proceed_with_error_short_circuits(self):
        order: List[str] = []
        done = DoneRecorder()
        error = ValueError("invalid body")

        run_middlewares(
            [recording_step("a", order), recording_step("b", order, error), recording_step("c", order)],
            ExecutionContext(),
            done,
        )

        assert order == ["a", "b"]
        assert done.calls == [error]

    @pytest.mark.unit
    @pytest.mark.parametrize("falsy", [False, 0, ""], ids=["false", "zero", "empty"])
    def test_falsy_proceed_value_is_not_an_error(self, falsy):
        order: List[str] = []
        done = DoneRecorder()

        def lenient(context, proceed):
            order.append("lenient")
            proceed(falsy)

        run_middlewares([lenient, recording_step("next", order)], ExecutionContext(), done)

        assert order == ["lenient", "next"]
        assert done.calls == [None]

    @pytest.mark.unit
    def test_raising_step_is_treated_as_proceed_with_error(self):
        order: List[str] = []
        done = DoneRecorder()
        error = KeyError("missing")

        def raising(context, proceed):
            order.append("raising")
            raise error

        run_middlewares([raising, recording_step("after", order)], ExecutionContext(), done)

        assert order == ["raising"]
        assert done.calls == [error]

    @pytest.mark.unit
    def test_steps_are_snapshotted(self):
        """Adding to the source list during a run does not change that run."""
        order: List[str] = []
        done = DoneRecorder()
        steps = []

        def registering(context, proceed):
            order.append("registering")
            steps.append(recording_step("late", order))
            proceed()

        steps.append(registering)
        runner = SequentialRunner(steps, ExecutionContext(), done)
        runner.run()

        assert order == ["registering"]
        assert runner.total_steps == 1
        assert len(steps) == 2

    @pytest.mark.unit
    def test_double_proceed_is_ignored(self, log_records):
        order: List[str] = []
        done = DoneRecorder()

        def eager(context, proceed):
            proceed()
            proceed()

        run_middlewares([eager, recording_step("next", order)], ExecutionContext(), done)

        assert order == ["next"]
        assert done.calls == [None]
        assert any(
            record["level"].name == "WARNING" and "more than once" in record["message"] for record in log_records
        )

    @pytest.mark.unit
    def test_exception_after_proceed_propagates_without_second_completion(self):
        """Errors raised downstream of proceed() belong to the caller, not this stage."""
        done_calls: List[Any] = []

        def failing_done(error=None):
            done_calls.append(error)
            raise RuntimeError("terminal callback failed")

        with pytest.raises(RuntimeError, match="terminal callback failed"):
            run_middlewares([recording_step("a", [])], ExecutionContext(), failing_done)

        assert done_calls == [None]

    @pytest.mark.unit
    def test_runner_is_single_use(self):
        runner = SequentialRunner([], ExecutionContext(), DoneRecorder())
        runner.run()

        with pytest.raises(MiddlewarePipelineError) as exc_info:
            runner.run()

        assert exc_info.value.code == "RUNNER_ALREADY_STARTED"

    @pytest.mark.unit
    def test_coroutine_step_without_event_loop_fails_the_stage(self):
        done = DoneRecorder()

        async def needs_loop(context):
            return None

        run_middlewares([needs_loop], ExecutionContext(), done, stage=PipelineStage.AFTER)

        assert len(done.calls) == 1
        assert isinstance(done.calls[0], MiddlewareExecutionError)
        assert done.calls[0].code == "NO_RUNNING_LOOP"
        assert done.calls[0].details["stage"] == "after"

    @pytest.mark.asyncio
    async def test_coroutine_steps(self):
        order: List[str] = []
        loop = asyncio.get_running_loop()
        finished: "asyncio.Future[Any]" = loop.create_future()

        async def slow(context):
            await asyncio.sleep(TestDelays.STEP_DELAY)
            order.append("slow")

        run_middlewares([slow, recording_step("sync", order)], ExecutionContext(), finished.set_result)
        error = await asyncio.wait_for(finished, TestTimeouts.STANDARD_OPERATION)

        assert error is None
        assert order == ["slow", "sync"]

    @pytest.mark.asyncio
    async def test_coroutine_step_returning_error_short_circuits(self):
        order: List[str] = []
        error = ValueError("rejected")
        finished: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()

        async def rejecting(context):
            return error

        run_middlewares([rejecting, recording_step("skipped", order)], ExecutionContext(), finished.set_result)

        assert await asyncio.wait_for(finished, TestTimeouts.STANDARD_OPERATION) is error
        assert order == []

    @pytest.mark.asyncio
    async def test_coroutine_step_returning_falsy_value_continues(self):
        order: List[str] = []
        finished: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()

        async def lenient(context):
            return False

        run_middlewares([lenient, recording_step("next", order)], ExecutionContext(), finished.set_result)

        assert await asyncio.wait_for(finished, TestTimeouts.STANDARD_OPERATION) is None
        assert order == ["next"]

    @pytest.mark.asyncio
    async def test_pending_coroutine_step_is_kept_alive(self):
        release = asyncio.Event()
        finished: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()

        async def waiting(context):
            await release.wait()

        baseline = active_task_count()
        run_middlewares([waiting], ExecutionContext(), finished.set_result)

        assert active_task_count() == baseline + 1

        release.set()
        assert await asyncio.wait_for(finished, TestTimeouts.STANDARD_OPERATION) is None
        assert active_task_count() == baseline

    @pytest.mark.asyncio
    async def test_coroutine_step_raising(self):
        error = ConnectionError("upstream down")
        finished: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()

        async def raising(context):
            raise error

        run_middlewares([raising], ExecutionContext(), finished.set_result)

        assert await asyncio.wait_for(finished, TestTimeouts.STANDARD_OPERATION) is error


class TestErrorRunner:
    """Unit tests for ErrorRunner."""

    @pytest.mark.unit
    def test_empty_error_steps_propagate_the_error(self):
        error = ValueError("E1")
        context = ExecutionContext(error=error)
        done = DoneRecorder()

        run_error_middlewares([], context, done)

        assert done.calls == [error]
        assert context._handled_error is False

    @pytest.mark.unit
    def test_first_step_runs_with_error_pending(self):
        seen: List[Any] = []
        error = ValueError("E1")
        context = ExecutionContext(error=error)

        def inspect_error(ctx, proceed):
            seen.append(ctx.error)
            proceed(ctx.error)

        run_error_middlewares([inspect_error], context, DoneRecorder())

        assert seen == [error]

    @pytest.mark.unit
    def test_recovery_sets_handled_flag_and_completes_without_error(self):
        context = ExecutionContext(error=ValueError("E1"))
        done = DoneRecorder()

        def recover(ctx, proceed):
            ctx.response = {"fallback": True}
            proceed()

        run_error_middlewares([recover], context, done)

        assert done.calls == [None]
        assert context._handled_error is True
        assert context.response == {"fallback": True}

    @pytest.mark.unit
    @pytest.mark.parametrize("falsy", [False, 0, ""], ids=["false", "zero", "empty"])
    def test_falsy_proceed_value_counts_as_recovery(self, falsy):
        context = ExecutionContext(error=ValueError("E1"))
        done = DoneRecorder()

        def recover(ctx, proceed):
            ctx.response = "default"
            proceed(falsy)

        run_error_middlewares([recover], context, done)

        assert done.calls == [None]
        assert context._handled_error is True
        assert context.response == "default"

    @pytest.mark.unit
    def test_every_error_step_gets_a_turn(self):
        """proceed(error) does not short-circuit the error stage."""
        order: List[str] = []
        error = ValueError("E1")
        done = DoneRecorder()

        run_error_middlewares(
            [recording_step("log", order, error), recording_step("notify", order, error)],
            ExecutionContext(error=error),
            done,
        )

        assert order == ["log", "notify"]
        assert done.calls == [error]

    @pytest.mark.unit
    def test_steps_after_recovery_still_run(self):
        order: List[str] = []
        done = DoneRecorder()

        run_error_middlewares(
            [recording_step("recover", order), recording_step("cleanup", order)],
            ExecutionContext(error=ValueError("E1")),
            done,
        )

        assert order == ["recover", "cleanup"]
        assert done.calls == [None]

    @pytest.mark.unit
    def test_recovery_is_sticky_for_the_rest_of_the_stage(self):
        """Once recovered, a later proceed(error) updates the error but cannot undo the recovery."""
        second = RuntimeError("E2")
        context = ExecutionContext(error=ValueError("E1"))
        done = DoneRecorder()

        run_error_middlewares(
            [recording_step("recover", []), recording_step("reraise", [], second)],
            context,
            done,
        )

        assert done.calls == [None]
        assert context.error is second

    @pytest.mark.unit
    def test_replaced_error_is_propagated(self):
        original = ValueError("E1")
        translated = RuntimeError("translated")
        context = ExecutionContext(error=original)
        done = DoneRecorder()

        run_error_middlewares([recording_step("translate", [], translated)], context, done)

        assert done.calls == [translated]
        assert context.error is translated

    @pytest.mark.unit
    def test_raising_error_step_is_fatal(self):
        order: List[str] = []
        fatal = RuntimeError("error handler broke")
        done = DoneRecorder()

        def broken(ctx, proceed):
            order.append("broken")
            raise fatal

        run_error_middlewares(
            [recording_step("recover", order), broken, recording_step("never", order)],
            ExecutionContext(error=ValueError("E1")),
            done,
        )

        assert order == ["recover", "broken"]
        assert done.calls == [fatal]

    @pytest.mark.unit
    def test_handled_flag_is_reset_on_start(self):
        error = ValueError("E1")
        context = ExecutionContext(error=error)
        context._handled_error = True
        done = DoneRecorder()

        ErrorRunner([], context, done).run()

        assert done.calls == [error]
        assert context._handled_error is False

    @pytest.mark.asyncio
    async def test_coroutine_error_step_recovers(self):
        context = ExecutionContext(error=ValueError("E1"))
        finished: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()

        async def recover(ctx):
            await asyncio.sleep(TestDelays.STEP_DELAY)
            ctx.response = "default"
            return None

        run_error_middlewares([recover], context, finished.set_result)

        assert await asyncio.wait_for(finished, TestTimeouts.STANDARD_OPERATION) is None
        assert context.response == "default"
