# ABOUTME: Callable type aliases for steps, proceed callbacks and handlers
# ABOUTME: Shared by the interfaces, runners and pipeline for consistent annotations

from typing import Any, Awaitable, Callable, Optional, Union

from faas_middleware.models.middleware.context import ExecutionContext

# proceed() or proceed(error)
Proceed = Callable[..., None]

# step(context, proceed), or async step(context) -> error | None
Step = Union[
    Callable[[ExecutionContext, Proceed], Any],
    Callable[[ExecutionContext], Awaitable[Optional[Any]]],
]

# done(error | None), called exactly once by a runner
Done = Callable[[Optional[Any]], None]

# callback(error, response) as handed to handlers and pipelines
InvocationCallback = Callable[..., None]

# handler(request, invocation_meta, callback), or async handler(request, invocation_meta) -> response
Handler = Union[
    Callable[[Any, Any, InvocationCallback], Any],
    Callable[[Any, Any], Awaitable[Any]],
]
