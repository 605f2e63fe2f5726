# ABOUTME: Models package for the middleware pipeline library
# ABOUTME: Re-exports the execution context, stage enums and callable type aliases

from faas_middleware.models.middleware import ExecutionContext, InvocationOutcome, PipelineStage
from faas_middleware.models.types import Done, Handler, InvocationCallback, Proceed, Step

__all__ = [
    "ExecutionContext",
    "InvocationOutcome",
    "PipelineStage",
    "Done",
    "Handler",
    "InvocationCallback",
    "Proceed",
    "Step",
]
