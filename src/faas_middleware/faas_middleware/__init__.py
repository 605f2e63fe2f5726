# ABOUTME: Package initialization for the function-as-a-service middleware pipeline
# ABOUTME: Exposes wrap(), the pipeline, the execution context and the middleware base class

"""
Middleware pipeline for request/response handlers.

Wrap a handler with ordered before, after and error steps and get back a
callable with the handler's own calling convention::

    from faas_middleware import wrap

    def handler(request, invocation_meta, callback):
        callback(None, {"ok": True})

    pipeline = wrap(handler).before(authenticate).after(serialize).on_error(to_error_response)
    pipeline(event, runtime_context, callback)
"""

from faas_middleware.implementations.memory.middleware import MiddlewarePipeline, current_context, wrap
from faas_middleware.interfaces.middleware import Middleware
from faas_middleware.models.middleware import ExecutionContext, InvocationOutcome, PipelineStage

__version__ = "0.1.0"

__all__ = [
    "ExecutionContext",
    "InvocationOutcome",
    "Middleware",
    "MiddlewarePipeline",
    "PipelineStage",
    "current_context",
    "wrap",
]
