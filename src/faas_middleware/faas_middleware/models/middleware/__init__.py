# ABOUTME: Middleware models package
# ABOUTME: Exports the execution context and invocation stage models

from .context import ExecutionContext
from .stage import InvocationOutcome, PipelineStage

__all__ = ["ExecutionContext", "InvocationOutcome", "PipelineStage"]
