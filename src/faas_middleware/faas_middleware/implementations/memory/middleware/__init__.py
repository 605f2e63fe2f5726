# ABOUTME: Memory-based middleware implementations package
# ABOUTME: Provides the in-memory middleware pipeline and its stage runners

from .pipeline import MiddlewarePipeline, current_context, wrap
from .runner import ErrorRunner, SequentialRunner, active_task_count, run_error_middlewares, run_middlewares

__all__ = [
    "MiddlewarePipeline",
    "current_context",
    "wrap",
    "ErrorRunner",
    "SequentialRunner",
    "active_task_count",
    "run_error_middlewares",
    "run_middlewares",
]
