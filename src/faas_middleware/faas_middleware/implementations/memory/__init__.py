# ABOUTME: In-memory implementations package
# ABOUTME: Registration lists live in process memory, fixed after setup

from .middleware import MiddlewarePipeline, current_context, wrap

__all__ = ["MiddlewarePipeline", "current_context", "wrap"]
