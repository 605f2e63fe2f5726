# ABOUTME: Middleware interfaces package
# ABOUTME: Exports the middleware base object and the abstract pipeline contract

from .middleware import STAGE_SLOTS, Middleware
from .pipeline import AbstractMiddlewarePipeline

__all__ = ["STAGE_SLOTS", "Middleware", "AbstractMiddlewarePipeline"]
