# ABOUTME: Interfaces package for the middleware pipeline library
# ABOUTME: Re-exports the middleware and pipeline contracts

from faas_middleware.interfaces.middleware import STAGE_SLOTS, AbstractMiddlewarePipeline, Middleware

__all__ = ["STAGE_SLOTS", "AbstractMiddlewarePipeline", "Middleware"]
