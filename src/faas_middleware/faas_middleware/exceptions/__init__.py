# ABOUTME: Exceptions package exports
# ABOUTME: Exports the base exception and the middleware exception hierarchy

from faas_middleware.exceptions.base import (
    CoreException,
    ConfigurationException,
)

from faas_middleware.exceptions.middleware import (
    MiddlewareError,
    MiddlewareExecutionError,
    MiddlewareConfigurationError,
    MiddlewarePipelineError,
    MiddlewareValidationError,
)

__all__ = [
    "CoreException",
    "ConfigurationException",
    # Middleware exceptions
    "MiddlewareError",
    "MiddlewareExecutionError",
    "MiddlewareConfigurationError",
    "MiddlewarePipelineError",
    "MiddlewareValidationError",
]
