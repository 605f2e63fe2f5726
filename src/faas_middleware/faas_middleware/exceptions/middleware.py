# ABOUTME: Middleware-specific exception classes for error handling
# ABOUTME: Covers registration, step validation, pipeline misuse and async scheduling failures

from faas_middleware.exceptions.base import CoreException, ConfigurationException


class MiddlewareError(CoreException):
    """Base exception class for middleware-related errors.

    This is the base class for all middleware-specific exceptions.
    Should be used as a base for more specific middleware exceptions
    rather than being raised directly.
    """

    pass


class MiddlewareExecutionError(MiddlewareError):
    """Exception raised when a step or handler cannot be executed.

    Used when:
    - A coroutine step or handler is invoked without a running event loop
    - A coroutine step's task is cancelled before it settles
    - ``invoke()`` has to raise an error value that is not an exception

    Delivered through the invocation callback like any other stage error.
    """

    pass


class MiddlewareConfigurationError(MiddlewareError, ConfigurationException):
    """Exception raised when ``use()`` receives an invalid middleware.

    Used when the argument is not object-shaped (None, strings, numbers,
    classes, plain functions) or exposes none of the ``before``, ``after``
    and ``on_error`` slots.
    """

    pass


class MiddlewarePipelineError(MiddlewareError):
    """Exception raised when pipeline objects are misused.

    Used when:
    - A runner instance is started a second time
    - The pipeline is called with a callback that is not callable
    - ``current_context()`` is called while no handler is running
    """

    pass


class MiddlewareValidationError(MiddlewareError):
    """Exception raised when a registered step fails validation.

    Used when a step passed to ``before``, ``after``, ``on_error`` or found in
    a ``use()`` slot is not callable.
    """

    pass
