# ABOUTME: Abstract middleware pipeline interface for wrapping a handler with stage chains
# ABOUTME: Defines registration, invocation and introspection contracts

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Mapping, Tuple

if TYPE_CHECKING:
    from faas_middleware.models.middleware import ExecutionContext
    from faas_middleware.models.types import InvocationCallback, Step
    from .middleware import Middleware


class AbstractMiddlewarePipeline(ABC):
    """
    Abstract base class for middleware pipeline implementations.

    A pipeline wraps a single handler and is itself callable with the
    handler's calling convention, so it can replace the handler wherever the
    handler is installed.
    """

    @abstractmethod
    def use(self, middleware: "Middleware | Mapping[str, Step]") -> "AbstractMiddlewarePipeline":
        """
        Register every stage slot offered by a middleware object.

        Args:
            middleware: Object or mapping exposing any of before, after, on_error.

        Returns:
            The pipeline itself, for chaining.

        Raises:
            MiddlewareConfigurationError: If the argument is not object-shaped
                or offers none of the three slots.
        """
        pass

    @abstractmethod
    def before(self, step: "Step") -> "AbstractMiddlewarePipeline":
        """
        Register a before step. Before steps run in registration order.

        Returns:
            The pipeline itself, for chaining.
        """
        pass

    @abstractmethod
    def after(self, step: "Step") -> "AbstractMiddlewarePipeline":
        """
        Register an after step. After steps run in reverse registration order.

        Returns:
            The pipeline itself, for chaining.
        """
        pass

    @abstractmethod
    def on_error(self, step: "Step") -> "AbstractMiddlewarePipeline":
        """
        Register an error step. Error steps run in registration order.

        Returns:
            The pipeline itself, for chaining.
        """
        pass

    @abstractmethod
    def __call__(self, request: Any, invocation_meta: Any, callback: "InvocationCallback") -> "ExecutionContext":
        """
        Run one invocation through before steps, the handler and after steps.

        The callback is invoked exactly once, either as ``callback(error)``
        or as ``callback(None, response)``.

        Args:
            request: Opaque input data.
            invocation_meta: Opaque metadata passed alongside the request.
            callback: Terminal callback.

        Returns:
            The ExecutionContext created for this invocation.
        """
        pass

    @property
    @abstractmethod
    def middlewares(self) -> Mapping[str, Tuple["Step", ...]]:
        """
        Read-only view of the registered steps, keyed by stage.

        Intended for tests and tooling only.
        """
        pass
