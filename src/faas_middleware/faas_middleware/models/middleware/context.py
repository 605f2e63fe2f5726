# ABOUTME: ExecutionContext model shared by every step of one pipeline invocation
# ABOUTME: Holds request, invocation metadata, response, error and execution state

from datetime import datetime, UTC
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, ConfigDict, PrivateAttr

from .stage import InvocationOutcome, PipelineStage


class ExecutionContext(BaseModel):
    """
    Mutable record shared across one invocation's middleware run.

    A fresh context is created for every invocation and handed to each step
    together with its proceed callback. Steps read and write ``request``,
    ``invocation_meta``, ``response`` and ``error`` directly.
    """

    # Context identification
    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique context identifier")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC), description="Context creation timestamp")

    # Invocation payload
    request: Any = Field(default=None, description="Opaque input data of the invocation")
    invocation_meta: Any = Field(default=None, description="Opaque metadata passed alongside the request")

    # Outcome
    response: Any = Field(default=None, description="Result value read by the terminal callback")
    error: Any = Field(default=None, description="Pending error raised by the handler or a step")

    # Execution state
    stage: PipelineStage = Field(default=PipelineStage.INIT, description="Current invocation stage")
    execution_path: List[str] = Field(default_factory=list, description="Names of the steps invoked so far")
    outcome: Optional[InvocationOutcome] = Field(default=None, description="How the invocation terminated, once it has")

    # Set by the error runner only; reset at the start of every error stage
    _handled_error: bool = PrivateAttr(default=False)
    _context_data: Dict[str, Any] = PrivateAttr(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def has_error(self) -> bool:
        """Whether an error is currently recorded on the context."""
        return bool(self.error)

    def add_execution_step(self, step_name: str) -> None:
        """
        Add a step to the execution path.

        Args:
            step_name: Name of the step that was invoked.
        """
        self.execution_path.append(step_name)

    def get_execution_path(self) -> List[str]:
        """Return a copy of the names of the steps invoked so far."""
        return self.execution_path.copy()

    def get_execution_duration(self) -> float:
        """
        Get the duration since context creation in milliseconds.

        Returns:
            float: Duration in milliseconds.
        """
        now = datetime.now(UTC)
        return (now - self.timestamp).total_seconds() * 1000

    # Scratch space for middleware that need to pass data to later stages
    def set_data(self, key: str, value: Any) -> None:
        self._context_data[key] = value

    def get_data(self, key: str, default: Optional[Any] = None) -> Any:
        return self._context_data.get(key, default)

    def get_all_data(self) -> Dict[str, Any]:
        return self._context_data.copy()
