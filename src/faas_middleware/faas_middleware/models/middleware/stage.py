# ABOUTME: PipelineStage and InvocationOutcome enumerations for invocation state tracking
# ABOUTME: Records which phase an invocation is in and how it terminated

from enum import Enum


class PipelineStage(str, Enum):
    """
    Phase of a single pipeline invocation.

    An invocation moves INIT -> BEFORE -> HANDLER -> AFTER -> TERMINATED,
    and may jump to ERROR from BEFORE, HANDLER or AFTER.
    """

    INIT = "init"
    BEFORE = "before"
    HANDLER = "handler"
    AFTER = "after"
    ERROR = "error"
    TERMINATED = "terminated"


class InvocationOutcome(str, Enum):
    """How an invocation terminated."""

    SUCCESS = "success"
    RECOVERED = "recovered"
    FAILED = "failed"
