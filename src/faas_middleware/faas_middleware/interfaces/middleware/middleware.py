# ABOUTME: Middleware base class describing the object accepted by pipeline.use()
# ABOUTME: Subclasses implement any of the before, after and on_error stage slots

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from faas_middleware.models.types import Step

STAGE_SLOTS = ("before", "after", "on_error")


class Middleware:
    """
    Base class for middleware objects registered through ``use()``.

    A middleware bundles up to three steps, one per stage. Each slot is either
    ``None`` (not provided) or a callable ``step(context, proceed)``; defining
    a method with the slot's name is enough::

        class Timing(Middleware):
            def before(self, context, proceed):
                context.set_data("started", time.monotonic())
                proceed()

            def after(self, context, proceed):
                context.response["elapsed"] = time.monotonic() - context.get_data("started")
                proceed()

    Plain mappings with the same keys are accepted by ``use()`` as well.
    """

    before: Optional["Step"] = None
    after: Optional["Step"] = None
    on_error: Optional["Step"] = None

    def stages(self) -> List[str]:
        """
        Get the names of the stage slots this middleware provides.

        Returns:
            List[str]: Slot names in registration order (before, after, on_error).
        """
        return [slot for slot in STAGE_SLOTS if getattr(self, slot, None) is not None]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(stages={self.stages()})"
