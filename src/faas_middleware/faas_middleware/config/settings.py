# ABOUTME: Main configuration composition for the library.
# ABOUTME: Adds pipeline settings on top of the base settings and caches a single instance.

from functools import lru_cache

from pydantic import Field

from ._base import BaseCoreSettings


class CoreSettings(BaseCoreSettings):
    """Represents the complete, composed configuration for the library.

    Inherits the foundational settings from `BaseCoreSettings` and adds the
    knobs read by `MiddlewarePipeline` when it is constructed.

    Attributes:
        PIPELINE_NAME: Fallback pipeline name when the wrapped handler has no `__name__`.
        LOG_STEPS: Whether runners emit a debug record for every step they invoke.
    """

    PIPELINE_NAME: str = Field(
        default="MiddlewarePipeline",
        description="Fallback name for pipelines whose handler has no __name__.",
    )
    LOG_STEPS: bool = Field(
        default=True,
        description="Emit a debug log record for every middleware step invoked.",
    )


@lru_cache
def get_settings() -> CoreSettings:
    """Provides a singleton instance of the library settings.

    Environment variables and the `.env` file are read only once; call
    `get_settings.cache_clear()` to force a reload.

    Returns:
        A single, cached instance of the CoreSettings class.
    """
    return CoreSettings()
