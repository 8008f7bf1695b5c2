"""API routes package."""

from design_pipeline.api.routes.designs import router as designs_router
from design_pipeline.api.routes.stages import router as stages_router

__all__ = ["designs_router", "stages_router"]
