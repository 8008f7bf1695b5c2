"""
Pipeline stage catalogue routes.
"""

from typing import List

from fastapi import APIRouter, Depends

from design_pipeline.api.dependencies import get_stage_catalog
from design_pipeline.api.schemas import StageInfoResponse
from design_pipeline.worker.stage_loader import StageCatalog

router = APIRouter(prefix="/api/stages", tags=["Stages"])


@router.get("", response_model=List[StageInfoResponse])
async def list_stages(catalog: StageCatalog = Depends(get_stage_catalog)):
    """List the pipeline stages in execution order."""
    return [
        StageInfoResponse(
            name=info.name.value,
            position=position,
            title=info.title,
            description=info.description or None,
        )
        for position, info in enumerate(catalog.all())
    ]
