"""
Design job API routes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from design_pipeline.api.dependencies import get_runner, get_storage, get_store
from design_pipeline.api.schemas import JobListResponse, JobRecord, JobResponse
from design_pipeline.api.upload import ImageStorage, ImageUpload
from design_pipeline.config import get_config
from design_pipeline.errors import ValidationError
from design_pipeline.progress import overall_progress
from design_pipeline.service import create_design
from design_pipeline.store import JobStore
from design_pipeline.worker.runner import PipelineRunner
from design_pipeline.worker.types import Status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/designs", tags=["Designs"])
limiter = Limiter(key_func=get_remote_address)


def to_response(record: JobRecord) -> JobResponse:
    return JobResponse(**record.model_dump(), overall_progress=overall_progress(record.steps))


def _as_image(upload: Optional[UploadFile]) -> Optional[ImageUpload]:
    # Browsers send an empty part for an untouched optional file input
    if upload is None or not upload.filename:
        return None
    return ImageUpload(filename=upload.filename, file=upload.file)


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_config().create_rate_limit)
async def create_design_job(
    request: Request,
    background_tasks: BackgroundTasks,
    design_prompt: str = Form("", description="How the garment should be modified"),
    garment_image: Optional[UploadFile] = File(None, description="Garment photograph"),
    style_swatch_image: Optional[UploadFile] = File(None, description="Optional style swatch"),
    store: JobStore = Depends(get_store),
    storage: ImageStorage = Depends(get_storage),
    runner: Optional[PipelineRunner] = Depends(get_runner),
):
    """
    Submit a new design.

    Stores the images, creates a pending job and either runs it in the
    background (inline mode) or leaves it for the worker.
    """
    job_id = create_design(
        store,
        storage,
        design_prompt,
        _as_image(garment_image),
        _as_image(style_swatch_image),
    )
    record = store.get_job(job_id)

    if runner is not None:
        background_tasks.add_task(runner.run, job_id)
        logger.info(f"Design {job_id} queued for inline processing")
    else:
        logger.info(f"Design {job_id} queued for the worker")

    return to_response(record)


@router.get("/{design_id}", response_model=JobResponse)
async def get_design(
    design_id: str,
    store: JobStore = Depends(get_store),
):
    """Get a design job with its steps and overall progress."""
    return to_response(store.get_job(design_id))


@router.get("", response_model=JobListResponse)
async def list_designs(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(50, ge=1, le=100, description="Max results"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    store: JobStore = Depends(get_store),
):
    """List design jobs, newest first."""
    if status_filter and status_filter not in {s.value for s in Status}:
        raise ValidationError(f"Invalid status filter: {status_filter}")

    records, total = store.list_jobs(status=status_filter, limit=limit, offset=offset)
    return JobListResponse(
        jobs=[to_response(record) for record in records],
        total=total,
        limit=limit,
        offset=offset,
    )
