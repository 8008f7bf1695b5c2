"""
Design submission.

Validates a request, stores its images and creates the pending job record
that a worker will pick up.
"""

import logging
import uuid
from typing import Optional

from design_pipeline.api.upload import ImageStorage, ImageUpload
from design_pipeline.errors import UploadError, ValidationError
from design_pipeline.store.store import JobStore

logger = logging.getLogger(__name__)


def create_design(
    store: JobStore,
    storage: ImageStorage,
    design_prompt: str,
    garment_image: Optional[ImageUpload],
    style_swatch_image: Optional[ImageUpload] = None,
) -> str:
    """
    Submit a new design job.

    Images are written before the record exists, so a worker can never
    claim a job whose assets are still being uploaded.

    Args:
        store: Job record store
        storage: Image storage
        design_prompt: Free-text modification prompt, required
        garment_image: Garment photograph, required
        style_swatch_image: Optional style swatch

    Returns:
        The new job id

    Raises:
        ValidationError: Missing prompt or garment image, or unsupported file type
        UploadError: An image could not be stored
    """
    if not design_prompt or not design_prompt.strip():
        raise ValidationError("A design prompt is required")
    if garment_image is None:
        raise ValidationError("A garment image is required")
    storage.validate(garment_image, "garment image")
    if style_swatch_image is not None:
        storage.validate(style_swatch_image, "style swatch image")

    job_id = str(uuid.uuid4())
    try:
        garment_path = storage.save(job_id, "garment", garment_image)
        swatch_path = None
        if style_swatch_image is not None:
            swatch_path = storage.save(job_id, "style_swatch", style_swatch_image)
    except UploadError as e:
        logger.error(f"Upload failed for design {job_id}: {e.message}")
        storage.discard(job_id)
        raise

    try:
        store.create_job(
            design_prompt.strip(),
            job_id=job_id,
            garment_image_path=str(garment_path),
            style_swatch_path=str(swatch_path) if swatch_path else None,
        )
    except Exception:
        logger.exception(f"Could not create the record for design {job_id}")
        storage.discard(job_id)
        raise
    return job_id
