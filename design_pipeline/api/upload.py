"""
Image upload handling for design submissions.
"""

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable

from design_pipeline.errors import UploadError, ValidationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass
class ImageUpload:
    """An uploaded image as received from the client."""
    filename: str
    file: BinaryIO


class ImageStorage:
    """Stores garment and style-swatch images under ``<base_dir>/<job id>/``."""

    def __init__(self, base_dir: Path, max_bytes: int, allowed_extensions: Iterable[str]):
        self.base_dir = Path(base_dir)
        self.max_bytes = max_bytes
        self.allowed_extensions = {ext.lower() for ext in allowed_extensions}

    def validate(self, image: ImageUpload, label: str) -> None:
        """
        Check an image before anything is stored.

        Raises:
            ValidationError: If the file name or type is not acceptable
        """
        if not image.filename:
            raise ValidationError(f"The {label} has no file name")
        extension = Path(image.filename).suffix.lower()
        if extension not in self.allowed_extensions:
            raise ValidationError(
                f"Invalid {label} type. Allowed: {', '.join(sorted(self.allowed_extensions))}"
            )

    def job_dir(self, job_id: str) -> Path:
        safe_job_id = re.sub(r"[^a-zA-Z0-9_-]", "", job_id)
        if not safe_job_id or safe_job_id != job_id:
            raise UploadError(f"Invalid job id for upload: {job_id!r}", job_id=job_id)
        return self.base_dir / safe_job_id

    def save(self, job_id: str, kind: str, image: ImageUpload) -> Path:
        """
        Write an image to disk with a size limit.

        Args:
            job_id: Owning job
            kind: "garment" or "style_swatch", used as the file stem
            image: Uploaded image

        Returns:
            Absolute path to the saved file

        Raises:
            UploadError: If the image is too large or cannot be written
        """
        extension = Path(image.filename).suffix.lower()
        target_dir = self.job_dir(job_id)
        file_path = (target_dir / f"{kind}{extension}").resolve()

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            bytes_written = 0
            with open(file_path, "wb") as buffer:
                while chunk := image.file.read(CHUNK_SIZE):
                    bytes_written += len(chunk)
                    if bytes_written > self.max_bytes:
                        raise UploadError(
                            f"Image too large. Maximum size: {self.max_bytes // (1024 * 1024)}MB",
                            job_id=job_id,
                        )
                    buffer.write(chunk)
        except UploadError:
            file_path.unlink(missing_ok=True)
            raise
        except OSError as e:
            file_path.unlink(missing_ok=True)
            raise UploadError(f"Failed to save {kind} image: {e}", job_id=job_id) from e

        logger.info(f"Stored {kind} image for job {job_id} ({bytes_written} bytes)")
        return file_path

    def discard(self, job_id: str) -> None:
        """Remove everything stored for a job that was never created."""
        shutil.rmtree(self.job_dir(job_id), ignore_errors=True)
