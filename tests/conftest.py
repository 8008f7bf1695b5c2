"""
Shared fixtures: an in-memory job store, image storage in a temp dir and
zero-delay stages.
"""

import io
from pathlib import Path

import pytest

from design_pipeline.api.upload import ImageStorage, ImageUpload
from design_pipeline.store import InMemoryNotifier, JobStore, build_engine
from design_pipeline.worker.runner import PipelineRunner
from design_pipeline.worker.stages import SimulatedStage
from design_pipeline.worker.types import STAGE_ORDER, PipelineStage

IMAGE_FORMATS = [".jpeg", ".jpg", ".png", ".webp"]


def fake_image(filename: str = "shirt.png", size: int = 256) -> ImageUpload:
    """An in-memory 'image' with a PNG signature."""
    return ImageUpload(filename=filename, file=io.BytesIO(b"\x89PNG\r\n\x1a\n" + b"\x00" * size))


def instant_stages(**overrides) -> list:
    """Six stages that finish immediately; pass name=executor to replace one."""
    return [
        PipelineStage(name=name, executor=overrides.get(name.value, SimulatedStage(name, duration=0)))
        for name in STAGE_ORDER
    ]


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def store(notifier):
    job_store = JobStore(build_engine("sqlite://"), notifier)
    job_store.create_tables()
    yield job_store
    job_store.close()


@pytest.fixture
def storage(tmp_path):
    return ImageStorage(tmp_path / "uploads", max_bytes=1024 * 1024, allowed_extensions=IMAGE_FORMATS)


@pytest.fixture
def garment_file(tmp_path) -> Path:
    path = tmp_path / "garment.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n")
    return path


@pytest.fixture
def job_id(store, garment_file):
    """A pending job whose garment image exists on disk."""
    return store.create_job("make it denim", garment_image_path=str(garment_file))


@pytest.fixture
def runner(store):
    return PipelineRunner(store, instant_stages())
