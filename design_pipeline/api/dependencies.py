"""
Dependency injection utilities for FastAPI.
"""

from typing import Optional

from design_pipeline.api.upload import ImageStorage
from design_pipeline.config import get_config
from design_pipeline.progress import ProgressProjector
from design_pipeline.store import JobStore, build_engine, build_notifier
from design_pipeline.worker.runner import PipelineRunner
from design_pipeline.worker.stage_loader import StageCatalog
from design_pipeline.worker.stages import build_default_stages

# Created once per process and reused by every request
_store: Optional[JobStore] = None
_catalog: Optional[StageCatalog] = None
_runner: Optional[PipelineRunner] = None


def get_store() -> JobStore:
    """Dependency to get the JobStore singleton."""
    global _store
    if _store is None:
        config = get_config()
        _store = JobStore(
            build_engine(config.database_url),
            build_notifier(config.notifier_backend, config.redis_url),
        )
    return _store


def get_stage_catalog() -> StageCatalog:
    """Dependency to get the StageCatalog singleton."""
    global _catalog
    if _catalog is None:
        _catalog = StageCatalog(get_config().stages_config)
    return _catalog


def get_storage() -> ImageStorage:
    config = get_config()
    return ImageStorage(config.upload_dir, config.max_image_bytes, config.supported_image_formats)


def get_runner() -> Optional[PipelineRunner]:
    """
    Runner used for inline execution.

    Returns None when jobs are left for the external worker process.
    """
    global _runner
    config = get_config()
    if config.worker_mode != "inline":
        return None
    if _runner is None:
        _runner = PipelineRunner(
            get_store(),
            build_default_stages(get_stage_catalog(), config.stage_delay_scale),
            webhook_url=config.webhook_url,
        )
    return _runner


def get_projector() -> ProgressProjector:
    """Projectors only get the read-only store handle."""
    return ProgressProjector(get_store().reader())
