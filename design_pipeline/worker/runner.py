"""
Pipeline runner: executes the design stages for one job, in order, and
records every transition in the job store.
"""

import logging
import threading
from typing import Optional, Sequence, Set

from pydantic import BaseModel

from design_pipeline.api.schemas import JobRecord
from design_pipeline.errors import JobConflictError, StageError
from design_pipeline.store.store import JobStore

from .notify import send_job_webhook
from .types import (
    STAGE_ORDER,
    PipelineStage,
    ProgressCallback,
    StageInputs,
    StageName,
    Status,
    parse_stage_result,
)

logger = logging.getLogger(__name__)


class PipelineRunner:
    """Runs jobs through the fixed stage sequence with per-step state tracking."""

    def __init__(
        self,
        store: JobStore,
        stages: Optional[Sequence[PipelineStage]] = None,
        webhook_url: Optional[str] = None,
    ):
        self._store = store
        self._stages = list(stages) if stages is not None else None
        self._webhook_url = webhook_url
        self._active: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def store(self) -> JobStore:
        return self._store

    def run(self, job_id: str, stages: Optional[Sequence[PipelineStage]] = None) -> JobRecord:
        """
        Claim a pending job and run every stage until it completes or one fails.

        Args:
            job_id: Id of an existing pending job
            stages: Stage list overriding the runner's default, in pipeline order

        Returns:
            The terminal job record

        Raises:
            JobConflictError: If the job is already owned or is not pending
            JobNotFoundError: If the job does not exist

        Any other error after the claim (a failed store write, say) is
        re-raised once the job has been marked as failed.
        """
        stage_list = self._resolve_stages(stages)
        self._acquire(job_id)
        try:
            if not self._store.claim_job(job_id):
                raise JobConflictError(f"Job {job_id} is not pending")
            try:
                record = self._run_stages(job_id, stage_list)
            except Exception as e:
                logger.exception(f"Job {job_id}: pipeline aborted")
                self._abandon(job_id, str(e) or e.__class__.__name__)
                raise
        finally:
            self._release(job_id)

        logger.info(f"Job {job_id} finished with status {record.status}")
        send_job_webhook(self._webhook_url, record)
        return record

    def _resolve_stages(self, stages: Optional[Sequence[PipelineStage]]) -> Sequence[PipelineStage]:
        stage_list = list(stages) if stages is not None else self._stages
        if stage_list is None:
            raise ValueError("No stages configured for the pipeline runner")
        names = [stage.name for stage in stage_list]
        if names != STAGE_ORDER:
            raise ValueError(
                f"Stages must be {[s.value for s in STAGE_ORDER]} in order, got {[str(n) for n in names]}"
            )
        return stage_list

    def _acquire(self, job_id: str) -> None:
        with self._lock:
            if job_id in self._active:
                raise JobConflictError(f"Job {job_id} is already running")
            self._active.add(job_id)

    def _release(self, job_id: str) -> None:
        with self._lock:
            self._active.discard(job_id)

    def _run_stages(self, job_id: str, stage_list: Sequence[PipelineStage]) -> JobRecord:
        record = self._store.get_job(job_id)
        inputs = StageInputs(
            design_prompt=record.design_prompt,
            garment_image_path=record.garment_image_path,
            style_swatch_path=record.style_swatch_path,
        )

        for stage in stage_list:
            name = StageName(stage.name).value
            self._store.update_step(job_id, name, status=Status.PROCESSING, progress=0)
            logger.info(f"Job {job_id}: stage '{name}' started")

            try:
                result = stage.executor.execute(job_id, inputs, self._progress_reporter(job_id, name))
                result = self._check_result(name, result)
            except StageError as e:
                logger.error(f"Job {job_id}: stage '{name}' failed: {e.message}")
                return self._fail(job_id, name, e.message)
            except Exception as e:
                logger.exception(f"Job {job_id}: stage '{name}' raised unexpectedly")
                return self._fail(job_id, name, str(e) or e.__class__.__name__)

            self._store.update_step(
                job_id, name,
                status=Status.COMPLETED,
                progress=100,
                result_data=result.model_dump(mode="json"),
            )
            inputs.previous_results[name] = result
            logger.info(f"Job {job_id}: stage '{name}' complete")

        return self._store.update_job(job_id, status=Status.COMPLETED)

    def _progress_reporter(self, job_id: str, name: str) -> ProgressCallback:
        def report(progress: int) -> None:
            self._store.update_step(job_id, name, progress=int(progress))
        return report

    def _check_result(self, name: str, result) -> BaseModel:
        if isinstance(result, dict):
            result = parse_stage_result(result)
        if not isinstance(result, BaseModel) or getattr(result, "stage", None) != name:
            raise StageError(f"Stage '{name}' returned an invalid result", stage=name)
        return result

    def _fail(self, job_id: str, name: str, message: str) -> JobRecord:
        self._store.update_step(job_id, name, status=Status.ERROR, error_message=message)
        return self._store.update_job(job_id, status=Status.ERROR, error_message=message)

    def _abandon(self, job_id: str, message: str) -> None:
        try:
            record = self._store.fail_job(job_id, message)
        except Exception as e:
            logger.error(f"Job {job_id}: could not record failure, left for stuck-job recovery: {e}")
            return
        send_job_webhook(self._webhook_url, record)
