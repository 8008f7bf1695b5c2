"""
Job record store.

Persists design jobs and their six steps with SQLModel and broadcasts the
full record to subscribers after every committed write. The store enforces
the job/step state machine; callers cannot write a transition it forbids.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, func, select

from design_pipeline.api.models import DesignJob, DesignStep, utcnow
from design_pipeline.api.schemas import JobRecord
from design_pipeline.errors import InvalidTransitionError, JobNotFoundError, ValidationError
from design_pipeline.store.notifier import (
    DeliveryErrorCallback,
    NotificationCallback,
    Notifier,
    Subscription,
)
from design_pipeline.worker.types import STAGE_NAMES, Status

logger = logging.getLogger(__name__)

# Job columns writable through update_job
JOB_FIELDS = {"status", "error_message", "completed_at", "garment_image_path", "style_swatch_path"}

JOB_TRANSITIONS = {
    Status.PENDING: {Status.PROCESSING, Status.ERROR},
    Status.PROCESSING: {Status.COMPLETED, Status.ERROR},
    Status.COMPLETED: set(),
    Status.ERROR: set(),
}

# processing -> processing is a progress update
STEP_TRANSITIONS = {
    Status.PENDING: {Status.PROCESSING},
    Status.PROCESSING: {Status.PROCESSING, Status.COMPLETED, Status.ERROR},
    Status.COMPLETED: set(),
    Status.ERROR: set(),
}


def build_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for a database URL."""
    kwargs: Dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


class JobStore:
    """
    Persistence and change notification for design jobs.

    Writes and their notifications are serialised under one lock, so
    subscribers of a job see updates in commit order.
    """

    def __init__(self, engine: Engine, notifier: Notifier):
        self._engine = engine
        self._notifier = notifier
        self._write_lock = threading.RLock()

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def create_tables(self) -> None:
        SQLModel.metadata.create_all(self._engine)

    def check_database(self) -> bool:
        with Session(self._engine) as session:
            session.exec(select(DesignJob.id).limit(1)).first()
        return True

    def close(self) -> None:
        self._notifier.close()
        self._engine.dispose()

    def reader(self) -> "JobReader":
        """Read-only handle for progress observers."""
        return JobReader(self)

    # Writes

    def create_job(
        self,
        design_prompt: str,
        job_id: Optional[str] = None,
        garment_image_path: Optional[str] = None,
        style_swatch_path: Optional[str] = None,
    ) -> str:
        """
        Create a pending job with all six steps pending.

        Returns:
            The new job id
        """
        if not design_prompt or not design_prompt.strip():
            raise ValidationError("A design prompt is required")

        with self._write_lock, Session(self._engine) as session:
            job = DesignJob(
                design_prompt=design_prompt,
                garment_image_path=garment_image_path,
                style_swatch_path=style_swatch_path,
            )
            if job_id:
                job.id = job_id
            job.steps = [
                DesignStep(name=name, position=position)
                for position, name in enumerate(STAGE_NAMES)
            ]
            session.add(job)
            session.commit()
            record = self._publish(session, job)

        logger.info(f"Created design job {record.id}")
        return record.id

    def update_job(self, job_id: str, **fields: Any) -> JobRecord:
        """Apply a partial update to the job row and broadcast the result."""
        unknown = set(fields) - JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        with self._write_lock, Session(self._engine) as session:
            job = self._load(session, job_id)
            current = Status(job.status)
            if current.is_terminal:
                raise InvalidTransitionError(f"Job {job_id} is already {current.value}")

            new_status = Status(fields["status"]) if "status" in fields else current
            if new_status != current:
                self._check_job_transition(job, current, new_status)
                fields["status"] = new_status.value
                if new_status == Status.COMPLETED:
                    fields.setdefault("completed_at", utcnow())

            if fields.get("error_message") is not None and new_status != Status.ERROR:
                raise InvalidTransitionError("An error message can only be recorded on a failed job")
            if fields.get("completed_at") is not None and new_status != Status.COMPLETED:
                raise InvalidTransitionError("completed_at can only be set on a completed job")

            for key, value in fields.items():
                setattr(job, key, value)
            job.updated_at = utcnow()
            session.add(job)
            session.commit()
            return self._publish(session, job)

    def update_step(
        self,
        job_id: str,
        name: str,
        status: Optional[Status] = None,
        progress: Optional[int] = None,
        result_data: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> JobRecord:
        """
        Write one step transition or progress update and broadcast the job.

        Args:
            job_id: Job to update
            name: Step identity (stage name)
            status: New status, or None for a progress-only update
            progress: 0-100
            result_data: Stage payload, only on completion
            error_message: Failure message, only on error

        Returns:
            The full job record after the write
        """
        if name not in STAGE_NAMES:
            raise InvalidTransitionError(f"Unknown step '{name}'")
        if progress is not None and not 0 <= progress <= 100:
            raise ValueError(f"Progress must be between 0 and 100, got {progress}")

        with self._write_lock, Session(self._engine) as session:
            job = self._load(session, job_id)
            if Status(job.status).is_terminal:
                raise InvalidTransitionError(f"Job {job_id} is already {job.status}")

            step = next(s for s in job.steps if s.name == name)
            current = Status(step.status)
            new_status = Status(status) if status is not None else current

            if status is None and current != Status.PROCESSING:
                raise InvalidTransitionError(
                    f"Progress can only be reported while step '{name}' is processing"
                )
            if new_status not in STEP_TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Step '{name}' cannot move from {current.value} to {new_status.value}"
                )
            if result_data is not None and new_status != Status.COMPLETED:
                raise InvalidTransitionError("Result data is only attached when a step completes")
            if error_message is not None and new_status != Status.ERROR:
                raise InvalidTransitionError("An error message can only be recorded on a failed step")

            now = utcnow()
            if new_status == Status.PROCESSING and current == Status.PENDING:
                busy = [s.name for s in job.steps if s.status == Status.PROCESSING.value]
                if busy:
                    raise InvalidTransitionError(f"Step '{busy[0]}' is still processing")
            if new_status == Status.PROCESSING and step.started_at is None:
                step.started_at = now

            step.status = new_status.value
            if progress is not None:
                step.progress = progress
            if new_status == Status.COMPLETED:
                step.progress = 100
                step.completed_at = now
                step.result_data = result_data
            if new_status == Status.ERROR:
                step.error_message = error_message

            job.current_step_index = max(job.current_step_index, step.position)
            job.updated_at = now
            session.add(step)
            session.add(job)
            session.commit()
            return self._publish(session, job)

    def claim_job(self, job_id: str) -> bool:
        """
        Move a job from pending to processing if nobody else has.

        The conditional UPDATE makes the claim atomic across worker processes.
        """
        with self._write_lock:
            with self._engine.begin() as connection:
                result = connection.execute(
                    update(DesignJob)
                    .where(DesignJob.id == job_id, DesignJob.status == Status.PENDING.value)
                    .values(status=Status.PROCESSING.value, updated_at=utcnow())
                )
            with Session(self._engine) as session:
                job = self._load(session, job_id)
                if result.rowcount == 0:
                    return False
                self._publish(session, job)
        logger.info(f"Claimed design job {job_id}")
        return True

    def fail_job(self, job_id: str, message: str) -> JobRecord:
        """
        Mark a job as failed outside the normal runner flow.

        The processing step (or the first pending one) is marked error first
        so the failed job always carries a failed step.
        """
        with self._write_lock:
            record = self.get_job(job_id)
            if Status(record.status).is_terminal:
                return record

            step = next((s for s in record.steps if s.status == Status.PROCESSING.value), None)
            if step is None:
                step = next((s for s in record.steps if s.status == Status.PENDING.value), None)
            if step is None:
                # Every step finished but the final job write never happened
                return self.update_job(job_id, status=Status.COMPLETED)

            if step.status == Status.PENDING.value:
                self.update_step(job_id, step.name, status=Status.PROCESSING)
            self.update_step(job_id, step.name, status=Status.ERROR, error_message=message)
            logger.warning(f"Design job {job_id} failed at step '{step.name}': {message}")
            return self.update_job(job_id, status=Status.ERROR, error_message=message)

    # Reads

    def get_job(self, job_id: str) -> JobRecord:
        with Session(self._engine) as session:
            return JobRecord.model_validate(self._load(session, job_id))

    def list_jobs(
        self,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[JobRecord], int]:
        """List jobs newest first, with the total count before pagination."""
        with Session(self._engine) as session:
            statement = select(DesignJob)
            count_statement = select(func.count()).select_from(DesignJob)
            if status:
                statement = statement.where(DesignJob.status == status)
                count_statement = count_statement.where(DesignJob.status == status)

            total = session.exec(count_statement).one()
            jobs = session.exec(
                statement.order_by(DesignJob.created_at.desc()).offset(offset).limit(limit)
            ).all()
            return [JobRecord.model_validate(job) for job in jobs], total

    def next_pending_job(self) -> Optional[str]:
        """Oldest pending job id, if any."""
        with Session(self._engine) as session:
            statement = (
                select(DesignJob.id)
                .where(DesignJob.status == Status.PENDING.value)
                .order_by(DesignJob.created_at)
                .limit(1)
            )
            return session.exec(statement).first()

    def stuck_jobs(self) -> List[str]:
        """Ids of jobs left processing, e.g. by a crashed worker."""
        with Session(self._engine) as session:
            statement = select(DesignJob.id).where(DesignJob.status == Status.PROCESSING.value)
            return list(session.exec(statement).all())

    # Subscriptions

    def subscribe_to_job(
        self,
        job_id: str,
        callback: NotificationCallback,
        on_delivery_error: Optional[DeliveryErrorCallback] = None,
    ) -> Subscription:
        return self._notifier.subscribe(job_id, callback, on_delivery_error)

    def unsubscribe(self, subscription: Subscription) -> None:
        self._notifier.unsubscribe(subscription)

    # Internals

    def _load(self, session: Session, job_id: str) -> DesignJob:
        job = session.get(DesignJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _check_job_transition(self, job: DesignJob, current: Status, new_status: Status) -> None:
        if new_status not in JOB_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Job {job.id} cannot move from {current.value} to {new_status.value}"
            )
        if new_status == Status.COMPLETED:
            unfinished = [s.name for s in job.steps if s.status != Status.COMPLETED.value]
            if unfinished:
                raise InvalidTransitionError(
                    f"Job {job.id} cannot complete with unfinished steps: {', '.join(unfinished)}"
                )
        if new_status == Status.ERROR and not any(s.status == Status.ERROR.value for s in job.steps):
            raise InvalidTransitionError(f"Job {job.id} cannot fail without a failed step")

    def _publish(self, session: Session, job: DesignJob) -> JobRecord:
        session.refresh(job)
        record = JobRecord.model_validate(job)
        self._notifier.publish(record.id, record.model_dump(mode="json"))
        return record


class JobReader:
    """Read and subscribe access to a JobStore, without write operations."""

    def __init__(self, store: JobStore):
        self._store = store

    def get_job(self, job_id: str) -> JobRecord:
        return self._store.get_job(job_id)

    def list_jobs(self, status: Optional[str] = None, limit: int = 50, offset: int = 0):
        return self._store.list_jobs(status=status, limit=limit, offset=offset)

    def subscribe_to_job(
        self,
        job_id: str,
        callback: NotificationCallback,
        on_delivery_error: Optional[DeliveryErrorCallback] = None,
    ) -> Subscription:
        return self._store.subscribe_to_job(job_id, callback, on_delivery_error)

    def unsubscribe(self, subscription: Subscription) -> None:
        self._store.unsubscribe(subscription)
