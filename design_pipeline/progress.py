"""
Progress projection for one design job.

Turns the stream of full-record change notifications into a local view of
the six pipeline steps, derives overall completion, and reports terminal
outcomes exactly once. The projector only observes; it never writes back to
the job store.
"""

import logging
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from design_pipeline.errors import GENERIC_ERROR_MESSAGE, NotificationDeliveryError
from design_pipeline.store.notifier import Subscription
from design_pipeline.worker.types import STAGE_NAMES, Status

logger = logging.getLogger(__name__)

# Step fields a notification may overwrite
MUTABLE_STEP_FIELDS = ("status", "progress", "error_message", "started_at", "completed_at")

_STATUS_VALUES = {status.value for status in Status}


@dataclass
class ViewStep:
    name: str
    status: str = Status.PENDING.value
    progress: int = 0
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


def initial_steps() -> List[ViewStep]:
    """The fixed six steps, all pending. Steps are never invented from notifications."""
    return [ViewStep(name=name) for name in STAGE_NAMES]


def reconcile_steps(steps: List[ViewStep], incoming: Any) -> List[ViewStep]:
    """
    Merge incoming step payloads into a view by step identity.

    Entries are matched on ``name``, not position. Unknown names and
    malformed entries are skipped. The input list is left untouched.

    Args:
        steps: Current local view
        incoming: ``steps`` value from a notification

    Returns:
        A new list of steps in the original order
    """
    merged = [replace(step) for step in steps]
    by_name = {step.name: step for step in merged}
    if not isinstance(incoming, list):
        return merged

    for entry in incoming:
        if not isinstance(entry, dict):
            logger.debug(f"Ignoring malformed step entry: {entry!r}")
            continue
        name = entry.get("name")
        step = by_name.get(name) if isinstance(name, str) else None
        if step is None:
            logger.debug(f"Ignoring update for unknown step {name!r}")
            continue
        for field_name in MUTABLE_STEP_FIELDS:
            if field_name in entry:
                setattr(step, field_name, entry[field_name])
    return merged


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def overall_progress(steps: Iterable[Any]) -> int:
    """Share of completed steps as an integer percentage."""
    steps = list(steps)
    if not steps:
        return 0
    completed = sum(1 for step in steps if step.status == Status.COMPLETED.value)
    return round(completed * 100 / len(steps))


class ProgressView:
    """
    Local, derived copy of one job's progress.

    ``on_update`` receives the view whenever a notification changed it.
    ``on_complete`` receives the first completed job payload, ``on_error``
    the first failure message; neither fires twice.
    """

    def __init__(
        self,
        job_id: str,
        on_update: Optional[Callable[["ProgressView"], None]] = None,
        on_complete: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.job_id = job_id
        self.steps = initial_steps()
        self.status = Status.PENDING.value
        self.current_step_index = 0
        self.error_message: Optional[str] = None
        self.updated_at: Optional[datetime] = None
        self._on_update = on_update
        self._on_complete = on_complete
        self._on_error = on_error
        self._complete_fired = False
        self._error_fired = False
        self._lock = threading.RLock()

    @property
    def overall_progress(self) -> int:
        return overall_progress(self.steps)

    @property
    def is_terminal(self) -> bool:
        return self.status in (Status.COMPLETED.value, Status.ERROR.value)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.job_id,
            "status": self.status,
            "current_step_index": self.current_step_index,
            "error_message": self.error_message,
            "overall_progress": self.overall_progress,
            "steps": [asdict(step) for step in self.steps],
        }

    def apply(self, payload: Any) -> bool:
        """
        Reconcile one notification into the view.

        Returns:
            True if the view changed
        """
        if not isinstance(payload, dict):
            logger.debug(f"Ignoring malformed notification for job {self.job_id}")
            return False
        if payload.get("id") not in (None, self.job_id):
            logger.debug(f"Ignoring notification for job {payload.get('id')} on view {self.job_id}")
            return False

        with self._lock:
            if self._is_stale(payload):
                logger.debug(f"Ignoring stale notification for job {self.job_id}")
                return False

            before = self.snapshot()
            self.steps = reconcile_steps(self.steps, payload.get("steps"))

            status = payload.get("status")
            if status in _STATUS_VALUES:
                self.status = status
            index = payload.get("current_step_index")
            if isinstance(index, int) and 0 <= index < len(self.steps):
                self.current_step_index = index
            if "error_message" in payload:
                self.error_message = payload.get("error_message")
            updated_at = _parse_timestamp(payload.get("updated_at"))
            if updated_at is not None:
                self.updated_at = updated_at

            changed = self.snapshot() != before
            if changed and self._on_update:
                self._on_update(self)
            self._fire_terminal(status, payload)
            return changed

    def _is_stale(self, payload: Dict[str, Any]) -> bool:
        # A terminal view never moves, and records older than the view are dropped
        if self.is_terminal and payload.get("status") != self.status:
            return True
        updated_at = _parse_timestamp(payload.get("updated_at"))
        return updated_at is not None and self.updated_at is not None and updated_at < self.updated_at

    def _fire_terminal(self, status: Any, payload: Dict[str, Any]) -> None:
        if status == Status.COMPLETED.value and not self._complete_fired:
            self._complete_fired = True
            if self._on_complete:
                self._on_complete(payload)
        elif status == Status.ERROR.value and not self._error_fired:
            self._error_fired = True
            if self._on_error:
                self._on_error(payload.get("error_message") or GENERIC_ERROR_MESSAGE)


class ProgressSubscription:
    """
    An open subscription feeding one ProgressView.

    Use as a context manager; leaving the block unsubscribes. After
    unsubscribe() returns no view callback fires.
    """

    def __init__(self, reader, view: ProgressView):
        self._reader = reader
        self.view = view
        self._subscription: Optional[Subscription] = None
        self._closed = False
        self._lock = threading.RLock()

    def open(self) -> "ProgressSubscription":
        self._subscription = self._reader.subscribe_to_job(
            self.view.job_id,
            self._on_notification,
            on_delivery_error=self._on_delivery_error,
        )
        try:
            self.resync()
        except Exception:
            self.unsubscribe()
            raise
        return self

    def resync(self) -> None:
        """Re-read the current record and reconcile it, covering dropped notifications."""
        # Notifications wait on the lock, so none is applied between the read and the apply
        with self._lock:
            record = self._reader.get_job(self.view.job_id)
            self._on_notification(record.model_dump(mode="json"))

    def unsubscribe(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._subscription is not None:
            self._reader.unsubscribe(self._subscription)

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_notification(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            if self._closed:
                return
            self.view.apply(payload)

    def _on_delivery_error(self, error: NotificationDeliveryError) -> None:
        if self._closed:
            return
        logger.info(f"Resyncing job {self.view.job_id} after delivery error: {error.message}")
        try:
            self.resync()
        except Exception as e:
            logger.warning(f"Resync of job {self.view.job_id} failed: {e}")

    def __enter__(self) -> "ProgressSubscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class ProgressProjector:
    """Opens progress subscriptions against a read-only job store handle."""

    def __init__(self, reader):
        self._reader = reader

    def subscribe(
        self,
        job_id: str,
        on_update: Optional[Callable[[ProgressView], None]] = None,
        on_complete: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> ProgressSubscription:
        """
        Subscribe to one job and seed the view from its current record.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        view = ProgressView(job_id, on_update=on_update, on_complete=on_complete, on_error=on_error)
        return ProgressSubscription(self._reader, view).open()
