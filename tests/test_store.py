"""
Job store tests: creation, the step/job state machine and notifications.
"""

from datetime import datetime

import pytest
from sqlalchemy import event, inspect

from design_pipeline.api.models import DesignJob, DesignStep, utcnow
from design_pipeline.errors import InvalidTransitionError, JobNotFoundError, ValidationError
from design_pipeline.worker.runner import PipelineRunner
from design_pipeline.worker.types import STAGE_NAMES, Status

from conftest import instant_stages

TIMESTAMP_FIELDS = ("created_at", "updated_at", "started_at", "completed_at")


@pytest.fixture
def naive_writes():
    """Collect every naive datetime flushed to the job tables."""
    found = []

    def check(mapper, connection, target):
        state = inspect(target)
        for name in TIMESTAMP_FIELDS:
            if not hasattr(type(target), name):
                continue
            for value in state.attrs[name].history.added:
                if isinstance(value, datetime) and value.tzinfo is None:
                    found.append((type(target).__name__, name))

    targets = [(model, kind) for model in (DesignJob, DesignStep) for kind in ("before_insert", "before_update")]
    for model, kind in targets:
        event.listen(model, kind, check)
    yield found
    for model, kind in targets:
        event.remove(model, kind, check)


def test_utcnow_is_timezone_aware():
    assert utcnow().tzinfo is not None
    assert DesignJob(design_prompt="make it denim").created_at.tzinfo is not None


def test_writes_use_timezone_aware_timestamps(store, job_id, naive_writes):
    record = PipelineRunner(store, instant_stages()).run(job_id)
    failed = store.fail_job(store.create_job("add a hood"), "cancelled")

    assert record.status == "completed"
    assert failed.status == "error"
    assert naive_writes == []


def test_create_job_has_six_pending_steps(store):
    job_id = store.create_job("make it denim")
    record = store.get_job(job_id)

    assert record.status == "pending"
    assert record.design_prompt == "make it denim"
    assert record.current_step_index == 0
    assert [s.name for s in record.steps] == STAGE_NAMES
    assert [s.position for s in record.steps] == list(range(6))
    assert all(s.status == "pending" and s.progress == 0 for s in record.steps)
    assert record.completed_at is None


def test_create_job_rejects_blank_prompt(store):
    with pytest.raises(ValidationError):
        store.create_job("   ")
    assert store.list_jobs()[1] == 0


def test_get_missing_job(store):
    with pytest.raises(JobNotFoundError):
        store.get_job("does-not-exist")


def test_create_job_publishes_record(store, notifier):
    received = []
    store.subscribe_to_job("fixed-id", received.append)

    store.create_job("make it denim", job_id="fixed-id")

    assert len(received) == 1
    assert received[0]["id"] == "fixed-id"
    assert len(received[0]["steps"]) == 6


def test_step_lifecycle(store, job_id):
    store.claim_job(job_id)
    record = store.update_step(job_id, "upload", status=Status.PROCESSING, progress=0)
    started = record.step("upload").started_at
    assert started is not None

    record = store.update_step(job_id, "upload", progress=50)
    assert record.step("upload").progress == 50
    assert record.step("upload").started_at == started

    record = store.update_step(job_id, "upload", status=Status.COMPLETED, result_data={"stage": "upload"})
    step = record.step("upload")
    assert step.status == "completed"
    assert step.progress == 100
    assert step.completed_at is not None
    assert step.result_data == {"stage": "upload"}
    assert step.started_at == started


def test_step_cannot_go_backwards(store, job_id):
    store.claim_job(job_id)
    store.update_step(job_id, "upload", status=Status.PROCESSING)
    store.update_step(job_id, "upload", status=Status.COMPLETED)

    with pytest.raises(InvalidTransitionError):
        store.update_step(job_id, "upload", status=Status.PROCESSING)
    with pytest.raises(InvalidTransitionError):
        store.update_step(job_id, "upload", status=Status.PENDING)


def test_step_cannot_skip_processing(store, job_id):
    with pytest.raises(InvalidTransitionError):
        store.update_step(job_id, "upload", status=Status.COMPLETED)


def test_progress_only_while_processing(store, job_id):
    with pytest.raises(InvalidTransitionError):
        store.update_step(job_id, "upload", progress=10)


def test_only_one_step_processing(store, job_id):
    store.claim_job(job_id)
    store.update_step(job_id, "upload", status=Status.PROCESSING)

    with pytest.raises(InvalidTransitionError):
        store.update_step(job_id, "segmentation", status=Status.PROCESSING)


def test_unknown_step_rejected(store, job_id):
    with pytest.raises(InvalidTransitionError):
        store.update_step(job_id, "dyeing", status=Status.PROCESSING)


def test_progress_out_of_range(store, job_id):
    store.update_step(job_id, "upload", status=Status.PROCESSING)
    with pytest.raises(ValueError):
        store.update_step(job_id, "upload", progress=101)


def test_result_data_only_on_completion(store, job_id):
    store.update_step(job_id, "upload", status=Status.PROCESSING)
    with pytest.raises(InvalidTransitionError):
        store.update_step(job_id, "upload", progress=20, result_data={"stage": "upload"})


def test_job_cannot_complete_with_unfinished_steps(store, job_id):
    store.claim_job(job_id)
    with pytest.raises(InvalidTransitionError):
        store.update_job(job_id, status=Status.COMPLETED)


def test_job_cannot_fail_without_failed_step(store, job_id):
    store.claim_job(job_id)
    with pytest.raises(InvalidTransitionError):
        store.update_job(job_id, status=Status.ERROR, error_message="boom")


def test_error_message_requires_error_status(store, job_id):
    with pytest.raises(InvalidTransitionError):
        store.update_job(job_id, error_message="boom")


def test_unknown_job_field(store, job_id):
    with pytest.raises(ValueError):
        store.update_job(job_id, design_prompt="something else")


def test_terminal_job_is_immutable(store, job_id):
    store.fail_job(job_id, "model timeout")

    with pytest.raises(InvalidTransitionError):
        store.update_job(job_id, status=Status.PROCESSING)
    with pytest.raises(InvalidTransitionError):
        store.update_step(job_id, "segmentation", status=Status.PROCESSING)


def test_claim_job_only_once(store, job_id):
    assert store.claim_job(job_id) is True
    assert store.claim_job(job_id) is False
    assert store.get_job(job_id).status == "processing"


def test_claim_missing_job(store):
    with pytest.raises(JobNotFoundError):
        store.claim_job("does-not-exist")


def test_fail_job_marks_processing_step(store, job_id):
    store.claim_job(job_id)
    store.update_step(job_id, "upload", status=Status.PROCESSING)
    store.update_step(job_id, "upload", status=Status.COMPLETED)
    store.update_step(job_id, "segmentation", status=Status.PROCESSING)

    record = store.fail_job(job_id, "worker crashed")

    assert record.status == "error"
    assert record.error_message == "worker crashed"
    assert record.step("segmentation").status == "error"
    assert record.step("segmentation").error_message == "worker crashed"
    assert record.step("concept_generation").status == "pending"


def test_fail_job_on_pending_job_fails_first_step(store, job_id):
    record = store.fail_job(job_id, "cancelled")

    assert record.status == "error"
    assert record.step("upload").status == "error"
    assert all(s.status == "pending" for s in record.steps[1:])


def test_fail_job_leaves_terminal_job_alone(store, job_id):
    first = store.fail_job(job_id, "first")
    second = store.fail_job(job_id, "second")
    assert second.error_message == first.error_message == "first"


def test_current_step_index_follows_latest_step(store, job_id):
    store.claim_job(job_id)
    for name in STAGE_NAMES[:3]:
        store.update_step(job_id, name, status=Status.PROCESSING)
        record = store.update_step(job_id, name, status=Status.COMPLETED)
    assert record.current_step_index == 2


def test_list_jobs_filters_and_paginates(store):
    ids = [store.create_job(f"design {i}") for i in range(3)]
    store.claim_job(ids[0])

    records, total = store.list_jobs()
    assert total == 3
    assert len(records) == 3

    records, total = store.list_jobs(status="processing")
    assert total == 1
    assert records[0].id == ids[0]

    records, total = store.list_jobs(limit=2, offset=0)
    assert total == 3
    assert len(records) == 2


def test_next_pending_and_stuck_jobs(store):
    first = store.create_job("first")
    second = store.create_job("second")

    assert store.next_pending_job() == first
    store.claim_job(first)
    assert store.next_pending_job() == second
    assert store.stuck_jobs() == [first]


def test_every_write_notifies_subscribers(store, job_id):
    received = []
    subscription = store.subscribe_to_job(job_id, received.append)

    store.claim_job(job_id)
    store.update_step(job_id, "upload", status=Status.PROCESSING)
    store.update_step(job_id, "upload", progress=40)

    assert [p["status"] for p in received] == ["processing", "processing", "processing"]
    assert received[-1]["steps"][0]["progress"] == 40

    store.unsubscribe(subscription)
    store.update_step(job_id, "upload", progress=60)
    assert len(received) == 3


def test_reader_has_no_write_operations(store):
    reader = store.reader()
    assert not hasattr(reader, "update_step")
    assert not hasattr(reader, "create_job")
