"""
Terminal-state webhook for finished design jobs.
"""

import logging
from typing import Optional

import requests

from design_pipeline.api.schemas import JobRecord

logger = logging.getLogger(__name__)


def send_job_webhook(webhook_url: Optional[str], record: JobRecord, timeout: int = 10) -> bool:
    """
    Post a job's terminal status to the configured webhook.

    Failures are logged and never affect the job.

    Returns:
        True if the webhook accepted the notification
    """
    if not webhook_url:
        return False

    completed = sum(1 for step in record.steps if step.status == "completed")
    summary = f"Design {record.id} {record.status} ({completed}/{len(record.steps)} steps)"
    try:
        response = requests.post(
            webhook_url,
            json={
                "event": f"design.{record.status}",
                "content": summary,
                "job": record.model_dump(mode="json", exclude={"steps"}),
            },
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"Webhook notification failed for job {record.id}: {e}")
        return False

    logger.info(f"Webhook notification sent for job {record.id}")
    return True
