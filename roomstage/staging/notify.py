"""Dispatch terminal job events to the notifier without depending on it."""

import logging

from roomstage.jobs.models import JobStatus, StagingJob
from roomstage.notifications.notifier import Notifier

logger = logging.getLogger(__name__)


async def notify_terminal(notifier: Notifier, job: StagingJob) -> None:
    try:
        if job.status == JobStatus.COMPLETED:
            await notifier.notify_complete(job.user_id, job.id, job.room_type)
        elif job.status == JobStatus.FAILED:
            await notifier.notify_failed(job.user_id, job.id, job.room_type, job.error_message or "")
    except Exception as exc:
        logger.warning(f"Notification for job {job.id} failed: {exc}")
