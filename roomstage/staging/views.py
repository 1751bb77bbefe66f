"""Client-facing job views: progress steps and remaining-time estimates."""

from typing import Any, Dict, Optional

from roomstage.constants import room_label, style_label
from roomstage.jobs.models import JobStatus, StagingJob, utcnow

TOTAL_STEPS = 4

# (step, step_number, message); failed keeps the step number of wherever it stopped
PROGRESS_STEPS = {
    JobStatus.PENDING: ("pending", 0, "Waiting to start"),
    JobStatus.QUEUED: ("queued", 0, "Waiting in queue"),
    JobStatus.PREPROCESSING: ("preprocessing", 1, "Removing existing furniture"),
    JobStatus.PROCESSING: ("processing", 2, "Staging your room"),
    JobStatus.UPLOADING: ("uploading", 3, "Saving staged image"),
    JobStatus.COMPLETED: ("completed", 4, "Staging complete"),
    JobStatus.FAILED: ("failed", 0, "Staging failed"),
}


def progress_info(status: JobStatus) -> Dict[str, Any]:
    step, number, message = PROGRESS_STEPS[status]
    return {
        "step": step,
        "step_number": number,
        "total_steps": TOTAL_STEPS,
        "message": message,
    }


def estimated_time_remaining(job: StagingJob, estimated_seconds: Optional[float]) -> Optional[int]:
    """Whole seconds left, or None once the job is terminal or no estimate exists."""
    if job.is_terminal or estimated_seconds is None:
        return None
    elapsed = (utcnow() - job.created_at).total_seconds()
    return max(0, int(round(estimated_seconds - elapsed)))


def job_view(
    job: StagingJob,
    estimated_seconds: Optional[float] = None,
    poll_interval_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    view = job.model_dump(mode="json")
    view["room_type_label"] = room_label(job.room_type)
    view["furniture_style_label"] = style_label(job.furniture_style)
    view["progress"] = progress_info(job.status)
    view["estimated_time_remaining"] = estimated_time_remaining(job, estimated_seconds)
    view["poll_interval_seconds"] = None if job.is_terminal else poll_interval_seconds
    return view
