"""Staging job record and its status state machine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    PREPROCESSING = "preprocessing"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Forward-only ordering; both terminal states share the last rank
_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.QUEUED: 1,
    JobStatus.PREPROCESSING: 2,
    JobStatus.PROCESSING: 3,
    JobStatus.UPLOADING: 4,
    JobStatus.COMPLETED: 5,
    JobStatus.FAILED: 5,
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """True if a job may move from current to new."""
    if current.is_terminal:
        return False
    if new.is_terminal:
        return True
    return _RANK[new] > _RANK[current]


def predecessors(new: JobStatus) -> List[JobStatus]:
    """Statuses from which new is reachable, for conditional writes."""
    return [status for status in JobStatus if can_transition(status, new)]


class StagingJob(BaseModel):
    """One staging attempt: one image, one room type, one style."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    property_id: Optional[str] = None
    room_type: str
    furniture_style: str
    original_image_url: Optional[str] = None
    staged_image_url: Optional[str] = None
    error_message: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    provider: Optional[str] = None
    provider_job_handle: Optional[str] = None
    processing_time_ms: Optional[int] = None
    version_group_id: Optional[str] = None
    is_primary_version: bool = False
    parent_job_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_row(self) -> Dict[str, Any]:
        """Serialize for persistence (column names match the staging_jobs table)."""
        row = self.model_dump(mode="json")
        row["style"] = row.pop("furniture_style")
        row["replicate_prediction_id"] = row.pop("provider_job_handle")
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StagingJob":
        data = dict(row)
        if "style" in data:
            data["furniture_style"] = data.pop("style")
        if "replicate_prediction_id" in data:
            data["provider_job_handle"] = data.pop("replicate_prediction_id")
        return cls.model_validate(data)


# Field names as they appear in to_row(), for partial updates
COLUMN_NAMES = {
    "furniture_style": "style",
    "provider_job_handle": "replicate_prediction_id",
}


def to_columns(fields: Dict[str, Any]) -> Dict[str, Any]:
    columns = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        columns[COLUMN_NAMES.get(key, key)] = value
    return columns
