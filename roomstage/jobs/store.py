"""Job persistence interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from roomstage.jobs.models import JobStatus, StagingJob


class JobStoreError(Exception):
    """A persistence backend failed to read or write."""


class JobStore(ABC):
    """Abstract interface for staging job persistence (in-memory or Supabase)."""

    @abstractmethod
    def create(self, job: StagingJob) -> StagingJob:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[StagingJob]:
        ...

    @abstractmethod
    def get_by_provider_handle(self, provider_job_handle: str) -> Optional[StagingJob]:
        ...

    @abstractmethod
    def list_by_version_group(self, version_group_id: str) -> List[StagingJob]:
        """All jobs in a version group, oldest first."""
        ...

    @abstractmethod
    def update_fields(self, job_id: str, fields: Dict[str, Any]) -> Optional[StagingJob]:
        """Write non-status fields. Returns the updated job, None if it does not exist."""
        ...

    @abstractmethod
    def assign_version_group(self, job_id: str, version_group_id: str) -> Optional[StagingJob]:
        """Put an ungrouped job in a new group as its primary.

        Returns None when the job is missing or already has a group.
        """
        ...

    @abstractmethod
    def clear_primary(self, version_group_id: str) -> None:
        """Set is_primary_version=False on every job in the group."""
        ...

    @abstractmethod
    def _conditional_transition(
        self, job_id: str, status: JobStatus, fields: Dict[str, Any]
    ) -> Optional[StagingJob]:
        """Apply status+fields in one write, only if the current status may move to status."""
        ...

    def transition(
        self, job_id: str, status: JobStatus, **fields: Any
    ) -> Optional[StagingJob]:
        """Move a job forward. Returns None when the guard rejected the write.

        Terminal transitions must carry a consistent payload: completed sets
        staged_image_url and clears error_message, failed the reverse.
        """
        if status == JobStatus.COMPLETED:
            if not fields.get("staged_image_url"):
                raise ValueError("completed transition requires staged_image_url")
            fields["error_message"] = None
        elif status == JobStatus.FAILED:
            if not fields.get("error_message"):
                raise ValueError("failed transition requires error_message")
            fields["staged_image_url"] = None
        return self._conditional_transition(job_id, status, fields)
