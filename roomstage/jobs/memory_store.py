"""In-process job store for local development and tests.

Keeps StagingJob records in a dict. A lock makes each guarded transition a
single check-and-write even when called from executor threads.
"""

import threading
from typing import Any, Dict, List, Optional

from roomstage.jobs.models import JobStatus, StagingJob, can_transition
from roomstage.jobs.store import JobStore, JobStoreError


class InMemoryJobStore(JobStore):
    """Local job store. Records live only as long as the process."""

    def __init__(self):
        self._jobs: Dict[str, StagingJob] = {}
        self._lock = threading.Lock()

    def create(self, job: StagingJob) -> StagingJob:
        with self._lock:
            if job.id in self._jobs:
                raise JobStoreError(f"Job {job.id} already exists")
            self._jobs[job.id] = job.model_copy()
            return job.model_copy()

    def get(self, job_id: str) -> Optional[StagingJob]:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    def get_by_provider_handle(self, provider_job_handle: str) -> Optional[StagingJob]:
        for job in list(self._jobs.values()):
            if job.provider_job_handle == provider_job_handle:
                return job.model_copy()
        return None

    def list_by_version_group(self, version_group_id: str) -> List[StagingJob]:
        jobs = [j for j in list(self._jobs.values()) if j.version_group_id == version_group_id]
        return [j.model_copy() for j in sorted(jobs, key=lambda j: j.created_at)]

    def update_fields(self, job_id: str, fields: Dict[str, Any]) -> Optional[StagingJob]:
        if "status" in fields:
            raise ValueError("use transition() to change status")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            updated = job.model_copy(update=fields)
            self._jobs[job_id] = updated
            return updated.model_copy()

    def assign_version_group(self, job_id: str, version_group_id: str) -> Optional[StagingJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.version_group_id:
                return None
            updated = job.model_copy(
                update={"version_group_id": version_group_id, "is_primary_version": True}
            )
            self._jobs[job_id] = updated
            return updated.model_copy()

    def clear_primary(self, version_group_id: str) -> None:
        with self._lock:
            for job_id, job in self._jobs.items():
                if job.version_group_id == version_group_id and job.is_primary_version:
                    self._jobs[job_id] = job.model_copy(update={"is_primary_version": False})

    def _conditional_transition(
        self, job_id: str, status: JobStatus, fields: Dict[str, Any]
    ) -> Optional[StagingJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not can_transition(job.status, status):
                return None
            updated = job.model_copy(update={**fields, "status": status})
            self._jobs[job_id] = updated
            return updated.model_copy()
