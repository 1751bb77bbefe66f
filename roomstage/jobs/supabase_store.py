"""Supabase-backed job store (staging_jobs table)."""

import logging
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from roomstage.jobs.models import JobStatus, StagingJob, predecessors, to_columns
from roomstage.jobs.store import JobStore, JobStoreError

logger = logging.getLogger(__name__)

TABLE = "staging_jobs"


class SupabaseJobStore(JobStore):
    """Durable job store.

    Guarded transitions are a single UPDATE filtered on the allowed
    predecessor statuses, so a lost race simply matches zero rows.
    """

    def __init__(self, client: Client):
        self._client = client

    def _table(self):
        return self._client.table(TABLE)

    def create(self, job: StagingJob) -> StagingJob:
        try:
            response = self._table().insert(job.to_row()).execute()
        except APIError as exc:
            raise JobStoreError(f"Failed to create job {job.id}: {exc.message}") from exc
        return StagingJob.from_row(response.data[0]) if response.data else job

    def get(self, job_id: str) -> Optional[StagingJob]:
        return self._first(self._query("id", job_id))

    def get_by_provider_handle(self, provider_job_handle: str) -> Optional[StagingJob]:
        return self._first(self._query("replicate_prediction_id", provider_job_handle))

    def list_by_version_group(self, version_group_id: str) -> List[StagingJob]:
        try:
            response = (
                self._table()
                .select("*")
                .eq("version_group_id", version_group_id)
                .order("created_at")
                .execute()
            )
        except APIError as exc:
            raise JobStoreError(f"Failed to list version group {version_group_id}: {exc.message}") from exc
        return [StagingJob.from_row(row) for row in response.data or []]

    def update_fields(self, job_id: str, fields: Dict[str, Any]) -> Optional[StagingJob]:
        if "status" in fields:
            raise ValueError("use transition() to change status")
        try:
            response = self._table().update(to_columns(fields)).eq("id", job_id).execute()
        except APIError as exc:
            raise JobStoreError(f"Failed to update job {job_id}: {exc.message}") from exc
        return self._first(response.data)

    def assign_version_group(self, job_id: str, version_group_id: str) -> Optional[StagingJob]:
        try:
            response = (
                self._table()
                .update({"version_group_id": version_group_id, "is_primary_version": True})
                .eq("id", job_id)
                .is_("version_group_id", "null")
                .execute()
            )
        except APIError as exc:
            raise JobStoreError(f"Failed to assign version group to job {job_id}: {exc.message}") from exc
        return self._first(response.data)

    def clear_primary(self, version_group_id: str) -> None:
        try:
            (
                self._table()
                .update({"is_primary_version": False})
                .eq("version_group_id", version_group_id)
                .execute()
            )
        except APIError as exc:
            raise JobStoreError(
                f"Failed to unset primary versions in group {version_group_id}: {exc.message}"
            ) from exc

    def _conditional_transition(
        self, job_id: str, status: JobStatus, fields: Dict[str, Any]
    ) -> Optional[StagingJob]:
        columns = to_columns({**fields, "status": status})
        allowed = [s.value for s in predecessors(status)]
        try:
            response = (
                self._table()
                .update(columns)
                .eq("id", job_id)
                .in_("status", allowed)
                .execute()
            )
        except APIError as exc:
            raise JobStoreError(f"Failed to move job {job_id} to {status.value}: {exc.message}") from exc
        return self._first(response.data)

    def _query(self, column: str, value: str):
        try:
            response = self._table().select("*").eq(column, value).limit(1).execute()
        except APIError as exc:
            raise JobStoreError(f"Failed to read job by {column}={value}: {exc.message}") from exc
        return response.data

    @staticmethod
    def _first(rows: Optional[List[Dict[str, Any]]]) -> Optional[StagingJob]:
        if not rows:
            return None
        return StagingJob.from_row(rows[0])
