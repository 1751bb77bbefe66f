"""Version groups (remix families) and the primary-version pointer."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from roomstage.jobs.models import StagingJob
from roomstage.jobs.store import JobStore, JobStoreError

logger = logging.getLogger(__name__)


@dataclass
class PromotionResult:
    success: bool
    job: Optional[StagingJob] = None
    error: Optional[str] = None


@dataclass
class VersionListing:
    version_group_id: Optional[str]
    versions: List[StagingJob] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.versions)


class VersionManager:
    def __init__(self, store: JobStore):
        self._store = store

    def ensure_group(self, source: StagingJob) -> str:
        """Version group for a remix of source, minting one if needed.

        A newly minted group is also written to the source job, which becomes
        the group's primary version. The write only lands while the source is
        ungrouped; if a concurrent remix got there first, its group is used.
        """
        if source.version_group_id:
            return source.version_group_id

        group_id = str(uuid.uuid4())
        if self._store.assign_version_group(source.id, group_id) is not None:
            logger.info(f"Minted version group {group_id} for job {source.id}")
            return group_id

        current = self._store.get(source.id)
        if current is None or not current.version_group_id:
            raise JobStoreError(f"Job {source.id} disappeared while assigning a version group")
        logger.info(f"Job {source.id} was grouped concurrently; joining {current.version_group_id}")
        return current.version_group_id

    def set_primary_version(self, job: StagingJob) -> PromotionResult:
        """Make job the primary of its group.

        Siblings are unset before the target is set: a failure in between
        leaves zero primaries, never two.
        """
        if job.version_group_id:
            try:
                self._store.clear_primary(job.version_group_id)
            except JobStoreError as exc:
                logger.error(f"Clearing primary in group {job.version_group_id} failed: {exc}")
                return PromotionResult(success=False, error=str(exc))

        try:
            updated = self._store.update_fields(job.id, {"is_primary_version": True})
        except JobStoreError as exc:
            logger.error(f"Setting job {job.id} as primary failed: {exc}")
            return PromotionResult(success=False, error=str(exc))
        if updated is None:
            return PromotionResult(success=False, error=f"Job {job.id} not found")
        return PromotionResult(success=True, job=updated)

    def get_versions(self, job: StagingJob) -> VersionListing:
        if not job.version_group_id:
            return VersionListing(version_group_id=None, versions=[job])
        return VersionListing(
            version_group_id=job.version_group_id,
            versions=self._store.list_by_version_group(job.version_group_id),
        )
