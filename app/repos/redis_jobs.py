# app/repos/redis_jobs.py
import logging
import threading
import uuid
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable, Dict, Iterator, Optional

from app.config import (
    JOB_STALE_SECONDS,
    JOB_TTL_SECONDS,
    REDIS_PREFIX,
    REDIS_URL,
    USE_CELERY,
)
from app.schemas.job import (
    EnrichmentResult,
    GenerationJob,
    JobStatus,
    LaunchParams,
    utcnow,
)

logger = logging.getLogger(__name__)

# held only for a single load/change/save
LOCK_TIMEOUT_SECONDS = 10
LOCK_WAIT_SECONDS = 5


def _mark_failed(job: GenerationJob, error: str):
    job.status = JobStatus.failed
    job.errorMessage = error
    job.completedAt = utcnow()
    logger.error("Job %s failed: %s", job.id, error)


class JobRepo:
    """
    Owns the lifecycle of generation / enrichment jobs.

    Storage backends implement `_load`, `_save`, `_job_ids` and `_lock`;
    every state rule lives here so both backends behave the same:
    - counters never go down
    - results are append-only, position = recordIndex
    - completed / failed are final
    """

    def __init__(self):
        self._write_lock = threading.Lock()

    # -------------------------------------------------
    # Storage hooks
    # -------------------------------------------------
    def _key(self, jobId: str) -> str:
        return f"{REDIS_PREFIX}{jobId}"

    def _load(self, jobId: str) -> Optional[GenerationJob]:
        raise NotImplementedError

    def _save(self, job: GenerationJob) -> None:
        raise NotImplementedError

    def _job_ids(self) -> Iterator[str]:
        raise NotImplementedError

    def _lock(self, jobId: str):
        """Context manager serializing read-modify-write of one job."""
        return self._write_lock

    # -------------------------------------------------
    # Reads
    # -------------------------------------------------
    def get(self, jobId: str) -> Optional[GenerationJob]:
        """Snapshot of the job; mutating it does not touch the stored job."""
        return self._load(jobId)

    # -------------------------------------------------
    # Writes
    # -------------------------------------------------
    def create(
        self,
        *,
        ownerId: str,
        tableId: str,
        organizationId: str,
        params: LaunchParams,
    ) -> GenerationJob:
        now = utcnow()
        job = GenerationJob(
            id=f"job_{uuid.uuid4().hex[:12]}",
            ownerId=ownerId,
            tableId=tableId,
            organizationId=organizationId,
            kind=params.mode,
            totalRecords=params.target_count(),
            params=params,
            createdAt=now,
            updatedAt=now,
        )
        self._save(job)
        logger.info(
            "Created %s job %s (%d records) for table %s",
            job.kind.value, job.id, job.totalRecords, tableId,
        )
        return job

    def _mutate(
        self,
        jobId: str,
        change: Callable[[GenerationJob], Optional[bool]],
    ) -> Optional[GenerationJob]:
        """
        Load, change and save one job under its lock.
        A change returning False leaves the stored job untouched.
        """
        with self._lock(jobId):
            job = self._load(jobId)
            if job is None:
                logger.warning("Update for unknown job %s ignored", jobId)
                return None

            if job.is_terminal():
                return job

            if change(job) is False:
                return job

            job.updatedAt = utcnow()
            self._save(job)
            return job

    def start(self, jobId: str, stage: str = "running") -> Optional[GenerationJob]:
        def change(job: GenerationJob):
            if job.status == JobStatus.pending:
                job.status = JobStatus.running
                job.startedAt = utcnow()
            job.stage = stage

        return self._mutate(jobId, change)

    def update_progress(
        self,
        jobId: str,
        *,
        completedRecords: Optional[int] = None,
        failedRecords: Optional[int] = None,
        currentRecord: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> Optional[GenerationJob]:
        def change(job: GenerationJob):
            if completedRecords is not None:
                if completedRecords < job.completedRecords:
                    logger.warning(
                        "Job %s: completedRecords %d → %d ignored (not monotonic)",
                        jobId, job.completedRecords, completedRecords,
                    )
                else:
                    job.completedRecords = completedRecords

            if failedRecords is not None:
                if failedRecords < job.failedRecords:
                    logger.warning(
                        "Job %s: failedRecords %d → %d ignored (not monotonic)",
                        jobId, job.failedRecords, failedRecords,
                    )
                else:
                    job.failedRecords = failedRecords

            if currentRecord is not None:
                job.currentRecord = currentRecord
            if stage is not None:
                job.stage = stage

        return self._mutate(jobId, change)

    def append_result(self, jobId: str, result: EnrichmentResult) -> Optional[EnrichmentResult]:
        stored = {}

        def change(job: GenerationJob):
            indexed = result.model_copy(update={"recordIndex": len(job.results)})
            job.results.append(indexed)
            stored["result"] = indexed

        self._mutate(jobId, change)
        return stored.get("result")

    def complete(self, jobId: str) -> Optional[GenerationJob]:
        def change(job: GenerationJob):
            job.status = JobStatus.completed
            job.stage = "done"
            job.currentRecord = None
            job.completedAt = utcnow()
            logger.info(
                "Job %s completed: %d ok, %d failed",
                jobId, job.completedRecords, job.failedRecords,
            )

        return self._mutate(jobId, change)

    def fail(self, jobId: str, error: str) -> Optional[GenerationJob]:
        def change(job: GenerationJob):
            _mark_failed(job, error)

        return self._mutate(jobId, change)

    # -------------------------------------------------
    # Staleness
    # -------------------------------------------------
    def expire_stale(
        self,
        jobId: str,
        now: Optional[datetime] = None,
        max_age_seconds: int = JOB_STALE_SECONDS,
    ) -> Optional[GenerationJob]:
        now = now or utcnow()
        limit = timedelta(seconds=max_age_seconds)

        job = self._load(jobId)
        if job is None or job.is_terminal() or now - job.updatedAt <= limit:
            return job

        def change(job: GenerationJob):
            # a progress write may have landed since the unlocked read
            if now - job.updatedAt <= limit:
                return False
            _mark_failed(
                job,
                f"Job timed out: no progress for more than {max_age_seconds} seconds",
            )

        return self._mutate(jobId, change)

    def sweep_stale(self, now: Optional[datetime] = None) -> int:
        expired = 0
        for jobId in list(self._job_ids()):
            before = self._load(jobId)
            if before is None or before.is_terminal():
                continue
            after = self.expire_stale(jobId, now=now)
            if after is not None and after.is_terminal():
                expired += 1
        if expired:
            logger.info("Expired %d stale jobs", expired)
        return expired


# -------------------------------------------------
# In-memory repo (LOCAL DEV)
# -------------------------------------------------
class InMemoryJobRepo(JobRepo):
    def __init__(self):
        super().__init__()
        self._jobs: Dict[str, GenerationJob] = {}

    def _load(self, jobId: str) -> Optional[GenerationJob]:
        job = self._jobs.get(self._key(jobId))
        return job.model_copy(deep=True) if job is not None else None

    def _save(self, job: GenerationJob) -> None:
        # copy-on-write: stored snapshots are never mutated in place
        self._jobs[self._key(job.id)] = job.model_copy(deep=True)

    def _job_ids(self) -> Iterator[str]:
        for key in list(self._jobs):
            yield key[len(REDIS_PREFIX):]


# -------------------------------------------------
# Redis-backed repo (PRODUCTION)
# -------------------------------------------------
class RedisJobRepo(JobRepo):
    def __init__(self, client=None):
        super().__init__()
        if client is None:
            import redis  # lazy import
            if not REDIS_URL:
                raise RuntimeError("REDIS_URL is required in production")
            client = redis.from_url(REDIS_URL, decode_responses=True)

        self.client = client

    def _load(self, jobId: str) -> Optional[GenerationJob]:
        raw = self.client.get(self._key(jobId))
        return GenerationJob.model_validate_json(raw) if raw else None

    def _save(self, job: GenerationJob) -> None:
        # 🔄 Refresh TTL on every write
        self.client.set(self._key(job.id), job.model_dump_json(), ex=JOB_TTL_SECONDS)

    def _job_ids(self) -> Iterator[str]:
        for key in self.client.scan_iter(match=f"{REDIS_PREFIX}job_*"):
            yield key[len(REDIS_PREFIX):]

    def _lock(self, jobId: str):
        # shared by the API and worker processes; key stays outside the job_* scan
        return self.client.lock(
            f"{REDIS_PREFIX}lock:{jobId}",
            timeout=LOCK_TIMEOUT_SECONDS,
            blocking_timeout=LOCK_WAIT_SECONDS,
        )


# -------------------------------------------------
# Factory
# -------------------------------------------------
@lru_cache(maxsize=1)
def get_job_repo() -> JobRepo:
    if USE_CELERY:
        return RedisJobRepo()
    return InMemoryJobRepo()
