"""
Job lifecycle rules shared by the in-memory and Redis job repos.
"""

import threading
from datetime import timedelta

import pytest

from app.config import JOB_TTL_SECONDS, REDIS_PREFIX
from app.repos.redis_jobs import InMemoryJobRepo, RedisJobRepo
from app.schemas.job import (
    FailureResult,
    JobKind,
    JobStatus,
    LaunchParams,
    SuccessResult,
    utcnow,
)


class FakeRedis:
    """The handful of redis-py calls RedisJobRepo makes."""

    def __init__(self):
        self.data = {}
        self.ttl = {}
        self.locks = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttl[key] = ex

    def scan_iter(self, match=None):
        prefix = match.rstrip("*") if match else ""
        return iter([k for k in self.data if k.startswith(prefix)])

    def lock(self, name, timeout=None, blocking_timeout=None):
        return self.locks.setdefault(name, threading.Lock())


@pytest.fixture(params=["memory", "redis"])
def repo(request):
    if request.param == "memory":
        return InMemoryJobRepo()
    return RedisJobRepo(client=FakeRedis())


def _create(repo, **params):
    return repo.create(
        ownerId="user_1",
        tableId="tbl_1",
        organizationId="org_1",
        params=LaunchParams(**{"dataDescription": "IT companies", "rowCount": 5, **params}),
    )


class TestCreate:
    def test_new_job_is_pending_with_zero_counters(self, repo):
        job = _create(repo)

        assert job.id.startswith("job_")
        assert job.status == JobStatus.pending
        assert job.totalRecords == 5
        assert job.completedRecords == job.failedRecords == 0
        assert job.results == []
        assert repo.get(job.id).id == job.id

    def test_enrichment_total_is_number_of_records(self, repo):
        job = _create(repo, mode=JobKind.enrichment, rowCount=None, recordIds=["a", "b", "c"])

        assert job.kind == JobKind.enrichment
        assert job.totalRecords == 3

    def test_unknown_job_is_none(self, repo):
        assert repo.get("job_missing") is None
        assert repo.update_progress("job_missing", completedRecords=1) is None


class TestProgress:
    def test_start_moves_pending_to_running(self, repo):
        job = _create(repo)
        repo.start(job.id, stage="generating")

        stored = repo.get(job.id)
        assert stored.status == JobStatus.running
        assert stored.stage == "generating"
        assert stored.startedAt is not None

    def test_counters_never_decrease(self, repo):
        job = _create(repo)
        repo.update_progress(job.id, completedRecords=3, failedRecords=1)
        repo.update_progress(job.id, completedRecords=2, failedRecords=0)

        stored = repo.get(job.id)
        assert stored.completedRecords == 3
        assert stored.failedRecords == 1

    def test_results_keep_append_order(self, repo):
        job = _create(repo)
        first = repo.append_result(job.id, SuccessResult(recordId="0"))
        second = repo.append_result(job.id, FailureResult(recordId="1", error="boom"))
        repo.append_result(job.id, SuccessResult(recordId="2"))

        assert first.recordIndex == 0
        assert second.recordIndex == 1

        results = repo.get(job.id).results
        assert [r.recordId for r in results] == ["0", "1", "2"]
        assert [r.recordIndex for r in results] == [0, 1, 2]
        assert results[1].success is False
        assert results[1].error == "boom"

    def test_snapshot_does_not_change_stored_job(self, repo):
        job = _create(repo)
        snapshot = repo.get(job.id)
        snapshot.completedRecords = 99
        snapshot.results.append(SuccessResult(recordId="x"))

        stored = repo.get(job.id)
        assert stored.completedRecords == 0
        assert stored.results == []


class TestTerminal:
    def test_complete_is_final(self, repo):
        job = _create(repo)
        repo.complete(job.id)
        repo.fail(job.id, "too late")
        repo.update_progress(job.id, completedRecords=4)
        repo.append_result(job.id, SuccessResult(recordId="0"))

        stored = repo.get(job.id)
        assert stored.status == JobStatus.completed
        assert stored.errorMessage is None
        assert stored.completedRecords == 0
        assert stored.results == []

    def test_fail_is_final(self, repo):
        job = _create(repo)
        repo.fail(job.id, "model unavailable")
        completed_at = repo.get(job.id).completedAt

        repo.complete(job.id)
        repo.fail(job.id, "second failure")

        stored = repo.get(job.id)
        assert stored.status == JobStatus.failed
        assert stored.errorMessage == "model unavailable"
        assert stored.completedAt == completed_at


class TestStaleness:
    def test_recent_job_is_left_alone(self, repo):
        job = _create(repo)
        repo.start(job.id)

        assert repo.expire_stale(job.id).status == JobStatus.running

    def test_stale_running_job_is_failed(self, repo):
        job = _create(repo)
        repo.start(job.id)

        later = utcnow() + timedelta(seconds=10_000)
        expired = repo.expire_stale(job.id, now=later, max_age_seconds=60)

        assert expired.status == JobStatus.failed
        assert "timed out" in expired.errorMessage

    def test_sweep_counts_only_expired_jobs(self, repo):
        running = _create(repo)
        repo.start(running.id)
        done = _create(repo)
        repo.complete(done.id)

        later = utcnow() + timedelta(days=1)
        assert repo.sweep_stale(now=later) == 1
        assert repo.get(running.id).status == JobStatus.failed
        assert repo.get(done.id).status == JobStatus.completed


def test_redis_writes_refresh_ttl():
    client = FakeRedis()
    repo = RedisJobRepo(client=client)
    job = _create(repo)

    key = repo._key(job.id)
    assert client.ttl[key] == JOB_TTL_SECONDS
    assert '"status":"pending"' in client.data[key]


def test_progress_written_before_expiry_keeps_job_running():
    client = FakeRedis()
    api, worker = RedisJobRepo(client=client), RedisJobRepo(client=client)
    job = _create(worker)
    worker.start(job.id)

    stale = worker.get(job.id)
    stale.updatedAt -= timedelta(hours=1)
    worker._save(stale)

    take_lock = api._lock

    def lock_after_worker_write(jobId):
        # the worker reports progress between the unlocked read and the lock
        worker.update_progress(jobId, completedRecords=1)
        return take_lock(jobId)

    api._lock = lock_after_worker_write

    after = api.expire_stale(job.id, max_age_seconds=60)

    assert after.status == JobStatus.running
    assert after.completedRecords == 1
    assert worker.get(job.id).status == JobStatus.running
    assert list(client.locks) == [f"{REDIS_PREFIX}lock:{job.id}"]
    assert all(key.startswith(f"{REDIS_PREFIX}job_") for key in client.data)
