import logging
from typing import List, Optional

from app.config import MAX_ROW_COUNT
from app.workers.celery import celery

from app.errors import ModelError, ModelUnavailableError
from app.repos.redis_jobs import JobRepo, get_job_repo
from app.schemas.job import GenerationJob, JobKind, JobStatus
from app.schemas.records import ColumnInfo, Record
from app.services.llm import ModelClient, get_model_client
from app.services.record_agent import (
    enrich_record,
    failed_result,
    generate_record,
    identifying_value,
    target_fields,
)

logger = logging.getLogger(__name__)


# --------------------------------------------------
# Core job loop
# --------------------------------------------------
def _stopped(job: Optional[GenerationJob]) -> bool:
    # failed by a staleness sweep or deleted while the loop was running
    return job is None or job.is_terminal()


def process_job(
    jobs: JobRepo,
    jobId: str,
    columns: List[ColumnInfo],
    records: Optional[List[Record]] = None,
    model: Optional[ModelClient] = None,
):
    """
    Process a job one record at a time.

    A record that fails is recorded and skipped. Only a model that cannot be
    reached before anything succeeded (or an unexpected error) fails the job.
    """
    job = jobs.get(jobId)
    if job is None:
        logger.error("Job %s not found; nothing to run", jobId)
        return

    if job.status != JobStatus.pending:
        logger.warning("Job %s already %s; skipping", jobId, job.status.value)
        return

    params = job.params
    model = model or get_model_client()
    records = records or []

    logger.info("🚀 %s job %s started (%d records)", job.kind.value, jobId, job.totalRecords)

    try:
        if job.kind == JobKind.generation:
            if not params.rowCount or not 1 <= params.rowCount <= MAX_ROW_COUNT:
                jobs.fail(jobId, f"rowCount must be between 1 and {MAX_ROW_COUNT}")
                return
            targets = list(range(params.rowCount))
            jobs.start(jobId, stage="generating")
        else:
            targets = records
            jobs.start(jobId, stage="enriching")

        completed = 0
        failed = 0
        previous: List[str] = []

        for i, target in enumerate(targets):
            if job.kind == JobKind.generation:
                recordId = str(i)
                label = f"Record {i + 1}/{len(targets)}"
            else:
                recordId = target.id
                label = target.display_name()

            current = jobs.update_progress(jobId, currentRecord=label)
            if _stopped(current):
                logger.warning(
                    "Job %s stopped outside the worker; %d records left unprocessed",
                    jobId, len(targets) - i,
                )
                return

            try:
                if job.kind == JobKind.generation:
                    result = generate_record(i, params, columns, previous, model)
                else:
                    result = enrich_record(target, params, columns, model)

            except ModelUnavailableError as e:
                if completed == 0:
                    jobs.fail(jobId, f"Model unavailable: {e.message}")
                    return
                result = failed_result(recordId, target_fields(params, columns), e.message)

            except ModelError as e:
                result = failed_result(recordId, target_fields(params, columns), e.message)

            if result.success:
                completed += 1
                name = identifying_value(result)
                if name:
                    previous.append(name)
            else:
                failed += 1
                logger.warning("Job %s: %s failed: %s", jobId, label, result.error)

            current = jobs.update_progress(jobId, completedRecords=completed, failedRecords=failed)
            if _stopped(current):
                logger.warning("Job %s stopped outside the worker; result for %s dropped", jobId, label)
                return
            jobs.append_result(jobId, result)

        jobs.complete(jobId)

    except Exception as e:
        logger.exception("Job %s crashed", jobId)
        jobs.fail(jobId, str(e) or type(e).__name__)


# --------------------------------------------------
# Celery / Local Task Wrapper
# --------------------------------------------------
@celery.task(bind=True, name="run_generation_job")
def run_generation_job(self, jobId: str, columns: list, records: Optional[list] = None):
    """
    Celery entry point; payloads arrive as plain JSON dicts.
    """
    return process_job(
        get_job_repo(),
        jobId,
        [ColumnInfo(**c) for c in columns],
        [Record(**r) for r in (records or [])],
    )
