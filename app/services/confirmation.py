# app/services/confirmation.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from app.config import DIRECT_FIELDS
from app.errors import AppError, ValidationError
from app.repos.record_store import RecordStore
from app.schemas.job import (
    EnrichmentResult,
    GenerationJob,
    JobKind,
    JobStatus,
    utcnow,
)
from app.schemas.records import (
    ConfirmEnrichmentResponse,
    GeneratedRecordDraft,
    JobSummary,
    PreviewRecord,
    PreviewResponse,
    Record,
)

logger = logging.getLogger(__name__)


def _require_completed(job: GenerationJob, kind: Optional[JobKind] = None):
    if job.status != JobStatus.completed:
        raise ValidationError(f"Job is {job.status.value}, not completed")
    if kind is not None and job.kind != kind:
        raise ValidationError(f"Job {job.id} is not a {kind.value} job")


def _field_values(result: EnrichmentResult) -> Dict[str, Any]:
    return {f.name: f.value for f in result.fields}


def drafts(job: GenerationJob) -> List[GeneratedRecordDraft]:
    """Job results as drafts, ordered by recordIndex."""
    return [
        GeneratedRecordDraft(
            jobId=job.id,
            recordIndex=r.recordIndex,
            recordId=r.recordId,
            status="success" if r.success else "failed",
            generatedData=_field_values(r),
            sources=list(r.sources),
            error=getattr(r, "error", None),
        )
        for r in sorted(job.results, key=lambda r: r.recordIndex)
    ]


# --------------------------------------------------
# Preview
# --------------------------------------------------
def get_preview(job: GenerationJob) -> PreviewResponse:
    _require_completed(job)

    records = [
        PreviewRecord(
            index=d.recordIndex,
            recordId=d.recordId,
            data=d.generatedData,
            sources=d.sources,
        )
        for d in drafts(job)
        if d.is_success()
    ]

    return PreviewResponse(
        job=JobSummary(
            id=job.id,
            kind=job.kind,
            status=job.status,
            totalRecords=job.totalRecords,
            completedRecords=job.completedRecords,
            failedRecords=job.failedRecords,
        ),
        records=records,
    )


# --------------------------------------------------
# Merge
# --------------------------------------------------
def split_direct_fields(values: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """(top-level column values, `data` values); None values are dropped."""
    direct, data = {}, {}
    for name, value in values.items():
        if value is None:
            continue
        if name in DIRECT_FIELDS:
            direct[name] = value
        else:
            data[name] = value
    return direct, data


def merge_enrichment(
    record: Record,
    result: EnrichmentResult,
    jobId: str,
    now: datetime,
) -> Dict[str, Any]:
    """
    Patch that applies `result` to `record`.

    Only non-null enriched values are written; every other key in
    `record.data` is carried over unchanged. Pure: `record` is not touched.
    """
    direct, enriched = split_direct_fields(_field_values(result))

    data = dict(record.data)
    data.update(enriched)
    data["enrichment_metadata"] = {
        "enrichedAt": now.isoformat(),
        "jobId": jobId,
        "sources": [s.model_dump() for s in result.sources],
    }

    patch: Dict[str, Any] = dict(direct)
    patch["data"] = data
    return patch


# --------------------------------------------------
# Confirm
# --------------------------------------------------
def confirm_generation(
    job: GenerationJob,
    selectedIndices: List[int],
    store: RecordStore,
) -> int:
    """
    Insert the selected generated drafts. Indices that match no successful
    result are ignored. Returns the number of inserted records.
    """
    _require_completed(job, JobKind.generation)

    wanted = set(selectedIndices)
    now = utcnow()
    payloads = []

    for draft in drafts(job):
        if not draft.is_success() or draft.recordIndex not in wanted:
            continue

        direct, data = split_direct_fields(draft.generatedData)
        payloads.append({
            "tableId": job.tableId,
            "organizationId": job.organizationId,
            **direct,
            "data": data,
            "metadata": {
                "aiGenerated": True,
                "sources": [s.model_dump() for s in draft.sources],
                "generatedAt": now.isoformat(),
                "jobId": job.id,
            },
        })

    ignored = len(wanted) - len(payloads)
    if ignored:
        logger.info("Job %s: %d selected indices matched no draft", job.id, ignored)

    if not payloads:
        return 0

    inserted = store.insert_records(payloads)
    logger.info("Job %s: inserted %d generated records", job.id, len(inserted))
    return len(inserted)


def confirm_enrichment(
    job: GenerationJob,
    selectedRecordIds: List[str],
    store: RecordStore,
) -> ConfirmEnrichmentResponse:
    """
    Merge the selected enrichment results into their records.
    Every record is handled on its own; one failure never stops the rest.
    """
    _require_completed(job, JobKind.enrichment)

    by_record = {r.recordId: r for r in job.results}
    now = utcnow()
    success = failure = 0

    for recordId in selectedRecordIds:
        result = by_record.get(recordId)
        if result is None or not result.success:
            failure += 1
            continue

        try:
            record = store.get_record(recordId)
            if record is None or record.organizationId not in (None, job.organizationId):
                logger.warning("Job %s: record %s not found", job.id, recordId)
                failure += 1
                continue

            store.update_record(recordId, merge_enrichment(record, result, job.id, now))
            success += 1
        except AppError as e:
            logger.error("Job %s: updating record %s failed: %s", job.id, recordId, e.message)
            failure += 1
        except Exception:
            logger.exception("Job %s: updating record %s failed", job.id, recordId)
            failure += 1

    logger.info(
        "Job %s: applied enrichment to %d records (%d failed)",
        job.id, success, failure,
    )
    return ConfirmEnrichmentResponse(
        success=failure == 0,
        successCount=success,
        failureCount=failure,
        totalProcessed=len(selectedRecordIds),
    )
