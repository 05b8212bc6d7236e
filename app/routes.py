import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends

from app.config import API_PREFIX, MAX_ROW_COUNT, USE_CELERY
from app.deps import CurrentUser, get_current_user, get_jobs, get_model, get_store
from app.errors import NotFound, ValidationError
from app.repos.record_store import RecordStore
from app.repos.redis_jobs import JobRepo
from app.schemas.conversation import (
    ConversationTurn,
    ProcessInputRequest,
    StartConversationRequest,
)
from app.schemas.intent import IntentRequest, ParsedIntent
from app.schemas.job import (
    GenerationJob,
    JobCreateRequest,
    JobCreateResponse,
    JobKind,
    JobProgress,
    LaunchParams,
)
from app.schemas.records import (
    ConfirmEnrichmentRequest,
    ConfirmEnrichmentResponse,
    ConfirmGenerationRequest,
    ConfirmGenerationResponse,
    EnrichRequest,
    PreviewResponse,
    TableInfo,
)
from app.services import confirmation
from app.services.conversation import (
    process_user_input,
    start_conversation,
    validate_user_input,
)
from app.services.intent_parser import parse_intent
from app.services.llm import ModelClient
from app.workers.generation_task import process_job, run_generation_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix=API_PREFIX)


# --------------------------------------------------
# Helpers
# --------------------------------------------------
def _owned_table(store: RecordStore, tableId: str, user: CurrentUser) -> TableInfo:
    table = store.get_table(tableId)
    if table is None or table.organizationId != user.organizationId:
        raise NotFound("Table not found")
    return table


def _owned_job(jobs: JobRepo, jobId: str, user: CurrentUser) -> GenerationJob:
    # Progress reads double as the staleness check
    job = jobs.expire_stale(jobId)
    if job is None or job.ownerId != user.id:
        raise NotFound("Job not found")
    return job


def _launch_violations(params: LaunchParams) -> List[str]:
    violations = []
    if params.mode == JobKind.generation:
        if params.rowCount is None or not 1 <= params.rowCount <= MAX_ROW_COUNT:
            violations.append(f"rowCount must be between 1 and {MAX_ROW_COUNT}")
        if not params.dataDescription.strip():
            violations.append("dataDescription must be a non-empty string")
    else:
        if not params.recordIds:
            violations.append("recordIds must be a non-empty array")
        elif len(params.recordIds) > MAX_ROW_COUNT:
            violations.append(f"recordIds must contain at most {MAX_ROW_COUNT} ids")
    return violations


def _launch(
    params: LaunchParams,
    table: TableInfo,
    user: CurrentUser,
    jobs: JobRepo,
    store: RecordStore,
    model: ModelClient,
    background_tasks: BackgroundTasks,
) -> JobCreateResponse:
    violations = _launch_violations(params)
    if violations:
        raise ValidationError("Invalid job parameters", violations)

    records = []
    if params.mode == JobKind.enrichment:
        params = params.model_copy(update={"recordIds": list(dict.fromkeys(params.recordIds))})
        records = [
            r for r in store.get_records(params.recordIds)
            if r.tableId in (None, table.id) and r.organizationId in (None, user.organizationId)
        ]
        missing = sorted(set(params.recordIds) - {r.id for r in records})
        if missing:
            raise ValidationError(
                "Some records do not exist in this table",
                [f"unknown record: {recordId}" for recordId in missing],
            )

    columns = table.columns
    if params.newColumns:
        store.add_columns(table.id, params.newColumns)
        columns = store.get_columns(table.id)

    job = jobs.create(
        ownerId=user.id,
        tableId=table.id,
        organizationId=user.organizationId,
        params=params,
    )

    # ✅ ALWAYS use keyword arguments
    if USE_CELERY:
        run_generation_job.delay(
            jobId=job.id,
            columns=[c.model_dump() for c in columns],
            records=[r.model_dump(mode="json") for r in records],
        )
    else:
        background_tasks.add_task(process_job, jobs, job.id, columns, records, model)

    return JobCreateResponse(
        jobId=job.id,
        status=job.status,
        kind=job.kind,
        totalRecords=job.totalRecords,
    )


# --------------------------------------------------
# Intent
# --------------------------------------------------
@router.post("/intent", response_model=ParsedIntent)
def intent(
    req: IntentRequest,
    user: CurrentUser = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
    model: ModelClient = Depends(get_model),
):
    message = validate_user_input(req.message)
    table = _owned_table(store, req.tableId, user)
    return parse_intent(message, table.columns, req.selectedRowIds, model=model)


# --------------------------------------------------
# Conversations
# --------------------------------------------------
@router.post("/conversations", response_model=ConversationTurn)
def create_conversation(
    req: StartConversationRequest,
    user: CurrentUser = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
    model: ModelClient = Depends(get_model),
):
    _owned_table(store, req.tableId, user)

    turn = start_conversation(
        tableId=req.tableId,
        tableName=req.tableName,
        columns=req.columns,
        userId=user.id,
        organizationId=user.organizationId,
        selectedRowIds=req.selectedRowIds,
        userInput=req.userInput,
        model=model,
    )
    logger.info("Conversation turn: %s", turn.summary())
    return turn


@router.post("/conversations/{sessionId}/messages", response_model=ConversationTurn)
def conversation_message(
    sessionId: str,
    req: ProcessInputRequest,
    user: CurrentUser = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
    model: ModelClient = Depends(get_model),
):
    if req.state.organizationId not in (None, user.organizationId):
        raise NotFound("Conversation not found")
    _owned_table(store, req.state.tableId, user)

    turn = process_user_input(sessionId, req.userInput, req.state, model=model)
    logger.info("Conversation turn: %s", turn.summary())
    return turn


# --------------------------------------------------
# Jobs
# --------------------------------------------------
@router.post("/jobs", status_code=202, response_model=JobCreateResponse)
def create_job(
    req: JobCreateRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    jobs: JobRepo = Depends(get_jobs),
    store: RecordStore = Depends(get_store),
    model: ModelClient = Depends(get_model),
):
    table = _owned_table(store, req.tableId, user)
    params = LaunchParams(**req.model_dump(exclude={"tableId", "sessionId"}))
    return _launch(params, table, user, jobs, store, model, background_tasks)


@router.post("/enrich", status_code=202, response_model=JobCreateResponse)
def enrich(
    req: EnrichRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    jobs: JobRepo = Depends(get_jobs),
    store: RecordStore = Depends(get_store),
    model: ModelClient = Depends(get_model),
):
    table = _owned_table(store, req.tableId, user)

    params = LaunchParams(
        mode=JobKind.enrichment,
        dataDescription=(req.dataDescription or "").strip(),
        rowCount=len(req.recordIds),
        targetColumns=req.targetColumns or [c.name for c in table.columns],
        newColumns=req.newColumns,
        recordIds=req.recordIds,
    )
    return _launch(params, table, user, jobs, store, model, background_tasks)


@router.get("/jobs/{jobId}", response_model=JobProgress)
def job_status(
    jobId: str,
    user: CurrentUser = Depends(get_current_user),
    jobs: JobRepo = Depends(get_jobs),
):
    return JobProgress.from_job(_owned_job(jobs, jobId, user))


@router.get("/jobs/{jobId}/preview", response_model=PreviewResponse)
def job_preview(
    jobId: str,
    user: CurrentUser = Depends(get_current_user),
    jobs: JobRepo = Depends(get_jobs),
):
    return confirmation.get_preview(_owned_job(jobs, jobId, user))


@router.post("/jobs/{jobId}/confirm", response_model=ConfirmGenerationResponse)
def confirm_generated(
    jobId: str,
    req: ConfirmGenerationRequest,
    user: CurrentUser = Depends(get_current_user),
    jobs: JobRepo = Depends(get_jobs),
    store: RecordStore = Depends(get_store),
):
    job = _owned_job(jobs, jobId, user)
    inserted = confirmation.confirm_generation(job, req.selectedIndices, store)
    return ConfirmGenerationResponse(insertedCount=inserted)


@router.post("/jobs/{jobId}/apply", response_model=ConfirmEnrichmentResponse)
def apply_enrichment(
    jobId: str,
    req: ConfirmEnrichmentRequest,
    user: CurrentUser = Depends(get_current_user),
    jobs: JobRepo = Depends(get_jobs),
    store: RecordStore = Depends(get_store),
):
    job = _owned_job(jobs, jobId, user)
    return confirmation.confirm_enrichment(job, req.selectedRecordIds, store)
