# app/schemas/job.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = (JobStatus.completed, JobStatus.failed)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobKind(str, Enum):
    generation = "generation"
    enrichment = "enrichment"


class SourceAttribution(BaseModel):
    field: str
    url: str
    confidence: float = 0.0


class EnrichedField(BaseModel):
    name: str
    # None → model found no new data for this field
    value: Optional[Any] = None
    confidence: float = 0.0


class SuccessResult(BaseModel):
    recordId: str
    recordIndex: int = 0
    success: Literal[True] = True
    fields: List[EnrichedField] = Field(default_factory=list)
    sources: List[SourceAttribution] = Field(default_factory=list)


class FailureResult(BaseModel):
    recordId: str
    recordIndex: int = 0
    success: Literal[False] = False
    fields: List[EnrichedField] = Field(default_factory=list)
    sources: List[SourceAttribution] = Field(default_factory=list)
    error: str


EnrichmentResult = Union[SuccessResult, FailureResult]


class LaunchParams(BaseModel):
    """
    Everything needed to start a job.
    Produced by the conversation engine once it reaches `ready`.
    """

    mode: JobKind = JobKind.generation
    dataDescription: str = ""
    rowCount: Optional[int] = None
    targetColumns: List[str] = Field(default_factory=list)
    newColumns: List[str] = Field(default_factory=list)

    # Enrichment only
    recordIds: List[str] = Field(default_factory=list)

    def target_count(self) -> int:
        if self.mode == JobKind.enrichment:
            return len(self.recordIds)
        return self.rowCount or 0


class GenerationJob(BaseModel):
    id: str
    ownerId: str
    tableId: str
    organizationId: str
    kind: JobKind = JobKind.generation

    status: JobStatus = JobStatus.pending
    stage: str = "queued"

    totalRecords: int = 0
    completedRecords: int = 0
    failedRecords: int = 0
    currentRecord: Optional[str] = None

    results: List[EnrichmentResult] = Field(default_factory=list)
    params: LaunchParams = Field(default_factory=LaunchParams)

    createdAt: datetime
    updatedAt: datetime
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    errorMessage: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobCreateRequest(LaunchParams):
    tableId: str = Field(..., description="Target table ID")
    sessionId: Optional[str] = Field(
        None,
        description="Conversation the launch params came from (informational)"
    )


class JobCreateResponse(BaseModel):
    jobId: str
    status: JobStatus
    kind: JobKind
    totalRecords: int


class JobProgress(BaseModel):
    jobId: str
    kind: JobKind
    status: JobStatus
    stage: Optional[str] = None

    totalRecords: int
    completedRecords: int
    failedRecords: int
    currentRecord: Optional[str] = None

    # 0–100
    progress: int = 0

    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    errorMessage: Optional[str] = None

    # False once the job reached a terminal state
    pollAgain: bool = True

    @classmethod
    def from_job(cls, job: GenerationJob) -> "JobProgress":
        done = job.completedRecords + job.failedRecords
        progress = int(done * 100 / job.totalRecords) if job.totalRecords else 0
        if job.status == JobStatus.completed:
            progress = 100

        return cls(
            jobId=job.id,
            kind=job.kind,
            status=job.status,
            stage=job.stage,
            totalRecords=job.totalRecords,
            completedRecords=job.completedRecords,
            failedRecords=job.failedRecords,
            currentRecord=job.currentRecord,
            progress=min(progress, 100),
            startedAt=job.startedAt,
            completedAt=job.completedAt,
            errorMessage=job.errorMessage,
            pollAgain=not job.is_terminal(),
        )
