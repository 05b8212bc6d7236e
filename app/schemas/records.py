# app/schemas/records.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.job import JobKind, JobStatus, SourceAttribution

# Common typed columns every record carries outside of `data`
RECORD_COLUMNS = ("name", "email", "phone", "company", "status")


class ColumnInfo(BaseModel):
    name: str
    label: Optional[str] = None
    type: str = "text"

    def display_name(self) -> str:
        return self.label or self.name


class TableInfo(BaseModel):
    id: str
    organizationId: str
    name: Optional[str] = None
    columns: List[ColumnInfo] = Field(default_factory=list)


class Record(BaseModel):
    """
    Tenant-owned row: a few common typed columns
    plus the open-ended `data` attribute map.
    """

    id: str
    tableId: Optional[str] = None
    organizationId: Optional[str] = None

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    status: Optional[str] = None

    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def value_of(self, field: str) -> Any:
        if field in RECORD_COLUMNS:
            direct = getattr(self, field)
            if direct not in (None, ""):
                return direct
        return self.data.get(field)

    def display_name(self) -> str:
        return self.name or self.company or f"Record {self.id}"


class GeneratedRecordDraft(BaseModel):
    """One job result awaiting human confirmation."""

    jobId: str
    recordIndex: int
    recordId: str
    status: str  # "success" | "failed"
    generatedData: Dict[str, Any] = Field(default_factory=dict)
    sources: List[SourceAttribution] = Field(default_factory=list)
    error: Optional[str] = None

    def is_success(self) -> bool:
        return self.status == "success"


# -------------------------
# Preview
# -------------------------
class JobSummary(BaseModel):
    id: str
    kind: JobKind
    status: JobStatus
    totalRecords: int
    completedRecords: int
    failedRecords: int


class PreviewRecord(BaseModel):
    index: int
    recordId: str
    data: Dict[str, Any]
    sources: List[SourceAttribution]


class PreviewResponse(BaseModel):
    job: JobSummary
    records: List[PreviewRecord]


# -------------------------
# Confirm
# -------------------------
class ConfirmGenerationRequest(BaseModel):
    selectedIndices: List[int] = Field(..., description="recordIndex values to insert")


class ConfirmGenerationResponse(BaseModel):
    success: bool = True
    insertedCount: int


class ConfirmEnrichmentRequest(BaseModel):
    selectedRecordIds: List[str] = Field(..., description="Record IDs whose enrichment to apply")


class ConfirmEnrichmentResponse(BaseModel):
    success: bool = True
    successCount: int
    failureCount: int
    totalProcessed: int


class EnrichRequest(BaseModel):
    """
    Direct enrichment request for a set of existing records.
    """

    tableId: str
    recordIds: List[str]
    targetColumns: Optional[List[str]] = None
    newColumns: List[str] = Field(default_factory=list)
    dataDescription: Optional[str] = Field(
        None,
        description="Optional focus for the enrichment"
    )
