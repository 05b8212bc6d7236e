# app/services/record_agent.py
from typing import Any, Dict, List, Optional

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field

from app.config import IDENTIFYING_FIELDS
from app.schemas.job import (
    EnrichedField,
    EnrichmentResult,
    FailureResult,
    LaunchParams,
    SourceAttribution,
    SuccessResult,
)
from app.schemas.records import ColumnInfo, Record
from app.services.intent_parser import describe_columns
from app.services.llm import ModelClient

MODEL_KNOWLEDGE = "model_knowledge"

# Keep prompts bounded on large jobs
MAX_PREVIOUS_IN_PROMPT = 50


class FieldValue(BaseModel):
    value: Optional[Any] = None
    confidence: float = 0.0
    source_url: Optional[str] = None


class RecordModelOutput(BaseModel):
    fields: Dict[str, FieldValue] = Field(default_factory=dict)


RESPONSE_FORMAT = (
    "Return JSON: {{\"fields\": {{\"<field name>\": "
    "{{\"value\": <value or null>, \"confidence\": <0-1>, "
    "\"source_url\": \"<https URL you relied on, or null>\"}}}}}}.\n"
    "Use null for anything you cannot determine. Never invent URLs."
)

GENERATION_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        "You generate realistic, factual business records for a CRM table. "
        "Prefer real organizations. Reply with a single JSON object."
    ),
    (
        "user",
        "Table columns: {columns}\n"
        "Data to generate: {description}\n"
        "This is record {position} of {total}.\n"
        "Already generated (do not repeat): {previous}\n\n"
        "Fill these fields: {fields}\n\n"
        + RESPONSE_FORMAT
    ),
])

ENRICHMENT_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        "You enrich existing CRM records with missing attributes, using every "
        "known value of the record as context. Reply with a single JSON object."
    ),
    (
        "user",
        "Table columns: {columns}\n"
        "Enrichment focus: {description}\n\n"
        "Known record data:\n{context}\n\n"
        "Find values for: {fields}\n\n"
        + RESPONSE_FORMAT
    ),
])


def target_fields(params: LaunchParams, columns: List[ColumnInfo]) -> List[str]:
    fields = list(params.targetColumns)
    for name in params.newColumns:
        if name not in fields:
            fields.append(name)
    return fields or [c.name for c in columns]


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def record_context(record: Record) -> str:
    parts = []
    for field in ("name", "company", "email", "phone"):
        value = getattr(record, field)
        if not _is_empty(value):
            parts.append(f"{field}: {value}")

    for key, value in record.data.items():
        if key == "enrichment_metadata" or _is_empty(value):
            continue
        parts.append(f"{key}: {value}")

    return "\n".join(parts) or "(no data)"


def build_result(
    recordId: str,
    fields: List[str],
    output: RecordModelOutput,
) -> SuccessResult:
    values, sources = [], []

    for name in fields:
        found = output.fields.get(name)
        value = None if found is None or _is_empty(found.value) else found.value
        confidence = found.confidence if found is not None else 0.0

        values.append(EnrichedField(name=name, value=value, confidence=confidence))
        if value is not None:
            sources.append(SourceAttribution(
                field=name,
                url=(found.source_url or MODEL_KNOWLEDGE),
                confidence=confidence,
            ))

    return SuccessResult(recordId=recordId, fields=values, sources=sources)


def failed_result(recordId: str, fields: List[str], error: str) -> FailureResult:
    return FailureResult(
        recordId=recordId,
        fields=[EnrichedField(name=f, value=None) for f in fields],
        error=error,
    )


def generate_record(
    index: int,
    params: LaunchParams,
    columns: List[ColumnInfo],
    previous: List[str],
    model: ModelClient,
) -> EnrichmentResult:
    """
    Generate one new record. Raises ModelError when the call or parsing fails.
    """
    fields = target_fields(params, columns)

    output = model.generate(
        GENERATION_PROMPT.format_messages(
            columns=describe_columns(columns),
            description=params.dataDescription,
            position=index + 1,
            total=params.rowCount,
            previous=", ".join(previous[-MAX_PREVIOUS_IN_PROMPT:]) or "(none)",
            fields=", ".join(fields),
        ),
        RecordModelOutput,
    )

    result = build_result(str(index), fields, output)

    values = {f.name: f.value for f in result.fields}
    for required in IDENTIFYING_FIELDS:
        if required in values and values[required] is None:
            return failed_result(
                str(index), fields, f"Identifying field '{required}' came back empty"
            )

    return result


def enrich_record(
    record: Record,
    params: LaunchParams,
    columns: List[ColumnInfo],
    model: ModelClient,
) -> EnrichmentResult:
    """
    Enrich one existing record. Fields the record already has are skipped;
    with nothing left to fill, no model call is made.
    """
    fields = [
        f for f in target_fields(params, columns)
        if _is_empty(record.value_of(f))
    ]
    if not fields:
        return SuccessResult(recordId=record.id)

    output = model.generate(
        ENRICHMENT_PROMPT.format_messages(
            columns=describe_columns(columns),
            description=params.dataDescription or "missing attributes",
            context=record_context(record),
            fields=", ".join(fields),
        ),
        RecordModelOutput,
    )
    return build_result(record.id, fields, output)


def identifying_value(result: EnrichmentResult) -> Optional[str]:
    for f in result.fields:
        if f.name in IDENTIFYING_FIELDS and f.value is not None:
            return str(f.value)
    return None
