# app/services/intent_parser.py
import logging
from typing import List, Optional, Tuple

from langchain_core.prompts import ChatPromptTemplate

from app.schemas.intent import IntentModelOutput, ParsedIntent
from app.schemas.records import ColumnInfo
from app.services.llm import ModelClient, get_model_client

logger = logging.getLogger(__name__)

DEFAULT_REPLY = (
    "I can generate new records for this table or enrich selected rows. "
    "Tell me what kind of data you need and how many rows."
)

INTENT_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        "You are an AI agent helper that parses user requests for data "
        "generation or enrichment in a CRM table. "
        "Reply with a single JSON object and nothing else."
    ),
    (
        "user",
        "Existing table columns: {columns}{selection}\n\n"
        "User request:\n{message}\n\n"
        "Decide if this is a request to generate new records OR to enrich existing rows.\n\n"
        "If yes:\n"
        "1. row_count: number of rows to generate. Use 10 if a count is implied "
        "but not given. Use null if the user has not asked for rows yet.\n"
        "2. data_description: short description of the data "
        "(e.g. \"Japanese IT companies\", \"contact information\").\n"
        "3. target_columns: requested fields mapped to EXISTING column names.\n"
        "4. new_columns: requested fields that do not exist in the table.\n"
        "5. target_selected_rows: true only when the request refers to the selected rows.\n"
        "6. clarification_needed: a short question if the request is too vague, else null.\n\n"
        "If no (greetings, small talk, unrelated questions):\n"
        "- is_generation_request = false\n"
        "- clarification_needed = a helpful reply to the user.\n\n"
        "JSON keys: is_generation_request, row_count, data_description, "
        "target_columns, new_columns, target_selected_rows, clarification_needed."
    ),
])

SELECTION_CONTEXT = (
    "\n\nIMPORTANT: the user currently has {count} rows selected. "
    "If they say \"enrich\", \"update\", \"add data to\", \"fill in\" or \"complete\" "
    "without giving a row count, they mean the selected rows: "
    "set target_selected_rows to true."
)


def describe_columns(columns: List[ColumnInfo]) -> str:
    if not columns:
        return "(none)"
    return ", ".join(f"{c.display_name()} ({c.name})" for c in columns)


def _resolve_columns(
    requested: List[str],
    columns: List[ColumnInfo],
) -> Tuple[List[str], List[str]]:
    """Split requested field names into (existing column names, unknown names)."""
    lookup = {}
    for c in columns:
        lookup[c.name.lower()] = c.name
        if c.label:
            lookup[c.label.lower()] = c.name

    existing, unknown = [], []
    for raw in requested:
        name = (raw or "").strip()
        if not name:
            continue
        match = lookup.get(name.lower())
        if match:
            if match not in existing:
                existing.append(match)
        elif name not in unknown:
            unknown.append(name)
    return existing, unknown


def parse_intent(
    message: str,
    columns: List[ColumnInfo],
    selectedRowIds: Optional[List[str]] = None,
    model: Optional[ModelClient] = None,
) -> ParsedIntent:
    """
    Turn a free-text request into a structured generation / enrichment intent.

    Raises ModelError when the model output is not valid JSON for
    IntentModelOutput.
    """
    model = model or get_model_client()
    selected = selectedRowIds or []

    selection = SELECTION_CONTEXT.format(count=len(selected)) if selected else ""

    out = model.generate(
        INTENT_PROMPT.format_messages(
            columns=describe_columns(columns),
            selection=selection,
            message=message,
        ),
        IntentModelOutput,
    )

    if not out.is_generation_request:
        return ParsedIntent(
            isGenerationRequest=False,
            clarificationNeeded=out.clarification_needed or DEFAULT_REPLY,
        )

    target, unknown = _resolve_columns(out.target_columns, columns)
    existing_new, new = _resolve_columns(out.new_columns, columns)

    for name in existing_new:
        if name not in target:
            target.append(name)
    for name in unknown:
        if name not in new:
            new.append(name)

    target_selected = bool(out.target_selected_rows and selected)
    row_count = len(selected) if target_selected else out.row_count

    description = (out.data_description or "").strip() or None

    intent = ParsedIntent(
        isGenerationRequest=True,
        rowCount=row_count,
        dataDescription=description,
        targetColumns=target,
        newColumns=new,
        targetSelectedRows=target_selected,
        clarificationNeeded=(out.clarification_needed or "").strip() or None,
    )
    logger.debug("Parsed intent: %s", intent.model_dump())
    return intent
