# app/services/conversation.py
"""
Turn-based conversation that collects the parameters of a generation job.

The engine is stateless: every call gets the full ConversationState from the
client and returns a new one. Slots are filled in order
(description → row count → columns); a slot the user fails to clarify for
MAX_SLOT_RETRIES consecutive turns falls back to a default so the
conversation always moves forward.
"""
import logging
import uuid
from typing import List, Optional

from app.config import (
    DEFAULT_ROW_COUNT,
    MAX_ROW_COUNT,
    MAX_SLOT_RETRIES,
    MAX_USER_INPUT_LENGTH,
)
from app.errors import ValidationError
from app.schemas.conversation import (
    ConversationPhase,
    ConversationState,
    ConversationTurn,
)
from app.schemas.intent import ParsedIntent
from app.schemas.job import JobKind, LaunchParams
from app.schemas.records import ColumnInfo
from app.services.intent_parser import parse_intent
from app.services.llm import ModelClient

logger = logging.getLogger(__name__)

Phase = ConversationPhase

CONFIRM_KEYWORDS = (
    "yes", "yep", "ok", "okay", "sure", "go", "start", "confirm", "correct",
    "はい", "正しい", "完璧", "開始", "生成", "よろしく", "お願い", "スタート",
)

ENRICHMENT_DESCRIPTION = "missing attributes of the selected records"


# --------------------------------------------------
# Validation
# --------------------------------------------------
def validate_user_input(userInput: str) -> str:
    if not isinstance(userInput, str) or not userInput.strip():
        raise ValidationError("userInput must be a non-empty string")
    if len(userInput) > MAX_USER_INPUT_LENGTH:
        raise ValidationError(
            f"userInput must be at most {MAX_USER_INPUT_LENGTH} characters"
        )
    return userInput.strip()


def is_confirmation(userInput: str) -> bool:
    text = userInput.strip().lower()
    words = set(text.replace(",", " ").replace(".", " ").replace("!", " ").split())
    for keyword in CONFIRM_KEYWORDS:
        if keyword.isascii():
            if keyword in words:
                return True
        elif keyword in text:
            return True
    return False


def row_count_in_range(rowCount: Optional[int]) -> bool:
    return rowCount is not None and 1 <= rowCount <= MAX_ROW_COUNT


# --------------------------------------------------
# Replies
# --------------------------------------------------
def _column_labels(state: ConversationState, names: List[str]) -> str:
    labels = {c.name: c.display_name() for c in state.columns}
    return ", ".join(labels.get(n, n) for n in names)


def greeting(state: ConversationState) -> str:
    shown = ", ".join(c.display_name() for c in state.columns[:5])
    more = f" and {len(state.columns) - 5} more" if len(state.columns) > 5 else ""

    return (
        f"Hi! I'll generate data for the \"{state.tableName}\" table. Please tell me:\n\n"
        f"1. What kind of records you need (e.g. SaaS companies in Tokyo)\n"
        f"2. How many rows (1–{MAX_ROW_COUNT})\n"
        f"3. Which columns to fill (available: {shown}{more})\n\n"
        "You can answer all at once or one at a time."
    )


def question_for(phase: Phase, state: ConversationState) -> str:
    if phase == Phase.awaiting_description:
        return "What kind of records should I generate? (e.g. SaaS companies, manufacturers in Osaka)"
    if phase == Phase.awaiting_row_count:
        return f"How many rows should I generate? (1–{MAX_ROW_COUNT})"
    if phase == Phase.awaiting_columns:
        return (
            "Which columns should I fill in? "
            f"Available: {_column_labels(state, [c.name for c in state.columns])}"
        )
    return ""


def confirmation_message(state: ConversationState) -> str:
    lines = [
        "Please confirm the request:",
        "",
        f"Rows: {state.rowCount}",
        f"Columns: {_column_labels(state, state.targetColumns) or '(none)'}",
    ]
    if state.newColumns:
        lines.append(f"New columns: {', '.join(state.newColumns)}")
    lines.append(f"Data: {state.dataDescription}")
    if state.defaultedSlots:
        lines.append("")
        lines.append(f"Defaults were used for: {', '.join(state.defaultedSlots)}")
    lines.append("")
    lines.append("Reply \"yes\" to start, or tell me what to change.")
    return "\n".join(lines)


# --------------------------------------------------
# Slot handling
# --------------------------------------------------
def _accumulated_request(state: ConversationState) -> str:
    if len(state.messages) == 1:
        return state.messages[0]

    earlier = "\n".join(f"- {m}" for m in state.messages[:-1])
    return (
        f"Earlier messages (oldest first):\n{earlier}\n\n"
        f"Latest message (overrides earlier answers):\n{state.messages[-1]}"
    )


def _clear_default(state: ConversationState, slot: str):
    if slot in state.defaultedSlots:
        state.defaultedSlots.remove(slot)


def _apply_intent(state: ConversationState, intent: ParsedIntent):
    if not intent.isGenerationRequest:
        return

    wasEnrichment = state.targetSelectedRows
    state.targetSelectedRows = bool(intent.targetSelectedRows and state.selectedRowIds)

    if state.targetSelectedRows:
        state.rowCount = len(state.selectedRowIds)
        _clear_default(state, "rowCount")
    elif wasEnrichment:
        # switched back to generation: selection-derived slots no longer apply
        state.rowCount = intent.rowCount
        if state.dataDescription == ENRICHMENT_DESCRIPTION:
            state.dataDescription = None
    elif intent.rowCount is not None:
        state.rowCount = intent.rowCount
        _clear_default(state, "rowCount")

    if intent.dataDescription:
        state.dataDescription = intent.dataDescription
        _clear_default(state, "dataDescription")

    if intent.targetColumns or intent.newColumns:
        state.targetColumns = list(intent.targetColumns)
        state.newColumns = list(intent.newColumns)
        _clear_default(state, "targetColumns")


def _missing_slot(state: ConversationState, intent: Optional[ParsedIntent]) -> Optional[Phase]:
    if not state.dataDescription:
        if state.targetSelectedRows:
            state.dataDescription = ENRICHMENT_DESCRIPTION
        else:
            return Phase.awaiting_description

    if not row_count_in_range(state.rowCount):
        return Phase.awaiting_row_count

    if not state.targetColumns and not state.newColumns:
        asked = intent is not None and intent.isGenerationRequest and intent.clarificationNeeded
        if asked or state.phase == Phase.awaiting_columns:
            return Phase.awaiting_columns
        # request names no columns → fill all of them
        state.targetColumns = [c.name for c in state.columns]

    return None


def _apply_default(state: ConversationState, phase: Phase):
    if phase == Phase.awaiting_description:
        state.dataDescription = f"{state.tableName} records"
        state.defaultedSlots.append("dataDescription")
    elif phase == Phase.awaiting_row_count:
        state.rowCount = DEFAULT_ROW_COUNT
        state.defaultedSlots.append("rowCount")
    elif phase == Phase.awaiting_columns:
        state.targetColumns = [c.name for c in state.columns]
        state.defaultedSlots.append("targetColumns")

    logger.info(
        "Session %s: no answer for %s after %d turns → default applied",
        state.sessionId, phase.value, state.slotAttempts,
    )


def launch_params(state: ConversationState) -> LaunchParams:
    if state.targetSelectedRows:
        return LaunchParams(
            mode=JobKind.enrichment,
            dataDescription=state.dataDescription or ENRICHMENT_DESCRIPTION,
            rowCount=len(state.selectedRowIds),
            targetColumns=list(state.targetColumns),
            newColumns=list(state.newColumns),
            recordIds=list(state.selectedRowIds),
        )

    return LaunchParams(
        mode=JobKind.generation,
        dataDescription=state.dataDescription or "",
        rowCount=state.rowCount,
        targetColumns=list(state.targetColumns),
        newColumns=list(state.newColumns),
    )


def _ready(state: ConversationState) -> ConversationTurn:
    state.phase = Phase.ready
    state.slotAttempts = 0
    params = launch_params(state)

    if params.mode == JobKind.enrichment:
        reply = f"Great! Ready to enrich {len(params.recordIds)} selected records."
    else:
        reply = (
            f"Great! Ready to generate {params.rowCount} records of "
            f"{params.dataDescription}. Start the job when you're ready."
        )

    return ConversationTurn(
        sessionId=state.sessionId,
        state=state,
        reply=reply,
        isReadyToLaunch=True,
        launchParams=params,
    )


def _advance(state: ConversationState, intent: Optional[ParsedIntent], notice: str = "") -> ConversationTurn:
    previous = state.phase
    attempts = state.slotAttempts

    while True:
        missing = _missing_slot(state, intent)
        if missing is None:
            break

        if missing == previous:
            attempts += 1
        else:
            attempts = 0

        if attempts < MAX_SLOT_RETRIES:
            state.phase = missing
            state.slotAttempts = attempts
            clarification = intent.clarificationNeeded if intent else None
            reply = clarification or question_for(missing, state)
            if notice:
                reply = f"{notice}\n\n{reply}"
            return ConversationTurn(sessionId=state.sessionId, state=state, reply=reply)

        state.slotAttempts = attempts
        _apply_default(state, missing)
        previous = None
        intent = None

    state.slotAttempts = 0
    if state.defaultedSlots and not state.confirmed:
        state.phase = Phase.awaiting_confirmation
        return ConversationTurn(
            sessionId=state.sessionId,
            state=state,
            reply=confirmation_message(state),
        )

    return _ready(state)


# --------------------------------------------------
# Public API
# --------------------------------------------------
def start_conversation(
    *,
    tableId: str,
    tableName: str,
    columns: List[ColumnInfo],
    userId: Optional[str] = None,
    organizationId: Optional[str] = None,
    selectedRowIds: Optional[List[str]] = None,
    userInput: Optional[str] = None,
    model: Optional[ModelClient] = None,
) -> ConversationTurn:
    if not columns:
        raise ValidationError("columns must be a non-empty array")

    state = ConversationState(
        sessionId=f"session_{uuid.uuid4().hex[:12]}",
        tableId=tableId,
        tableName=tableName,
        userId=userId,
        organizationId=organizationId,
        columns=list(columns),
        selectedRowIds=list(selectedRowIds or []),
    )
    logger.info("Started conversation %s for table %s", state.sessionId, tableId)

    if userInput:
        return process_user_input(state.sessionId, userInput, state, model=model)

    return ConversationTurn(sessionId=state.sessionId, state=state, reply=greeting(state))


def process_user_input(
    sessionId: str,
    userInput: str,
    state: ConversationState,
    model: Optional[ModelClient] = None,
) -> ConversationTurn:
    """
    (state, userInput) → next turn. Never mutates the given state.
    """
    text = validate_user_input(userInput)
    if state.sessionId != sessionId:
        raise ValidationError("sessionId does not match the conversation state")

    state = state.model_copy(deep=True)
    # input after ready is a correction and re-runs extraction
    state.messages.append(text)

    if state.phase == Phase.awaiting_confirmation and is_confirmation(text):
        state.confirmed = True
        return _ready(state)

    state.confirmed = False
    intent = parse_intent(
        _accumulated_request(state),
        state.columns,
        selectedRowIds=state.selectedRowIds,
        model=model,
    )
    _apply_intent(state, intent)

    notice = ""
    if intent.isGenerationRequest and state.rowCount is not None \
            and not row_count_in_range(state.rowCount):
        notice = f"The row count must be between 1 and {MAX_ROW_COUNT} (got {state.rowCount})."
        state.rowCount = None
    elif not intent.isGenerationRequest and intent.clarificationNeeded:
        notice = intent.clarificationNeeded

    return _advance(state, intent if intent.isGenerationRequest else None, notice)
