# app/schemas/conversation.py
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.job import LaunchParams
from app.schemas.records import ColumnInfo


class ConversationPhase(str, Enum):
    awaiting_description = "awaiting_description"
    awaiting_row_count = "awaiting_row_count"
    awaiting_columns = "awaiting_columns"
    awaiting_confirmation = "awaiting_confirmation"
    ready = "ready"


class ConversationState(BaseModel):
    """
    Echoed back and forth by the client every turn.
    The server keeps no copy.
    """

    sessionId: str
    tableId: str
    tableName: str
    userId: Optional[str] = None
    organizationId: Optional[str] = None
    columns: List[ColumnInfo] = Field(default_factory=list)
    selectedRowIds: List[str] = Field(default_factory=list)

    # user turns only, oldest first
    messages: List[str] = Field(default_factory=list)

    # -------------------------
    # Slots
    # -------------------------
    dataDescription: Optional[str] = None
    rowCount: Optional[int] = None
    targetColumns: List[str] = Field(default_factory=list)
    newColumns: List[str] = Field(default_factory=list)
    targetSelectedRows: bool = False
    confirmed: bool = False

    # -------------------------
    # Bookkeeping
    # -------------------------
    phase: ConversationPhase = ConversationPhase.awaiting_description
    # consecutive turns spent on `phase`
    slotAttempts: int = 0
    defaultedSlots: List[str] = Field(default_factory=list)


class StartConversationRequest(BaseModel):
    tableId: str
    tableName: str
    columns: List[ColumnInfo]
    selectedRowIds: Optional[List[str]] = None
    userInput: Optional[str] = Field(
        None,
        description="Optional opening message; parsed immediately"
    )


class ProcessInputRequest(BaseModel):
    userInput: str
    state: ConversationState


class ConversationTurn(BaseModel):
    sessionId: str
    state: ConversationState
    reply: str
    isReadyToLaunch: bool = False
    launchParams: Optional[LaunchParams] = None

    def summary(self) -> Dict[str, object]:
        return {
            "sessionId": self.sessionId,
            "phase": self.state.phase.value,
            "ready": self.isReadyToLaunch,
        }
