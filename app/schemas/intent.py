# app/schemas/intent.py
from typing import List, Optional

from pydantic import BaseModel, Field


class IntentModelOutput(BaseModel):
    """
    Response schema the model must satisfy.
    Anything that does not validate against it is a model error.
    """

    is_generation_request: bool
    row_count: Optional[int] = None
    data_description: Optional[str] = None
    target_columns: List[str] = Field(default_factory=list)
    new_columns: List[str] = Field(default_factory=list)
    target_selected_rows: bool = False
    clarification_needed: Optional[str] = None


class ParsedIntent(BaseModel):
    isGenerationRequest: bool
    rowCount: Optional[int] = None
    dataDescription: Optional[str] = None
    targetColumns: List[str] = Field(default_factory=list)
    newColumns: List[str] = Field(default_factory=list)
    targetSelectedRows: bool = False
    clarificationNeeded: Optional[str] = None


class IntentRequest(BaseModel):
    message: str
    tableId: str
    selectedRowIds: Optional[List[str]] = None
