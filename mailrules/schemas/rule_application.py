"""Rule application (retroactive run) schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, StrictInt

ALL_RULES_NAME = "All Rules"


class ApplyAllRequest(BaseModel):
    # Empty or missing means every folder
    folder_ids: list[StrictInt] | None = Field(None, max_length=1000)


class RuleApplicationStarted(BaseModel):
    id: uuid.UUID
    status: str
    total_count: int


class RuleApplicationResponse(BaseModel):
    id: uuid.UUID
    rule_id: uuid.UUID | None
    rule_name: str | None
    status: str
    total_count: int
    processed_count: int
    matched_count: int
    match_breakdown: dict[str, int] | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


class RuleApplicationList(BaseModel):
    applications: list[RuleApplicationResponse]
