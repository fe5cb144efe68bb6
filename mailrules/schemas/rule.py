"""Rule schemas."""

import json
import re
import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    StrictBool,
    StrictInt,
    Tag,
    field_validator,
    model_validator,
)

from mailrules.models.mailbox import INBOX_FOLDER_ID
from mailrules.services.rule_actions import ActionType
from mailrules.services.rules_engine import (
    HEADER_FIELD_PREFIX,
    IN_LIST,
    MEMBERSHIP_FIELDS,
    TEXT_FIELDS,
    normalize_match_type,
)

MatchType = Annotated[
    Literal["equals", "contains", "starts_with", "ends_with", "regex", "in_list"],
    BeforeValidator(lambda v: normalize_match_type(v) if isinstance(v, str) else v),
]


def _serialize_list(value: Any) -> Any:
    # Membership values may be sent as a real list; they are stored serialized
    if isinstance(value, list):
        return json.dumps(value)
    return value


class ConditionSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field: str = Field(..., min_length=1, max_length=255)
    match_type: MatchType = "contains"
    value: Annotated[str, BeforeValidator(_serialize_list)] = Field("", max_length=100_000)
    negate: StrictBool = False

    @field_validator("field")
    @classmethod
    def check_field(cls, v: str) -> str:
        if v in TEXT_FIELDS or v in MEMBERSHIP_FIELDS:
            return v
        if v.startswith(HEADER_FIELD_PREFIX) and v[len(HEADER_FIELD_PREFIX):].strip():
            return v
        raise ValueError(f"Unknown condition field: {v}")

    @model_validator(mode="after")
    def check_value(self) -> "ConditionSchema":
        if self.field in MEMBERSHIP_FIELDS:
            self.match_type = IN_LIST

        if self.match_type == IN_LIST:
            if self.field not in MEMBERSHIP_FIELDS:
                raise ValueError(f"in_list is only valid for membership fields, not {self.field}")
            try:
                items = json.loads(self.value)
            except ValueError as e:
                raise ValueError("in_list value must be a JSON array of strings") from e
            if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
                raise ValueError("in_list value must be a JSON array of strings")
        elif self.match_type == "regex":
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"Invalid regular expression: {e}") from e
        return self


def _node_kind(v: Any) -> str:
    if isinstance(v, dict):
        return "group" if "operator" in v else "condition"
    return "group" if isinstance(v, ConditionGroupSchema) else "condition"


class ConditionGroupSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operator: Literal["AND", "OR"]
    conditions: list[
        Annotated[
            Union[
                Annotated["ConditionGroupSchema", Tag("group")],
                Annotated[ConditionSchema, Tag("condition")],
            ],
            Discriminator(_node_kind),
        ]
    ] = Field(default_factory=list, max_length=200)


ConditionGroupSchema.model_rebuild()


class ActionConfigSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    folder_id: StrictInt | None = None


def validate_action_config(action_type: ActionType | None, config: ActionConfigSchema | None) -> None:
    if action_type == ActionType.MOVE_TO_FOLDER and (config is None or config.folder_id is None):
        raise ValueError("move_to_folder requires action_config.folder_id")


class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    conditions: ConditionGroupSchema
    action_type: ActionType
    action_config: ActionConfigSchema | None = None
    folder_ids: list[StrictInt] = Field(default_factory=lambda: [INBOX_FOLDER_ID])
    enabled: StrictBool = True

    @model_validator(mode="after")
    def check_action(self) -> "RuleCreate":
        validate_action_config(self.action_type, self.action_config)
        return self


class RuleUpdate(BaseModel):
    """Partial update; fields left out of the request body are unchanged."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    conditions: ConditionGroupSchema | None = None
    action_type: ActionType | None = None
    action_config: ActionConfigSchema | None = None
    folder_ids: list[StrictInt] | None = None
    enabled: StrictBool | None = None

    @model_validator(mode="after")
    def check_not_null(self) -> "RuleUpdate":
        for name in ("name", "conditions", "action_type", "folder_ids", "enabled"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, mode="json")


class RuleResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    conditions: dict[str, Any]
    action_type: str
    action_config: dict[str, Any] | None = None
    folder_ids: list[int]
    position: int
    enabled: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RulePosition(BaseModel):
    id: uuid.UUID
    position: StrictInt


class RuleReorderRequest(BaseModel):
    positions: list[RulePosition] = Field(..., max_length=1000)


class RuleReorderResponse(BaseModel):
    success: bool = True
    updated: int


class RulePreviewRequest(BaseModel):
    conditions: ConditionGroupSchema
    # null scans every folder
    folder_ids: list[StrictInt] | None = Field(default_factory=lambda: [INBOX_FOLDER_ID])


class RulePreviewMatch(BaseModel):
    id: int
    thread_id: int | None
    subject: str
    sender_name: str | None
    sender_email: str
    sent_at: datetime | None

    model_config = {"from_attributes": True}


class RulePreviewResponse(BaseModel):
    matches: list[RulePreviewMatch]
    scanned_count: int
    match_count: int


class AddSenderRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must be an e-mail address")
        return v


class AddSenderResponse(BaseModel):
    success: bool = True
    email_count: int
