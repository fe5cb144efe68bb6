"""Rule model for user-authored classification rules."""

import uuid

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from mailrules.models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin
from mailrules.models.mailbox import INBOX_FOLDER_ID


class Rule(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "rules"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Condition tree stored as JSON:
    # {
    #   "operator": "AND" | "OR",
    #   "conditions": [
    #     {"field": "sender_email", "match_type": "ends_with", "value": "@github.com", "negate": false},
    #     {"field": "sender_in_contacts", "match_type": "in_list", "value": "[\"a@x.com\"]"},
    #     {"operator": "OR", "conditions": [...]}
    #   ]
    # }
    conditions: Mapped[dict] = mapped_column(JSONType, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_config: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    # Folders the rule is scoped to (preview, apply, apply-all)
    folder_ids: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=lambda: [INBOX_FOLDER_ID])
    # Lower runs first; gaps and duplicates are allowed
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Rule {self.name} position={self.position} user_id={self.user_id}>"
