"""Rule application job model for retroactive rule runs."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from mailrules.models.base import Base, JSONType, UUIDPrimaryKeyMixin, utcnow


class JobStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RuleApplication(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "rule_applications"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    # NULL means "apply all enabled rules"
    rule_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("rules.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="rule_application_status", values_callable=lambda e: [m.value for m in e]),
        default=JobStatus.RUNNING,
        nullable=False,
        index=True,
    )
    # NULL means every folder
    folder_ids: Mapped[list[int] | None] = mapped_column(JSONType, nullable=True)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # {rule_id: count}, apply-all jobs only
    match_breakdown: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    # Last processed thread id; resume point after a restart
    cursor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default="now()",
        nullable=False,
        index=True,
    )

    @property
    def is_apply_all(self) -> bool:
        return self.rule_id is None

    def __repr__(self) -> str:
        return f"<RuleApplication {self.id} status={self.status.value} {self.processed_count}/{self.total_count}>"
