"""Storage interfaces the rules engine consumes.

The engine never queries tables directly; it goes through these protocols.
SQLAlchemy implementations live in ``mail_store``, ``job_store`` and
``rule_store``; tests substitute in-memory fakes.

Thread paging contract: ``page_threads`` is keyset-paginated by thread id
(``id > after_id`` ascending). Threads an action moves out of scope while a
job runs are therefore never skipped, and no thread is visited twice in one
run. Threads created after the job started are picked up if their id sorts
after the cursor; ``total_count`` is not re-validated, so the final
``processed_count`` may differ from it when the scope changes mid-run.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, Sequence

from mailrules.services.rules_engine import RuleEvaluationContext


@dataclass(frozen=True)
class ThreadRef:
    id: int
    folder_id: int | None


@dataclass(frozen=True)
class MessageRef:
    """One email as returned by preview paging, with display fields."""

    id: int
    thread_id: int | None
    subject: str
    sender_name: str | None
    sender_email: str
    sent_at: datetime | None


class MailStore(Protocol):
    async def count_threads(self, user_id: uuid.UUID, folder_ids: Sequence[int] | None) -> int: ...

    async def page_threads(
        self,
        user_id: uuid.UUID,
        folder_ids: Sequence[int] | None,
        limit: int,
        after_id: int | None,
    ) -> list[ThreadRef]: ...

    async def build_thread_context(self, thread_id: int) -> RuleEvaluationContext | None: ...

    async def page_messages(
        self,
        user_id: uuid.UUID,
        folder_ids: Sequence[int] | None,
        limit: int,
        offset: int,
    ) -> list[MessageRef]: ...

    async def build_message_context(self, message: MessageRef) -> RuleEvaluationContext | None: ...

    async def apply_action(
        self, thread_id: int, action_type: str, action_config: dict[str, Any] | None
    ) -> None: ...


class JobStore(Protocol):
    async def create(
        self,
        user_id: uuid.UUID,
        rule_id: uuid.UUID | None,
        folder_ids: Sequence[int] | None,
        total_count: int,
    ) -> Any: ...

    async def update_progress(
        self,
        job_id: uuid.UUID,
        processed_count: int,
        matched_count: int,
        match_breakdown: dict[str, int] | None,
        cursor: int | None,
    ) -> None: ...

    async def complete(
        self,
        job_id: uuid.UUID,
        processed_count: int,
        matched_count: int,
        match_breakdown: dict[str, int] | None,
    ) -> None: ...

    async def fail(self, job_id: uuid.UUID, error: str) -> None: ...

    async def get_by_id(self, job_id: uuid.UUID, user_id: uuid.UUID | None = None) -> Any | None: ...

    async def list_recent(self, user_id: uuid.UUID, limit: int) -> list[Any]: ...

    async def list_running(self) -> list[Any]: ...


class RuleStore(Protocol):
    async def list_rules(self, user_id: uuid.UUID) -> list[Any]: ...

    async def list_enabled(self, user_id: uuid.UUID) -> list[Any]: ...

    async def get_by_id(self, rule_id: uuid.UUID, user_id: uuid.UUID | None = None) -> Any | None: ...

    async def get_names(self, rule_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, str]: ...

    async def create(self, user_id: uuid.UUID, values: dict[str, Any]) -> Any: ...

    async def update(self, rule: Any, changes: dict[str, Any]) -> Any: ...

    async def delete(self, rule: Any) -> None: ...

    async def reorder(self, user_id: uuid.UUID, positions: Sequence[tuple[uuid.UUID, int]]) -> int: ...
