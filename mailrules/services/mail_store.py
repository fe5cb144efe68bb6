"""SQLAlchemy implementation of the mail store interface used by rules."""

import logging
import uuid
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailrules.models.base import utcnow
from mailrules.models.mailbox import (
    TRASH_FOLDER_ID,
    Attachment,
    Contact,
    Email,
    EmailContact,
    EmailThread,
)
from mailrules.services.rules_engine import RuleEvaluationContext
from mailrules.services.storage import MessageRef, ThreadRef

logger = logging.getLogger(__name__)


def parse_headers(raw: list | None) -> tuple[tuple[str, str], ...]:
    """Normalize stored headers to (name, value) pairs.

    Stored values may carry the raw "Name: value" line; the name prefix is
    stripped so conditions match on the value alone.
    """
    pairs = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        key = str(item.get("key") or "")
        value = str(item.get("value") or "")
        prefix = f"{key}:"
        if key and value[: len(prefix)].lower() == prefix.lower():
            value = value[len(prefix):]
        pairs.append((key, value.strip()))
    return tuple(pairs)


class SqlMailStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _scope(self, query, user_id: uuid.UUID, folder_ids: Sequence[int] | None):
        query = query.where(EmailThread.user_id == user_id)
        if folder_ids is not None:
            query = query.where(EmailThread.folder_id.in_(list(folder_ids)))
        return query

    async def count_threads(self, user_id: uuid.UUID, folder_ids: Sequence[int] | None) -> int:
        query = self._scope(select(func.count(EmailThread.id)), user_id, folder_ids)
        result = await self.db.execute(query)
        return result.scalar_one() or 0

    async def page_threads(
        self,
        user_id: uuid.UUID,
        folder_ids: Sequence[int] | None,
        limit: int,
        after_id: int | None,
    ) -> list[ThreadRef]:
        query = self._scope(select(EmailThread.id, EmailThread.folder_id), user_id, folder_ids)
        if after_id is not None:
            query = query.where(EmailThread.id > after_id)
        result = await self.db.execute(query.order_by(EmailThread.id).limit(limit))
        return [ThreadRef(id=row.id, folder_id=row.folder_id) for row in result.all()]

    async def build_thread_context(self, thread_id: int) -> RuleEvaluationContext | None:
        """Context from the thread's first (oldest) email.

        The lookups run in a savepoint, so a failing thread does not abort the
        transaction the rest of the job runs in.
        """
        async with self.db.begin_nested():
            result = await self.db.execute(
                select(Email.id)
                .where(Email.thread_id == thread_id)
                .order_by(Email.sent_at.asc().nulls_last(), Email.id.asc())
                .limit(1)
            )
            first_email_id = result.scalar_one_or_none()
            if first_email_id is None:
                return None
            return await self._build_email_context(first_email_id)

    async def page_messages(
        self,
        user_id: uuid.UUID,
        folder_ids: Sequence[int] | None,
        limit: int,
        offset: int,
    ) -> list[MessageRef]:
        query = (
            select(
                Email.id,
                Email.thread_id,
                Email.subject,
                Email.sent_at,
                Contact.email.label("sender_email"),
                Contact.name.label("sender_name"),
            )
            .join(EmailThread, Email.thread_id == EmailThread.id)
            .outerjoin(Contact, Email.sender_id == Contact.id)
            .where(Email.trashed_at.is_(None))
        )
        query = self._scope(query, user_id, folder_ids)
        query = query.order_by(Email.sent_at.desc().nulls_last(), Email.id.desc()).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return [
            MessageRef(
                id=row.id,
                thread_id=row.thread_id,
                subject=row.subject or "",
                sender_name=row.sender_name,
                sender_email=row.sender_email or "",
                sent_at=row.sent_at,
            )
            for row in result.all()
        ]

    async def build_message_context(self, message: MessageRef) -> RuleEvaluationContext | None:
        async with self.db.begin_nested():
            return await self._build_email_context(message.id)

    async def _build_email_context(self, email_id: int) -> RuleEvaluationContext | None:
        result = await self.db.execute(
            select(Email, EmailThread.subject.label("thread_subject"), Contact)
            .join(EmailThread, Email.thread_id == EmailThread.id)
            .outerjoin(Contact, Email.sender_id == Contact.id)
            .where(Email.id == email_id)
        )
        row = result.first()
        if row is None:
            return None
        email, thread_subject, sender = row

        recipients = await self.db.execute(
            select(EmailContact.role, Contact.email, Contact.name)
            .join(Contact, EmailContact.contact_id == Contact.id)
            .where(EmailContact.email_id == email_id)
            .order_by(EmailContact.id)
        )
        by_role: dict[str, list[tuple[str, str]]] = {"to": [], "cc": [], "bcc": []}
        for role, addr, name in recipients.all():
            if role in by_role:
                by_role[role].append((addr or "", name or ""))

        attachments = await self.db.execute(
            select(Attachment.filename).where(Attachment.email_id == email_id).order_by(Attachment.id)
        )

        return RuleEvaluationContext(
            email_subject=email.subject or "",
            thread_subject=thread_subject or email.subject or "",
            content=email.content_text or "",
            sender_email=sender.email if sender else "",
            sender_name=(sender.name or "") if sender else "",
            to_emails=tuple(a for a, _ in by_role["to"]),
            to_names=tuple(n for _, n in by_role["to"]),
            cc_emails=tuple(a for a, _ in by_role["cc"]),
            cc_names=tuple(n for _, n in by_role["cc"]),
            bcc_emails=tuple(a for a, _ in by_role["bcc"]),
            bcc_names=tuple(n for _, n in by_role["bcc"]),
            attachment_filenames=tuple(f or "" for f in attachments.scalars().all()),
            headers=parse_headers(email.headers),
        )

    async def apply_action(
        self, thread_id: int, action_type: str, action_config: dict[str, Any] | None
    ) -> None:
        """Apply one action inside a savepoint so a failure leaves the job's
        session usable. Each statement only touches rows not already in the
        target state, which makes re-application a no-op."""
        now = utcnow()
        config = action_config or {}

        if action_type == "move_to_folder":
            stmt = (
                update(EmailThread)
                .where(
                    EmailThread.id == thread_id,
                    EmailThread.folder_id.is_distinct_from(config["folder_id"]),
                )
                .values(folder_id=config["folder_id"], updated_at=now)
            )
        elif action_type in ("delete_thread", "delete_email"):
            stmt = (
                update(EmailThread)
                .where(
                    EmailThread.id == thread_id,
                    EmailThread.folder_id.is_distinct_from(TRASH_FOLDER_ID),
                )
                .values(
                    previous_folder_id=EmailThread.folder_id,
                    folder_id=TRASH_FOLDER_ID,
                    trashed_at=now,
                    updated_at=now,
                )
            )
        elif action_type == "mark_read":
            stmt = (
                update(Email)
                .where(Email.thread_id == thread_id, Email.read_at.is_(None))
                .values(read_at=now)
            )
        elif action_type == "add_to_reply_later":
            stmt = (
                update(EmailThread)
                .where(EmailThread.id == thread_id, EmailThread.reply_later_at.is_(None))
                .values(reply_later_at=now, updated_at=now)
            )
        elif action_type == "add_to_set_aside":
            stmt = (
                update(EmailThread)
                .where(EmailThread.id == thread_id, EmailThread.set_aside_at.is_(None))
                .values(set_aside_at=now, updated_at=now)
            )
        else:
            raise ValueError(f"Unsupported action type: {action_type}")

        async with self.db.begin_nested():
            result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        logger.debug("Applied %s to thread %s (%d rows)", action_type, thread_id, result.rowcount)
