"""Mail store models read and updated by the rules engine.

Ingestion writes these tables; the engine only reads them to build
evaluation contexts and updates thread placement/queue columns when an
action is applied.
"""

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailrules.models.base import Base, JSONType, TimestampMixin

INBOX_FOLDER_ID = 1
TRASH_FOLDER_ID = 3


class Folder(Base):
    __tablename__ = "folders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    imap_folder: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Folder {self.id} {self.name}>"


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class EmailThread(Base, TimestampMixin):
    __tablename__ = "email_threads"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    folder_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("folders.id"), nullable=True, index=True
    )
    # Folder to restore into when the thread leaves Trash
    previous_folder_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    trashed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # NULL = not queued, timestamp = when queued
    reply_later_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    set_aside_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    emails: Mapped[list["Email"]] = relationship("Email", back_populates="thread")


class Email(Base):
    __tablename__ = "emails"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("contacts.id"), nullable=True)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{"key": "List-Id", "value": "List-Id: <dev.example.org>"}, ...]
    headers: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trashed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    thread: Mapped[EmailThread] = relationship("EmailThread", back_populates="emails")
    sender: Mapped[Contact | None] = relationship("Contact")


class EmailContact(Base):
    """Recipient link between an email and a contact, by role (to/cc/bcc)."""

    __tablename__ = "email_contacts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("emails.id", ondelete="CASCADE"), nullable=False, index=True
    )
    contact_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("contacts.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(10), nullable=False)

    contact: Mapped[Contact] = relationship("Contact")


class Attachment(Base):
    __tablename__ = "attachments"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("emails.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename: Mapped[str | None] = mapped_column(String(1024), nullable=True)
