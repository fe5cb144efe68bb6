"""Initial schema: mail store, rules, rule applications, audit log.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None

rule_application_status = postgresql.ENUM(
    "running", "completed", "failed", name="rule_application_status", create_type=False
)


def upgrade() -> None:
    # --- folders ---
    op.create_table(
        "folders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("imap_folder", sa.String(255), nullable=True),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
    )
    op.bulk_insert(
        sa.table("folders", sa.column("id", sa.Integer), sa.column("name", sa.String), sa.column("position", sa.Integer)),
        [
            {"id": 1, "name": "Inbox", "position": 0},
            {"id": 2, "name": "Sent", "position": 1},
            {"id": 3, "name": "Trash", "position": 2},
        ],
    )
    op.execute("SELECT setval('folders_id_seq', (SELECT MAX(id) FROM folders))")

    # --- contacts ---
    op.create_table(
        "contacts",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
    )
    op.create_index("ix_contacts_email", "contacts", ["email"])

    # --- email_threads ---
    op.create_table(
        "email_threads",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subject", sa.Text, nullable=False, server_default=""),
        sa.Column("folder_id", sa.Integer, sa.ForeignKey("folders.id"), nullable=True),
        sa.Column("previous_folder_id", sa.Integer, nullable=True),
        sa.Column("trashed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reply_later_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("set_aside_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_email_threads_user_id", "email_threads", ["user_id"])
    op.create_index("ix_email_threads_folder_id", "email_threads", ["folder_id"])

    # --- emails ---
    op.create_table(
        "emails",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("thread_id", sa.BigInteger, sa.ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_id", sa.BigInteger, sa.ForeignKey("contacts.id"), nullable=True),
        sa.Column("subject", sa.Text, nullable=False, server_default=""),
        sa.Column("content_text", sa.Text, nullable=True),
        sa.Column("headers", postgresql.JSONB, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trashed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_emails_thread_id", "emails", ["thread_id"])
    op.create_index("ix_emails_sent_at", "emails", ["sent_at"])

    # --- email_contacts ---
    op.create_table(
        "email_contacts",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("email_id", sa.BigInteger, sa.ForeignKey("emails.id", ondelete="CASCADE"), nullable=False),
        sa.Column("contact_id", sa.BigInteger, sa.ForeignKey("contacts.id"), nullable=False),
        sa.Column("role", sa.String(10), nullable=False),
    )
    op.create_index("ix_email_contacts_email_id", "email_contacts", ["email_id"])

    # --- attachments ---
    op.create_table(
        "attachments",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("email_id", sa.BigInteger, sa.ForeignKey("emails.id", ondelete="CASCADE"), nullable=False),
        sa.Column("filename", sa.String(1024), nullable=True),
    )
    op.create_index("ix_attachments_email_id", "attachments", ["email_id"])

    # --- rules ---
    op.create_table(
        "rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("conditions", postgresql.JSONB, nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("action_config", postgresql.JSONB, nullable=True),
        sa.Column("folder_ids", postgresql.JSONB, nullable=False, server_default=sa.text("'[1]'::jsonb")),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_rules_user_id", "rules", ["user_id"])
    op.create_index("ix_rules_enabled", "rules", ["enabled"])

    # --- rule_applications ---
    rule_application_status.create(op.get_bind(), checkfirst=True)
    op.create_table(
        "rule_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rules.id", ondelete="CASCADE"), nullable=True),
        sa.Column("status", rule_application_status, nullable=False, server_default="running"),
        sa.Column("folder_ids", postgresql.JSONB, nullable=True),
        sa.Column("total_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("matched_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("match_breakdown", postgresql.JSONB, nullable=True),
        sa.Column("cursor", sa.BigInteger, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_rule_applications_user_id", "rule_applications", ["user_id"])
    op.create_index("ix_rule_applications_rule_id", "rule_applications", ["rule_id"])
    op.create_index("ix_rule_applications_status", "rule_applications", ["status"])
    op.create_index("ix_rule_applications_created_at", "rule_applications", ["created_at"])

    # --- audit_log ---
    op.create_table(
        "audit_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("rule_applications")
    rule_application_status.drop(op.get_bind(), checkfirst=True)
    op.drop_table("rules")
    op.drop_table("attachments")
    op.drop_table("email_contacts")
    op.drop_table("emails")
    op.drop_table("email_threads")
    op.drop_table("contacts")
    op.drop_table("folders")
