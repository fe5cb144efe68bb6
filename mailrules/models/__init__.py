"""mailrules database models."""

from mailrules.models.audit_log import AuditLog
from mailrules.models.mailbox import Attachment, Contact, Email, EmailContact, EmailThread, Folder
from mailrules.models.rule import Rule
from mailrules.models.rule_application import JobStatus, RuleApplication

__all__ = [
    "Rule",
    "RuleApplication",
    "JobStatus",
    "AuditLog",
    "Folder",
    "Contact",
    "EmailThread",
    "Email",
    "EmailContact",
    "Attachment",
]
