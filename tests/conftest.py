"""Shared test fixtures: in-memory stand-ins for the storage protocols."""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Sequence

import pytest

from mailrules.models.mailbox import INBOX_FOLDER_ID, TRASH_FOLDER_ID
from mailrules.models.rule_application import JobStatus
from mailrules.services.rules_engine import RuleEvaluationContext
from mailrules.services.storage import MessageRef, ThreadRef

BASE_TIME = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


class FakeMailStore:
    """Threads and messages held in memory.

    ``apply_action`` mutates thread placement the way the SQL store does, so
    jobs see threads move between folders mid-run.
    """

    def __init__(self):
        self.threads: dict[int, dict[str, Any]] = {}
        self.messages: list[tuple[MessageRef, int | None, RuleEvaluationContext | None]] = []
        self.actions: list[tuple[int, str, dict | None]] = []
        self.page_calls = 0
        self.fail_on_page: int | None = None
        self.broken_threads: set[int] = set()
        self.broken_messages: set[int] = set()
        self.vanished_threads: set[int] = set()

    def add_thread(self, thread_id: int, ctx: RuleEvaluationContext, folder_id: int | None = INBOX_FOLDER_ID):
        self.threads[thread_id] = {
            "folder_id": folder_id,
            "ctx": ctx,
            "read": False,
            "reply_later": False,
            "set_aside": False,
            "previous_folder_id": None,
        }

    def add_message(
        self,
        message_id: int,
        ctx: RuleEvaluationContext | None,
        folder_id: int | None = INBOX_FOLDER_ID,
        subject: str = "",
        sender_email: str = "someone@example.com",
    ) -> MessageRef:
        ref = MessageRef(
            id=message_id,
            thread_id=message_id,
            subject=subject,
            sender_name=None,
            sender_email=sender_email,
            sent_at=BASE_TIME - timedelta(minutes=message_id),
        )
        self.messages.append((ref, folder_id, ctx))
        return ref

    def _in_scope(self, folder_id: int | None, folder_ids: Sequence[int] | None) -> bool:
        return folder_ids is None or folder_id in folder_ids

    async def count_threads(self, user_id, folder_ids):
        return sum(1 for t in self.threads.values() if self._in_scope(t["folder_id"], folder_ids))

    async def page_threads(self, user_id, folder_ids, limit, after_id):
        self.page_calls += 1
        if self.fail_on_page is not None and self.page_calls >= self.fail_on_page:
            raise ConnectionError("database went away")
        refs = [
            ThreadRef(id=tid, folder_id=t["folder_id"])
            for tid, t in sorted(self.threads.items())
            if self._in_scope(t["folder_id"], folder_ids) and (after_id is None or tid > after_id)
        ]
        return refs[:limit]

    async def build_thread_context(self, thread_id):
        if thread_id in self.broken_threads:
            raise ValueError(f"corrupt thread {thread_id}")
        if thread_id in self.vanished_threads or thread_id not in self.threads:
            return None
        return self.threads[thread_id]["ctx"]

    async def page_messages(self, user_id, folder_ids, limit, offset):
        refs = [ref for ref, folder_id, _ in self.messages if self._in_scope(folder_id, folder_ids)]
        return refs[offset:offset + limit]

    async def build_message_context(self, message):
        if message.id in self.broken_messages:
            raise ValueError(f"corrupt message {message.id}")
        for ref, _, ctx in self.messages:
            if ref.id == message.id:
                return ctx
        return None

    async def apply_action(self, thread_id, action_type, action_config):
        self.actions.append((thread_id, action_type, action_config))
        thread = self.threads[thread_id]
        if action_type == "move_to_folder":
            thread["folder_id"] = action_config["folder_id"]
        elif action_type == "delete_thread":
            if thread["folder_id"] != TRASH_FOLDER_ID:
                thread["previous_folder_id"] = thread["folder_id"]
                thread["folder_id"] = TRASH_FOLDER_ID
        elif action_type == "mark_read":
            thread["read"] = True
        elif action_type == "add_to_reply_later":
            thread["reply_later"] = True
        elif action_type == "add_to_set_aside":
            thread["set_aside"] = True
        else:
            raise ValueError(f"Unknown action type: {action_type}")


class FakeJobStore:
    """Job records as namespaces; every progress write is recorded."""

    def __init__(self):
        self.jobs: dict[uuid.UUID, SimpleNamespace] = {}
        self.progress_updates: list[dict[str, Any]] = []
        self.fail_progress = False

    async def create(self, user_id, rule_id, folder_ids, total_count):
        job = SimpleNamespace(
            id=uuid.uuid4(),
            user_id=user_id,
            rule_id=rule_id,
            status=JobStatus.RUNNING,
            folder_ids=list(folder_ids) if folder_ids is not None else None,
            total_count=total_count,
            processed_count=0,
            matched_count=0,
            match_breakdown={} if rule_id is None else None,
            cursor=None,
            error=None,
            started_at=BASE_TIME,
            completed_at=None,
            created_at=BASE_TIME + timedelta(seconds=len(self.jobs)),
        )
        self.jobs[job.id] = job
        return job

    async def update_progress(self, job_id, processed_count, matched_count, match_breakdown, cursor):
        if self.fail_progress:
            raise ConnectionError("progress write failed")
        job = self.jobs[job_id]
        job.processed_count = processed_count
        job.matched_count = matched_count
        job.match_breakdown = dict(match_breakdown) if match_breakdown is not None else None
        job.cursor = cursor
        self.progress_updates.append(
            {
                "processed_count": processed_count,
                "matched_count": matched_count,
                "match_breakdown": job.match_breakdown,
                "cursor": cursor,
            }
        )

    async def complete(self, job_id, processed_count, matched_count, match_breakdown):
        job = self.jobs[job_id]
        if job.status != JobStatus.RUNNING:
            return
        job.status = JobStatus.COMPLETED
        job.processed_count = processed_count
        job.matched_count = matched_count
        job.match_breakdown = dict(match_breakdown) if match_breakdown is not None else None
        job.completed_at = BASE_TIME + timedelta(minutes=5)

    async def fail(self, job_id, error):
        job = self.jobs[job_id]
        if job.status != JobStatus.RUNNING:
            return
        job.status = JobStatus.FAILED
        job.error = error
        job.completed_at = BASE_TIME + timedelta(minutes=5)

    async def get_by_id(self, job_id, user_id=None):
        job = self.jobs.get(job_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            return None
        return job

    async def list_recent(self, user_id, limit):
        jobs = [j for j in self.jobs.values() if j.user_id == user_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)[:limit]

    async def list_running(self):
        return [j for j in self.jobs.values() if j.status == JobStatus.RUNNING]


class FakeRuleStore:
    def __init__(self):
        self.rules: list[SimpleNamespace] = []
        self.audit: list[tuple[str, str | None]] = []

    def add(self, rule: SimpleNamespace) -> SimpleNamespace:
        self.rules.append(rule)
        return rule

    async def write_audit_log(self, user_id, action, entity_type, entity_id=None, metadata=None):
        self.audit.append((action, entity_id))

    async def list_rules(self, user_id):
        owned = [r for r in self.rules if r.user_id == user_id]
        return sorted(owned, key=lambda r: (r.position, r.created_at))

    async def list_enabled(self, user_id):
        return [r for r in self.rules if r.user_id == user_id and r.enabled]

    async def get_by_id(self, rule_id, user_id=None):
        for rule in self.rules:
            if rule.id == rule_id and (user_id is None or rule.user_id == user_id):
                return rule
        return None

    async def get_names(self, rule_ids):
        return {r.id: r.name for r in self.rules if r.id in set(rule_ids)}

    async def create(self, user_id, values):
        position = max((r.position for r in self.rules if r.user_id == user_id), default=0) + 1
        rule = make_rule(user_id=user_id, position=position, **values)
        self.rules.append(rule)
        self.audit.append(("rule.created", str(rule.id)))
        return rule

    async def update(self, rule, changes):
        for key, value in changes.items():
            setattr(rule, key, value)
        rule.updated_at = BASE_TIME + timedelta(hours=1)
        self.audit.append(("rule.updated", str(rule.id)))
        return rule

    async def delete(self, rule):
        self.rules.remove(rule)
        self.audit.append(("rule.deleted", str(rule.id)))

    async def reorder(self, user_id, positions):
        updated = 0
        for rule_id, position in positions:
            rule = await self.get_by_id(rule_id, user_id)
            if rule is None:
                continue
            rule.position = position
            updated += 1
        self.audit.append(("rule.reordered", None))
        return updated


def make_rule(
    name: str = "Rule",
    conditions: dict | None = None,
    action_type: str = "mark_read",
    action_config: dict | None = None,
    folder_ids: list[int] | None = None,
    position: int = 1,
    enabled: bool = True,
    user_id: uuid.UUID | None = None,
    **extra,
) -> SimpleNamespace:
    """A stand-in for a stored ``Rule`` row."""
    return SimpleNamespace(
        id=extra.pop("id", None) or uuid.uuid4(),
        user_id=user_id or uuid.UUID("12345678-1234-1234-1234-123456789abc"),
        name=name,
        description=extra.pop("description", None),
        conditions=conditions if conditions is not None else {"operator": "AND", "conditions": []},
        action_type=action_type,
        action_config=action_config,
        folder_ids=folder_ids if folder_ids is not None else [INBOX_FOLDER_ID],
        position=position,
        enabled=enabled,
        created_at=extra.pop("created_at", BASE_TIME),
        updated_at=extra.pop("updated_at", BASE_TIME),
    )


def leaf(field: str, value: str = "", match_type: str = "contains", negate: bool = False) -> dict:
    return {"field": field, "match_type": match_type, "value": value, "negate": negate}


@pytest.fixture
def sample_user_id() -> uuid.UUID:
    return uuid.UUID("12345678-1234-1234-1234-123456789abc")


@pytest.fixture
def mail_store() -> FakeMailStore:
    return FakeMailStore()


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def rule_store() -> FakeRuleStore:
    return FakeRuleStore()


@pytest.fixture
def rule_factory():
    return make_rule


@pytest.fixture
def condition():
    """Build one leaf condition dict."""
    return leaf


@pytest.fixture
def github_context() -> RuleEvaluationContext:
    return RuleEvaluationContext(
        email_subject="[org/repo] New issue opened",
        thread_subject="[org/repo] New issue opened",
        content="Someone opened an issue.",
        sender_email="notifications@github.com",
        sender_name="GitHub",
        to_emails=("me@example.com",),
        to_names=("Me",),
        headers=(("List-Id", "<repo.org.github.com>"),),
    )
