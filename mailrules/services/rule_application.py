"""Retroactive, resumable application of rules to existing threads.

A job walks every thread in scope in fixed-size pages. Between pages, and
after each progress write, it hands control back to the event loop with
``await asyncio.sleep(0)`` so request handling on the same loop is never
starved, however large the backlog. Progress (counts, per-rule breakdown
and the keyset cursor) is committed after every page; a job interrupted by
a restart is picked up again from its cursor at start-up.

Error policy:
- a thread whose context or action fails is logged, counted as processed
  and skipped;
- anything else (paging, progress writes, rule loading) fails the job and
  stops it. Actions already applied by earlier pages are kept.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailrules.config import Settings
from mailrules.metrics import (
    rule_application_items_failed_total,
    rule_application_items_processed_total,
    rule_application_jobs_finished_total,
    rule_application_jobs_started_total,
    rule_application_page_duration_seconds,
    rule_matches_total,
)
from mailrules.models.rule import Rule
from mailrules.models.rule_application import RuleApplication
from mailrules.services.job_store import SqlJobStore
from mailrules.services.mail_store import SqlMailStore
from mailrules.services.rule_actions import ActionApplier
from mailrules.services.rule_selector import (
    CompiledRule,
    RuleMatch,
    compile_rule,
    compile_rules,
    match_single_rule,
    select_rule,
)
from mailrules.services.rule_store import SqlRuleStore
from mailrules.services.rules_engine import InvalidConditionError, RuleEvaluationContext
from mailrules.services.storage import JobStore, MailStore, ThreadRef

logger = logging.getLogger(__name__)

Evaluator = Callable[[RuleEvaluationContext, ThreadRef], RuleMatch | None]


@dataclass
class JobProgress:
    processed_count: int = 0
    matched_count: int = 0
    # Only tracked for apply-all jobs
    match_breakdown: dict[str, int] | None = None
    cursor: int | None = None

    @classmethod
    def from_job(cls, job: RuleApplication) -> "JobProgress":
        return cls(
            processed_count=job.processed_count,
            matched_count=job.matched_count,
            match_breakdown=dict(job.match_breakdown or {}) if job.rule_id is None else None,
            cursor=job.cursor,
        )


@dataclass
class JobSpec:
    """Everything a background run needs, detached from any session."""

    job_id: uuid.UUID
    user_id: uuid.UUID
    folder_ids: Sequence[int] | None
    evaluate: Evaluator
    progress: JobProgress = field(default_factory=JobProgress)

    @property
    def mode(self) -> str:
        return "all" if self.progress.match_breakdown is not None else "single"


def single_rule_evaluator(rule: CompiledRule) -> Evaluator:
    """Test only this rule's conditions, regardless of priority."""

    def evaluate(ctx: RuleEvaluationContext, thread: ThreadRef) -> RuleMatch | None:
        return match_single_rule(rule, ctx)

    return evaluate


def all_rules_evaluator(rules: Sequence[CompiledRule]) -> Evaluator:
    """First-match-wins over the rule set, scoped to the thread's folder."""
    rules = list(rules)

    def evaluate(ctx: RuleEvaluationContext, thread: ThreadRef) -> RuleMatch | None:
        return select_rule(rules, ctx, folder_id=thread.folder_id)

    return evaluate


async def yield_to_event_loop() -> None:
    await asyncio.sleep(0)


async def _process_thread(
    thread: ThreadRef,
    spec: JobSpec,
    mail_store: MailStore,
    applier: ActionApplier,
) -> RuleMatch | None:
    ctx = await mail_store.build_thread_context(thread.id)
    if ctx is None:
        # Thread vanished between paging and processing
        logger.debug("Job %s: thread %s has no context, skipping", spec.job_id, thread.id)
        return None
    match = spec.evaluate(ctx, thread)
    if match is not None:
        await applier.apply(thread, match)
    return match


async def run_rule_application(
    spec: JobSpec,
    mail_store: MailStore,
    job_store: JobStore,
    page_size: int,
) -> JobProgress:
    """Drive one job to completion or failure.

    Returns the final progress. Never raises for job-level errors; those are
    recorded on the job record instead.
    """
    progress = spec.progress
    applier = ActionApplier(mail_store)
    mode = spec.mode

    try:
        while True:
            await yield_to_event_loop()

            page = await mail_store.page_threads(spec.user_id, spec.folder_ids, page_size, progress.cursor)
            if not page:
                break

            started = time.perf_counter()
            for thread in page:
                progress.processed_count += 1
                try:
                    match = await _process_thread(thread, spec, mail_store, applier)
                except Exception as e:
                    logger.warning("Job %s: skipping thread %s: %s", spec.job_id, thread.id, e)
                    rule_application_items_failed_total.labels(mode=mode).inc()
                    continue
                if match is None:
                    continue

                progress.matched_count += 1
                rule_matches_total.labels(mode=mode).inc()
                if progress.match_breakdown is not None:
                    key = str(match.rule_id)
                    progress.match_breakdown[key] = progress.match_breakdown.get(key, 0) + 1

            progress.cursor = page[-1].id
            rule_application_items_processed_total.labels(mode=mode).inc(len(page))
            rule_application_page_duration_seconds.observe(time.perf_counter() - started)

            await job_store.update_progress(
                spec.job_id,
                progress.processed_count,
                progress.matched_count,
                progress.match_breakdown,
                progress.cursor,
            )
            await yield_to_event_loop()

            if len(page) < page_size:
                break

        await job_store.complete(
            spec.job_id,
            progress.processed_count,
            progress.matched_count,
            progress.match_breakdown,
        )
    except Exception as e:
        logger.exception("Rule application %s failed", spec.job_id)
        rule_application_jobs_finished_total.labels(mode=mode, status="failed").inc()
        try:
            await job_store.fail(spec.job_id, str(e) or type(e).__name__)
        except Exception:
            logger.exception("Could not record failure of rule application %s", spec.job_id)
        return progress

    rule_application_jobs_finished_total.labels(mode=mode, status="completed").inc()
    logger.info(
        "Rule application %s completed: %d processed, %d matched",
        spec.job_id,
        progress.processed_count,
        progress.matched_count,
    )
    return progress


class RuleApplicationRunner:
    """Starts rule application jobs as background tasks on the running loop.

    Jobs share the loop with request handling; see ``run_rule_application``
    for the yielding contract. There is no way to cancel a running job.
    """

    def __init__(self, session_factory: async_sessionmaker, settings: Settings):
        self._session_factory = session_factory
        self._settings = settings
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def start_rule(self, rule: Rule) -> RuleApplication:
        """Create and launch a job applying one rule to its folders.

        Raises:
            InvalidConditionError: if the rule's conditions cannot be decoded.
        """
        compiled = compile_rule(rule)
        async with self._session_factory() as db:
            return await self._start(
                db,
                user_id=rule.user_id,
                rule_id=rule.id,
                folder_ids=list(rule.folder_ids or []),
                evaluate=single_rule_evaluator(compiled),
            )

    async def start_all(self, user_id: uuid.UUID, folder_ids: Sequence[int] | None) -> RuleApplication:
        """Create and launch a job running every enabled rule, first match wins."""
        async with self._session_factory() as db:
            rules = compile_rules(await SqlRuleStore(db).list_enabled(user_id))
            return await self._start(
                db,
                user_id=user_id,
                rule_id=None,
                folder_ids=list(folder_ids) if folder_ids else None,
                evaluate=all_rules_evaluator(rules),
            )

    async def _start(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        rule_id: uuid.UUID | None,
        folder_ids: Sequence[int] | None,
        evaluate: Evaluator,
    ) -> RuleApplication:
        total = await SqlMailStore(db).count_threads(user_id, folder_ids)
        job = await SqlJobStore(db).create(user_id, rule_id, folder_ids, total)
        await SqlRuleStore(db).write_audit_log(
            user_id,
            "rule.applied",
            "rule_application",
            str(job.id),
            {"rule_id": str(rule_id) if rule_id else None, "total_count": total},
        )
        # Committed before the run starts so its own session sees the row
        await db.commit()

        spec = JobSpec(
            job_id=job.id,
            user_id=user_id,
            folder_ids=folder_ids,
            evaluate=evaluate,
            progress=JobProgress(match_breakdown={} if rule_id is None else None),
        )
        rule_application_jobs_started_total.labels(mode=spec.mode, origin="request").inc()
        logger.info("Started rule application %s (mode=%s, total=%d)", job.id, spec.mode, total)
        self._spawn(spec)
        return job

    def _spawn(self, spec: JobSpec) -> asyncio.Task:
        task = asyncio.create_task(self._execute(spec), name=f"rule-application-{spec.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s crashed: %r", task.get_name(), task.exception())

    async def _execute(self, spec: JobSpec) -> None:
        async with self._session_factory() as db:
            await run_rule_application(
                spec,
                SqlMailStore(db),
                SqlJobStore(db),
                self._settings.rule_apply_page_size,
            )

    async def resume_interrupted(self) -> int:
        """Restart jobs left ``running`` by a previous process.

        Returns:
            Number of jobs resumed.
        """
        async with self._session_factory() as db:
            job_store = SqlJobStore(db)
            rule_store = SqlRuleStore(db)
            # Snapshot rows first: recording a failure rolls back and expires them
            pending = [
                (job.id, job.user_id, job.rule_id, job.folder_ids, JobProgress.from_job(job))
                for job in await job_store.list_running()
            ]
            specs = []
            for job_id, user_id, rule_id, folder_ids, progress in pending:
                try:
                    evaluate = await self._evaluator_for(rule_store, user_id, rule_id)
                except (LookupError, InvalidConditionError) as e:
                    logger.warning("Cannot resume rule application %s: %s", job_id, e)
                    await job_store.fail(job_id, str(e))
                    continue
                specs.append(
                    JobSpec(
                        job_id=job_id,
                        user_id=user_id,
                        folder_ids=folder_ids,
                        evaluate=evaluate,
                        progress=progress,
                    )
                )

        for spec in specs:
            rule_application_jobs_started_total.labels(mode=spec.mode, origin="resume").inc()
            logger.info("Resuming rule application %s from cursor %s", spec.job_id, spec.progress.cursor)
            self._spawn(spec)
        return len(specs)

    async def _evaluator_for(
        self, rule_store: SqlRuleStore, user_id: uuid.UUID, rule_id: uuid.UUID | None
    ) -> Evaluator:
        if rule_id is None:
            return all_rules_evaluator(compile_rules(await rule_store.list_enabled(user_id)))
        rule = await rule_store.get_by_id(rule_id)
        if rule is None:
            raise LookupError("Rule not found")
        return single_rule_evaluator(compile_rule(rule))

    async def wait_idle(self) -> None:
        """Wait for every job started by this runner to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
