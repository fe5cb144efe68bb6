"""Celery tasks for rule application history retention."""

import asyncio
import logging

from celery import shared_task
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from mailrules.config import get_settings
from mailrules.metrics import rule_applications_pruned_total
from mailrules.services.job_store import SqlJobStore, retention_cutoff

logger = logging.getLogger(__name__)


async def prune_rule_applications(session_factory: async_sessionmaker, retention_days: int) -> int:
    """Delete finished job records created before the retention window.

    Running jobs are never touched, however old.
    """
    cutoff = retention_cutoff(retention_days)
    async with session_factory() as db:
        try:
            deleted = await SqlJobStore(db).delete_finished_before(cutoff)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    rule_applications_pruned_total.inc(deleted)
    logger.info("Pruned %d rule application record(s) older than %s", deleted, cutoff.isoformat())
    return deleted


@shared_task(name="mailrules.tasks.retention_tasks.cleanup_old_rule_applications")
def cleanup_old_rule_applications():
    """Daily prune of rule application history."""
    settings = get_settings()

    async def _run() -> int:
        engine = create_async_engine(settings.database_url, echo=False)
        try:
            return await prune_rule_applications(
                async_sessionmaker(engine, expire_on_commit=False),
                settings.rule_application_retention_days,
            )
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_run())
    except Exception as e:
        logger.error("Rule application retention cleanup failed: %s", e)
        raise
