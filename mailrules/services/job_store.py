"""Persistence of rule application job records."""

import uuid
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailrules.models.base import utcnow
from mailrules.models.rule_application import JobStatus, RuleApplication


class SqlJobStore:
    """Job records are committed on every write so concurrent status reads
    (separate sessions) see progress as it happens."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: uuid.UUID,
        rule_id: uuid.UUID | None,
        folder_ids: Sequence[int] | None,
        total_count: int,
    ) -> RuleApplication:
        now = utcnow()
        job = RuleApplication(
            user_id=user_id,
            rule_id=rule_id,
            status=JobStatus.RUNNING,
            folder_ids=list(folder_ids) if folder_ids is not None else None,
            total_count=total_count,
            processed_count=0,
            matched_count=0,
            match_breakdown={} if rule_id is None else None,
            started_at=now,
            created_at=now,
        )
        self.db.add(job)
        await self.db.flush()
        return job

    async def update_progress(
        self,
        job_id: uuid.UUID,
        processed_count: int,
        matched_count: int,
        match_breakdown: dict[str, int] | None,
        cursor: int | None,
    ) -> None:
        await self.db.execute(
            update(RuleApplication)
            .where(RuleApplication.id == job_id)
            .values(
                processed_count=processed_count,
                matched_count=matched_count,
                match_breakdown=dict(match_breakdown) if match_breakdown is not None else None,
                cursor=cursor,
            )
        )
        await self.db.commit()

    async def complete(
        self,
        job_id: uuid.UUID,
        processed_count: int,
        matched_count: int,
        match_breakdown: dict[str, int] | None,
    ) -> None:
        await self.db.execute(
            update(RuleApplication)
            .where(RuleApplication.id == job_id, RuleApplication.status == JobStatus.RUNNING)
            .values(
                status=JobStatus.COMPLETED,
                processed_count=processed_count,
                matched_count=matched_count,
                match_breakdown=dict(match_breakdown) if match_breakdown is not None else None,
                completed_at=utcnow(),
            )
        )
        await self.db.commit()

    async def fail(self, job_id: uuid.UUID, error: str) -> None:
        # Drop whatever half-finished work the failing page left behind;
        # pages committed earlier stay applied.
        await self.db.rollback()
        await self.db.execute(
            update(RuleApplication)
            .where(RuleApplication.id == job_id, RuleApplication.status == JobStatus.RUNNING)
            .values(status=JobStatus.FAILED, error=error or "Unknown error", completed_at=utcnow())
        )
        await self.db.commit()

    async def get_by_id(
        self, job_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> RuleApplication | None:
        query = select(RuleApplication).where(RuleApplication.id == job_id)
        if user_id is not None:
            query = query.where(RuleApplication.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_recent(self, user_id: uuid.UUID, limit: int) -> list[RuleApplication]:
        result = await self.db.execute(
            select(RuleApplication)
            .where(RuleApplication.user_id == user_id)
            .order_by(RuleApplication.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_running(self) -> list[RuleApplication]:
        result = await self.db.execute(
            select(RuleApplication)
            .where(RuleApplication.status == JobStatus.RUNNING)
            .order_by(RuleApplication.created_at)
        )
        return list(result.scalars().all())

    async def delete_finished_before(self, cutoff: datetime) -> int:
        result = await self.db.execute(
            delete(RuleApplication).where(
                RuleApplication.status != JobStatus.RUNNING,
                RuleApplication.created_at < cutoff,
            )
        )
        return result.rowcount


def retention_cutoff(retention_days: int) -> datetime:
    return utcnow() - timedelta(days=retention_days)
