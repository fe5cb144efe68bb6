"""Persistence of rules, with an audit trail for every mutation."""

import uuid
from typing import Any, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailrules.models.audit_log import AuditLog
from mailrules.models.base import utcnow
from mailrules.models.rule import Rule
from mailrules.models.rule_application import RuleApplication

UPDATABLE_FIELDS = frozenset(
    {"name", "description", "conditions", "action_type", "action_config", "folder_ids", "enabled"}
)


class SqlRuleStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def write_audit_log(
        self,
        user_id: uuid.UUID,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            extra_data=metadata,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def list_rules(self, user_id: uuid.UUID) -> list[Rule]:
        result = await self.db.execute(
            select(Rule)
            .where(Rule.user_id == user_id)
            .order_by(Rule.position.asc(), Rule.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_enabled(self, user_id: uuid.UUID) -> list[Rule]:
        """Enabled rules in declaration order (creation time)."""
        result = await self.db.execute(
            select(Rule)
            .where(Rule.user_id == user_id, Rule.enabled.is_(True))
            .order_by(Rule.created_at.asc(), Rule.id.asc())
        )
        return list(result.scalars().all())

    async def get_by_id(self, rule_id: uuid.UUID, user_id: uuid.UUID | None = None) -> Rule | None:
        query = select(Rule).where(Rule.id == rule_id)
        if user_id is not None:
            query = query.where(Rule.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_names(self, rule_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, str]:
        if not rule_ids:
            return {}
        result = await self.db.execute(select(Rule.id, Rule.name).where(Rule.id.in_(list(rule_ids))))
        return {row.id: row.name for row in result.all()}

    async def next_position(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.max(Rule.position)).where(Rule.user_id == user_id)
        )
        return (result.scalar_one_or_none() or 0) + 1

    async def create(self, user_id: uuid.UUID, values: dict[str, Any]) -> Rule:
        rule = Rule(user_id=user_id, position=await self.next_position(user_id), **values)
        self.db.add(rule)
        await self.db.flush()
        await self.write_audit_log(
            user_id, "rule.created", "rule", str(rule.id), {"name": rule.name}
        )
        return rule

    async def update(self, rule: Rule, changes: dict[str, Any]) -> Rule:
        """Partial update: only keys present in ``changes`` are written."""
        applied = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        for key, value in applied.items():
            setattr(rule, key, value)
        rule.updated_at = utcnow()
        await self.db.flush()
        await self.write_audit_log(
            rule.user_id, "rule.updated", "rule", str(rule.id), {"fields": sorted(applied)}
        )
        return rule

    async def delete(self, rule: Rule) -> None:
        await self.write_audit_log(
            rule.user_id, "rule.deleted", "rule", str(rule.id), {"name": rule.name}
        )
        await self.db.execute(delete(RuleApplication).where(RuleApplication.rule_id == rule.id))
        await self.db.delete(rule)
        await self.db.flush()

    async def reorder(self, user_id: uuid.UUID, positions: Sequence[tuple[uuid.UUID, int]]) -> int:
        """Rewrite positions as given. No contiguity check; unknown ids are ignored.

        Returns:
            Number of rules updated.
        """
        ids = [rule_id for rule_id, _ in positions]
        result = await self.db.execute(select(Rule).where(Rule.user_id == user_id, Rule.id.in_(ids)))
        rules = {r.id: r for r in result.scalars().all()}

        now = utcnow()
        updated = 0
        for rule_id, position in positions:
            rule = rules.get(rule_id)
            if rule is None:
                continue
            rule.position = position
            rule.updated_at = now
            updated += 1

        await self.db.flush()
        await self.write_audit_log(
            user_id, "rule.reordered", "rule", None, {"count": updated}
        )
        return updated
