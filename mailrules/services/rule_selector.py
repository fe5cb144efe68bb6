"""First-match-wins rule selection."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from mailrules.services.rules_engine import (
    ConditionGroup,
    InvalidConditionError,
    RuleEvaluationContext,
    compile_conditions,
    evaluate_conditions,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledRule:
    """A rule with its condition tree decoded, ready for evaluation."""

    id: uuid.UUID
    name: str
    conditions: ConditionGroup
    action_type: str
    action_config: dict[str, Any] | None
    folder_ids: frozenset[int]
    position: int
    enabled: bool = True


@dataclass(frozen=True)
class RuleMatch:
    rule_id: uuid.UUID
    rule_name: str
    action_type: str
    action_config: dict[str, Any] | None

    @classmethod
    def from_rule(cls, rule: CompiledRule) -> "RuleMatch":
        return cls(
            rule_id=rule.id,
            rule_name=rule.name,
            action_type=rule.action_type,
            action_config=rule.action_config,
        )


def compile_rule(rule: Any) -> CompiledRule:
    """Decode a stored ``Rule`` row (or any object with the same attributes).

    Raises:
        InvalidConditionError: if the stored condition tree is structurally broken.
    """
    return CompiledRule(
        id=rule.id,
        name=rule.name,
        conditions=compile_conditions(rule.conditions),
        action_type=rule.action_type,
        action_config=rule.action_config,
        folder_ids=frozenset(rule.folder_ids or ()),
        position=rule.position,
        enabled=rule.enabled,
    )


def compile_rules(rules: Iterable[Any]) -> list[CompiledRule]:
    """Compile stored rules, skipping any whose conditions cannot be decoded."""
    compiled = []
    for rule in rules:
        try:
            compiled.append(compile_rule(rule))
        except InvalidConditionError as e:
            logger.warning("Skipping rule %s with invalid conditions: %s", rule.id, e)
    return compiled


def order_rules(rules: Iterable[CompiledRule]) -> list[CompiledRule]:
    """Sort by position; ties keep their declaration order (stable sort)."""
    return sorted(rules, key=lambda r: r.position)


def select_rule(
    rules: Sequence[CompiledRule],
    ctx: RuleEvaluationContext,
    folder_id: int | None = None,
) -> RuleMatch | None:
    """Return the highest-priority enabled rule matching ``ctx``.

    Args:
        rules: Candidate rules in declaration order.
        ctx: The message being classified.
        folder_id: The message's current folder. Rules not scoped to it are
            skipped. ``None`` disables folder scoping.

    Returns:
        The winning rule's match, or None when no rule matches.
    """
    candidates = [
        r for r in rules
        if r.enabled and (folder_id is None or folder_id in r.folder_ids)
    ]
    for rule in order_rules(candidates):
        if evaluate_conditions(rule.conditions, ctx):
            return RuleMatch.from_rule(rule)
    return None


def match_single_rule(rule: CompiledRule, ctx: RuleEvaluationContext) -> RuleMatch | None:
    """Evaluate exactly one rule, ignoring priority and other rules.

    Used when the user explicitly applies a rule: that rule is tested even if
    a higher-priority rule would have won during normal selection.
    """
    if evaluate_conditions(rule.conditions, ctx):
        return RuleMatch.from_rule(rule)
    return None
