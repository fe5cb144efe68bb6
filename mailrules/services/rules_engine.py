"""Condition evaluation for user-defined mail rules.

A rule's match criteria is a JSON tree of AND/OR groups whose leaves test
one attribute of a message. The tree is decoded once into immutable
condition objects (``compile_conditions``) and then evaluated against a
flattened, read-only ``RuleEvaluationContext`` per message.

Evaluation is pure: no I/O, no mutation, deterministic for equal inputs.
Malformed data never raises here. An invalid regular expression or a
malformed membership list simply never matches.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Union

logger = logging.getLogger(__name__)

HEADER_FIELD_PREFIX = "header:"
SENDER_IN_CONTACTS = "sender_in_contacts"

TEXT_FIELDS = frozenset(
    {
        "email_subject",
        "thread_subject",
        "content",
        "sender_email",
        "sender_name",
        "to_email",
        "to_name",
        "cc_email",
        "cc_name",
        "bcc_email",
        "bcc_name",
        "attachment_filename",
    }
)
MEMBERSHIP_FIELDS = frozenset({SENDER_IN_CONTACTS})

TEXT_MATCH_TYPES = frozenset({"equals", "contains", "starts_with", "ends_with", "regex"})
IN_LIST = "in_list"
# Match type names used by older stored rules
LEGACY_MATCH_TYPES = {"exact": "equals"}

Operator = Literal["AND", "OR"]


@dataclass(frozen=True)
class RuleEvaluationContext:
    """Flattened view of one message, built by the mail store."""

    email_subject: str = ""
    thread_subject: str = ""
    content: str = ""
    sender_email: str = ""
    sender_name: str = ""
    to_emails: tuple[str, ...] = ()
    to_names: tuple[str, ...] = ()
    cc_emails: tuple[str, ...] = ()
    cc_names: tuple[str, ...] = ()
    bcc_emails: tuple[str, ...] = ()
    bcc_names: tuple[str, ...] = ()
    attachment_filenames: tuple[str, ...] = ()
    # (header name, header value) pairs in message order
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class TextCondition:
    field: str
    match_type: str
    pattern: str
    negate: bool = False
    # Pre-compiled for match_type == "regex"; None when the pattern is invalid
    regex: re.Pattern | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class MembershipCondition:
    field: str
    allowed_values: frozenset[str]
    negate: bool = False


@dataclass(frozen=True)
class ConditionGroup:
    operator: Operator
    children: tuple["ConditionNode", ...] = ()


Condition = Union[TextCondition, MembershipCondition]
ConditionNode = Union[TextCondition, MembershipCondition, ConditionGroup]


class InvalidConditionError(ValueError):
    """Raised when a stored condition tree cannot be decoded at all."""


# --- Decoding ---


def normalize_match_type(match_type: str) -> str:
    return LEGACY_MATCH_TYPES.get(match_type, match_type)


def parse_membership_list(raw: Any) -> frozenset[str]:
    """Decode a serialized list of strings into a lower-cased set.

    Anything that is not a JSON array of strings decodes to the empty set.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return frozenset()
    if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
        return frozenset()
    return frozenset(v.strip().lower() for v in raw)


def _compile_regex(pattern: str) -> re.Pattern | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.debug("Invalid regex %r in rule condition: %s", pattern, e)
        return None


def compile_condition(raw: dict[str, Any]) -> Condition:
    """Decode one leaf condition dict."""
    try:
        field_name = raw["field"]
    except KeyError as e:
        raise InvalidConditionError("condition is missing 'field'") from e
    match_type = normalize_match_type(raw.get("match_type") or raw.get("matchType") or "contains")
    value = raw.get("value", "")
    negate = bool(raw.get("negate", False))

    if field_name in MEMBERSHIP_FIELDS or match_type == IN_LIST:
        return MembershipCondition(
            field=field_name,
            allowed_values=parse_membership_list(value),
            negate=negate,
        )

    pattern = "" if value is None else str(value)
    return TextCondition(
        field=field_name,
        match_type=match_type,
        pattern=pattern,
        negate=negate,
        regex=_compile_regex(pattern) if match_type == "regex" else None,
    )


def compile_conditions(raw: dict[str, Any]) -> ConditionGroup:
    """Decode a JSON condition tree into immutable condition objects."""
    if not isinstance(raw, dict):
        raise InvalidConditionError(f"condition group must be an object, got {type(raw).__name__}")
    operator = str(raw.get("operator", "AND")).upper()
    if operator not in ("AND", "OR"):
        raise InvalidConditionError(f"unknown group operator: {operator}")

    children: list[ConditionNode] = []
    for item in raw.get("conditions") or []:
        if not isinstance(item, dict):
            raise InvalidConditionError(f"condition must be an object, got {type(item).__name__}")
        if "operator" in item:
            children.append(compile_conditions(item))
        else:
            children.append(compile_condition(item))
    return ConditionGroup(operator=operator, children=tuple(children))


# --- Evaluation ---


def _header_values(name: str, ctx: RuleEvaluationContext) -> tuple[str, ...]:
    name = name.lower()
    return tuple(value for key, value in ctx.headers if key.lower() == name)


def field_values(field_name: str, ctx: RuleEvaluationContext) -> tuple[str, ...]:
    """Project the value(s) a condition field refers to out of the context."""
    if field_name.startswith(HEADER_FIELD_PREFIX):
        return _header_values(field_name[len(HEADER_FIELD_PREFIX):], ctx)

    if field_name == "email_subject":
        return (ctx.email_subject,)
    if field_name == "thread_subject":
        return (ctx.thread_subject,)
    if field_name == "content":
        return (ctx.content,)
    if field_name in ("sender_email", SENDER_IN_CONTACTS):
        return (ctx.sender_email,)
    if field_name == "sender_name":
        return (ctx.sender_name,)
    if field_name == "to_email":
        return ctx.to_emails
    if field_name == "to_name":
        return ctx.to_names
    if field_name == "cc_email":
        return ctx.cc_emails
    if field_name == "cc_name":
        return ctx.cc_names
    if field_name == "bcc_email":
        return ctx.bcc_emails
    if field_name == "bcc_name":
        return ctx.bcc_names
    if field_name == "attachment_filename":
        return ctx.attachment_filenames
    return ()


def match_text(value: str, condition: TextCondition) -> bool:
    """Apply a condition's textual test to one value, case-insensitively."""
    match_type = condition.match_type
    if not value and match_type != "equals":
        return False

    if match_type == "regex":
        return condition.regex is not None and condition.regex.search(value) is not None

    value_lower = value.lower()
    pattern_lower = condition.pattern.lower()
    if match_type == "equals":
        return value_lower == pattern_lower
    elif match_type == "contains":
        return pattern_lower in value_lower
    elif match_type == "starts_with":
        return value_lower.startswith(pattern_lower)
    elif match_type == "ends_with":
        return value_lower.endswith(pattern_lower)
    return False


def evaluate_condition(condition: Condition, ctx: RuleEvaluationContext) -> bool:
    """Evaluate a single leaf condition. ``negate`` inverts the final result."""
    values = field_values(condition.field, ctx)

    if isinstance(condition, MembershipCondition):
        result = any(v.strip().lower() in condition.allowed_values for v in values)
    else:
        # Multi-valued fields (recipients, attachments, headers): any value counts
        result = any(match_text(v, condition) for v in values)

    return not result if condition.negate else result


def evaluate_conditions(node: ConditionNode, ctx: RuleEvaluationContext) -> bool:
    """Recursively evaluate a condition tree.

    An empty AND group is vacuously true; an empty OR group is false, so an
    empty predicate never matches everything by accident under OR.
    Children are evaluated in declared order with short-circuiting.
    """
    if not isinstance(node, ConditionGroup):
        return evaluate_condition(node, ctx)

    if node.operator == "OR":
        return any(evaluate_conditions(child, ctx) for child in node.children)
    return all(evaluate_conditions(child, ctx) for child in node.children)


# --- Editing ---


class SenderListError(ValueError):
    """A sender cannot be added to a rule's membership list."""


def add_sender_to_conditions(raw: dict[str, Any], email: str) -> tuple[dict[str, Any], int]:
    """Append ``email`` to the first top-level ``sender_in_contacts`` leaf.

    Returns a new condition tree (the input is not modified) and the size of
    the updated list. Nested groups are never searched.

    Raises:
        SenderListError: if there is no such leaf or the sender is already listed.
    """
    email = email.strip().lower()
    children = list(raw.get("conditions") or [])

    for index, child in enumerate(children):
        if isinstance(child, dict) and "operator" not in child and child.get("field") == SENDER_IN_CONTACTS:
            break
    else:
        raise SenderListError('This rule does not have a top-level "Sender In List" condition')

    raw_value = child.get("value") or "[]"
    try:
        senders = list(raw_value) if isinstance(raw_value, list) else json.loads(raw_value)
    except (TypeError, ValueError):
        senders = []
    if not isinstance(senders, list):
        senders = []
    if any(isinstance(s, str) and s.strip().lower() == email for s in senders):
        raise SenderListError("Sender is already in this rule")

    senders.append(email)
    children[index] = {**child, "value": json.dumps(senders)}
    return {**raw, "conditions": children}, len(senders)
