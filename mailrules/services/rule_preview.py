"""Dry-run evaluation of a draft condition tree against existing mail."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Sequence

from mailrules.metrics import rule_preview_scanned_messages
from mailrules.services.rules_engine import ConditionGroup, evaluate_conditions
from mailrules.services.storage import MailStore, MessageRef

logger = logging.getLogger(__name__)


@dataclass
class PreviewResult:
    matches: list[MessageRef] = field(default_factory=list)
    scanned_count: int = 0

    @property
    def match_count(self) -> int:
        return len(self.matches)


async def preview_conditions(
    conditions: ConditionGroup,
    store: MailStore,
    user_id: uuid.UUID,
    folder_ids: Sequence[int] | None,
    scan_cap: int,
    match_cap: int,
    page_size: int = 100,
) -> PreviewResult:
    """Collect messages the (possibly unsaved) conditions would match.

    Scans newest first and stops at ``scan_cap`` scanned messages or
    ``match_cap`` matches, whichever comes first. ``scanned_count`` tells the
    caller how far the scan got. Nothing is mutated and no action runs; a
    message whose context cannot be built counts as a non-match.
    """
    result = PreviewResult()
    offset = 0

    while result.scanned_count < scan_cap and len(result.matches) < match_cap:
        page = await store.page_messages(user_id, folder_ids, page_size, offset)
        if not page:
            break

        for message in page:
            if result.scanned_count >= scan_cap or len(result.matches) >= match_cap:
                break
            result.scanned_count += 1
            try:
                ctx = await store.build_message_context(message)
                matched = ctx is not None and evaluate_conditions(conditions, ctx)
            except Exception as e:
                logger.warning("Preview: treating message %s as non-match: %s", message.id, e)
                matched = False
            if matched:
                result.matches.append(message)

        offset += len(page)
        if len(page) < page_size:
            break
        await asyncio.sleep(0)

    rule_preview_scanned_messages.observe(result.scanned_count)
    return result
