"""Rule actions: applying a winning rule to an existing thread, and
translating a match into import-time flags for a new message."""

import enum
import logging
from dataclasses import dataclass

from mailrules.models.mailbox import TRASH_FOLDER_ID
from mailrules.services.rule_selector import RuleMatch
from mailrules.services.storage import MailStore, ThreadRef

logger = logging.getLogger(__name__)


class ActionType(str, enum.Enum):
    MOVE_TO_FOLDER = "move_to_folder"
    DELETE_THREAD = "delete_thread"
    DELETE_EMAIL = "delete_email"
    MARK_READ = "mark_read"
    ADD_TO_REPLY_LATER = "add_to_reply_later"
    ADD_TO_SET_ASIDE = "add_to_set_aside"


class ActionError(Exception):
    """A rule's action cannot be applied to a thread."""


@dataclass
class ImportActions:
    """What the ingestion path should do with a new message."""

    folder_id: int | None = None
    mark_read: bool = False
    add_to_reply_later: bool = False
    add_to_set_aside: bool = False


def determine_import_actions(match: RuleMatch) -> ImportActions:
    actions = ImportActions()
    config = match.action_config or {}

    if match.action_type in (ActionType.DELETE_THREAD, ActionType.DELETE_EMAIL):
        actions.folder_id = TRASH_FOLDER_ID
        actions.mark_read = True
    elif match.action_type == ActionType.MOVE_TO_FOLDER:
        actions.folder_id = config.get("folder_id")
    elif match.action_type == ActionType.MARK_READ:
        actions.mark_read = True
    elif match.action_type == ActionType.ADD_TO_REPLY_LATER:
        actions.add_to_reply_later = True
    elif match.action_type == ActionType.ADD_TO_SET_ASIDE:
        actions.add_to_set_aside = True
    else:
        logger.warning("Unknown action type %r on rule %s", match.action_type, match.rule_id)

    return actions


class ActionApplier:
    """Applies a rule's action to an existing thread via the mail store.

    Every action is idempotent: re-applying the same match to the same thread
    leaves the thread unchanged. Errors propagate to the caller.
    """

    def __init__(self, store: MailStore):
        self.store = store

    async def apply(self, thread: ThreadRef, match: RuleMatch) -> None:
        try:
            action_type = ActionType(match.action_type)
        except ValueError as e:
            raise ActionError(f"Unknown action type: {match.action_type}") from e

        config = dict(match.action_config or {})
        if action_type == ActionType.MOVE_TO_FOLDER:
            folder_id = config.get("folder_id")
            if not isinstance(folder_id, int) or isinstance(folder_id, bool):
                raise ActionError(f"Rule {match.rule_id} has no target folder_id")
            if thread.folder_id == folder_id:
                return
        elif action_type == ActionType.DELETE_EMAIL:
            # Single-message deletion has no retroactive meaning; trash the thread
            action_type = ActionType.DELETE_THREAD

        if action_type == ActionType.DELETE_THREAD and thread.folder_id == TRASH_FOLDER_ID:
            return

        await self.store.apply_action(thread.id, action_type.value, config)
