"""Export, import and wipe of the organization record.

Import replaces the whole record (no merge). A malformed document is
rejected before anything is touched, and both import and wipe refuse to
run without explicit confirmation.
"""

import json
import logging

from chatshelf.schemas.organization import OrganizationState
from chatshelf.services.organization import OrganizationStore

logger = logging.getLogger(__name__)

EXPORT_FILE_NAME = "chatshelf-settings.json"


class ImportRejectedError(ValueError):
    """The import document is not a valid organization record."""


class ConfirmationRequiredError(Exception):
    """A destructive operation was requested without confirmation."""


def export_state(store: OrganizationStore) -> str:
    """Serialize the full record as a JSON document."""
    return json.dumps(store.to_document(), indent=2)


def parse_import(text: str) -> OrganizationState:
    """Validate an import document without applying it."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ImportRejectedError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ImportRejectedError("Invalid data: expected a JSON object")

    for field_name, expected in (("pinnedChats", list), ("folders", list), ("chatFolders", dict)):
        if field_name in data and not isinstance(data[field_name], expected):
            raise ImportRejectedError(
                f"Invalid data: {field_name} must be a {expected.__name__}"
            )

    return OrganizationState.from_raw(data)


def import_state(store: OrganizationStore, text: str, confirm: bool = False) -> OrganizationState:
    """Replace the record with an imported document."""
    try:
        state = parse_import(text)
    except ImportRejectedError as e:
        logger.warning("Rejected organization import: %s", e)
        raise

    if not confirm:
        raise ConfirmationRequiredError(
            "Importing overwrites current settings, folders and pinned chats"
        )

    store.replace_state(state)
    return state


def wipe_state(store: OrganizationStore, confirm: bool = False) -> None:
    """Reset the record to defaults."""
    if not confirm:
        raise ConfirmationRequiredError("Wiping removes all folders and pinned chats")
    store.replace_state(OrganizationState())
