"""Identifier helpers for temporary (client) and permanent (server) ids."""

import random
import string
import time

from cuid2 import cuid_wrapper

cuid = cuid_wrapper()

TEMP_PREFIX = "temp-"
TEMP_CONVERSATION_ID = "temp-conversation"


def generate_id() -> str:
    """Generate a new CUID for permanent records and pair keys."""
    return cuid()


def generate_temp_id(kind: str | None = None) -> str:
    """Generate a temporary id.

    Message ids look like ``temp-user-<cuid>``; without a kind the id is
    ``temp-<millis>-<random>``, used for unsaved conversations.
    """
    if kind:
        return f"{TEMP_PREFIX}{kind}-{cuid()}"
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{TEMP_PREFIX}{int(time.time() * 1000)}-{suffix}"


def is_temporary_id(value: str | None) -> bool:
    """Check whether an id was generated on the client and never persisted."""
    return bool(value) and value.startswith(TEMP_PREFIX)


def is_permanent_id(value: str | None) -> bool:
    """Check whether an id was assigned by storage."""
    return bool(value) and not is_temporary_id(value)
