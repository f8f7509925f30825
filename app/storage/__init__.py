"""Storage collaborators for conversations and message pairs."""

import os

from app.storage.base import MessagePairStorage
from app.storage.memory import InMemoryMessageStorage


def get_storage() -> MessagePairStorage:
    """Supabase storage when SUPABASE_URL is configured, in-memory storage otherwise."""
    if os.getenv("SUPABASE_URL"):
        from app.storage.supabase import SupabaseMessageStorage

        return SupabaseMessageStorage()
    return InMemoryMessageStorage()


__all__ = ["InMemoryMessageStorage", "MessagePairStorage", "get_storage"]
