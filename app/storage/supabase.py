"""Supabase-backed storage for conversations and messages."""

import asyncio
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from supabase import Client, create_client

from app.models.messages import Conversation, ConversationSummary, Message, PersistedPair
from app.storage.base import DEFAULT_CONVERSATION_TITLE, title_from_content
from app.utils.ids import is_permanent_id
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SupabaseConfig:
    """Connection settings for the hosted database."""

    url: str | None = field(default_factory=lambda: os.getenv("SUPABASE_URL"))
    key: str | None = field(default_factory=lambda: os.getenv("SUPABASE_ANON_KEY"))
    user_id: str | None = field(default_factory=lambda: os.getenv("SUPABASE_USER_ID"))
    conversations_table: str = "conversations"
    messages_table: str = "messages"


class SupabaseMessageStorage:
    """Conversation and message storage on Supabase tables.

    The client is synchronous, so every query runs in a worker thread.
    """

    def __init__(self, config: SupabaseConfig | None = None, client: Client | None = None):
        """Initialize storage.

        Args:
            config: Connection settings (defaults read SUPABASE_* env vars)
            client: Pre-built Supabase client, mainly for tests
        """
        self.config = config or SupabaseConfig()
        if client is None:
            if not self.config.url or not self.config.key:
                raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY environment variables are required")
            client = create_client(self.config.url, self.config.key)
        self.client = client

    def _require_user(self) -> str:
        if not self.config.user_id:
            raise PermissionError("401 unauthorized: user is not authenticated")
        return self.config.user_id

    def _conversations(self):
        return self.client.table(self.config.conversations_table)

    def _messages(self):
        return self.client.table(self.config.messages_table)

    async def save_message_pair(
        self,
        user_content: str,
        ai_content: str,
        agent_id: str,
        conversation_id: str | None = None,
    ) -> PersistedPair:
        """Persist a user/assistant pair, creating the conversation if needed.

        Both rows go in one insert statement. A conversation created for this
        pair is deleted again if the insert fails.
        """
        self._require_user()

        created = False
        if is_permanent_id(conversation_id):
            conversation = None
            target_id = conversation_id
        else:
            conversation = await self.create_conversation(title_from_content(user_content))
            target_id = conversation.id
            created = True

        rows = [
            {"conversation_id": target_id, "agent_id": agent_id, "role": "user", "content": user_content},
            {"conversation_id": target_id, "agent_id": agent_id, "role": "assistant", "content": ai_content},
        ]

        try:
            response = await asyncio.to_thread(lambda: self._messages().insert(rows).execute())
        except Exception:
            if created:
                logger.warning(f"Message insert failed, removing new conversation {target_id}")
                await self.delete_conversation(target_id)
            raise

        inserted = sorted(response.data, key=lambda row: 0 if row["role"] == "user" else 1)
        if len(inserted) != 2:
            raise RuntimeError(f"Database returned {len(inserted)} rows for a message pair insert")
        user_message, ai_message = (self._to_message(row) for row in inserted)

        # The pair is stored at this point; failing here must not trigger a second save
        now = datetime.now(UTC).isoformat()
        try:
            await asyncio.to_thread(
                lambda: self._conversations().update({"updated_at": now}).eq("id", target_id).execute()
            )
        except Exception:
            logger.warning(f"Could not update timestamp of conversation {target_id}", exc_info=True)

        return PersistedPair(user_message=user_message, ai_message=ai_message, conversation=conversation)

    async def create_conversation(self, title: str | None = None) -> Conversation:
        """Create an empty conversation owned by the configured user."""
        user_id = self._require_user()
        row = {"user_id": user_id, "title": title or DEFAULT_CONVERSATION_TITLE}
        response = await asyncio.to_thread(lambda: self._conversations().insert(row).execute())
        return Conversation.model_validate(response.data[0])

    async def list_conversations(self) -> list[ConversationSummary]:
        """List the user's conversations that have messages, most recently updated first."""
        user_id = self._require_user()
        response = await asyncio.to_thread(
            lambda: self._conversations()
            .select("*, messages!inner(content, created_at, agent_id)")
            .eq("user_id", user_id)
            .order("updated_at", desc=True)
            .execute()
        )

        summaries = []
        for row in response.data:
            messages: list[dict[str, Any]] = row.pop("messages", None) or []
            last = max(messages, key=lambda message: message["created_at"], default=None)
            summaries.append(
                ConversationSummary(
                    **row,
                    last_message=last["content"] if last else None,
                    last_message_at=last["created_at"] if last else None,
                    last_agent_id=last["agent_id"] if last else None,
                )
            )
        return summaries

    async def load_messages(self, conversation_id: str) -> list[Message]:
        """Messages of a conversation, oldest first."""
        response = await asyncio.to_thread(
            lambda: self._messages().select("*").eq("conversation_id", conversation_id).order("created_at").execute()
        )
        return [self._to_message(row) for row in response.data]

    async def update_conversation_title(self, conversation_id: str, title: str) -> Conversation:
        """Rename a conversation."""
        changes = {"title": title, "updated_at": datetime.now(UTC).isoformat()}
        response = await asyncio.to_thread(
            lambda: self._conversations().update(changes).eq("id", conversation_id).execute()
        )
        if not response.data:
            raise KeyError(conversation_id)
        return Conversation.model_validate(response.data[0])

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and then its messages."""
        await asyncio.to_thread(lambda: self._messages().delete().eq("conversation_id", conversation_id).execute())
        response = await asyncio.to_thread(lambda: self._conversations().delete().eq("id", conversation_id).execute())
        return bool(response.data)

    async def cleanup_empty_conversations(self) -> int:
        """Delete the user's conversations that have no messages."""
        user_id = self._require_user()
        conversations = await asyncio.to_thread(
            lambda: self._conversations().select("id").eq("user_id", user_id).execute()
        )
        conversation_ids = [row["id"] for row in conversations.data]
        if not conversation_ids:
            return 0

        with_messages = await asyncio.to_thread(
            lambda: self._messages().select("conversation_id").in_("conversation_id", conversation_ids).execute()
        )
        non_empty = {row["conversation_id"] for row in with_messages.data}
        empty_ids = [conversation_id for conversation_id in conversation_ids if conversation_id not in non_empty]
        if not empty_ids:
            return 0

        await asyncio.to_thread(lambda: self._conversations().delete().in_("id", empty_ids).execute())
        logger.info(f"Cleaned up {len(empty_ids)} empty conversations")
        return len(empty_ids)

    @staticmethod
    def _to_message(row: dict[str, Any]) -> Message:
        return Message(
            id=str(row["id"]),
            conversation_id=str(row["conversation_id"]),
            agent_id=row["agent_id"],
            role=row["role"],
            content=row["content"],
            created_at=row["created_at"],
        )
