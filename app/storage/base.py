"""Storage collaborator interface for conversations and message pairs."""

from typing import Protocol

from app.models.messages import Conversation, ConversationSummary, Message, PersistedPair

DEFAULT_CONVERSATION_TITLE = "New conversation"
TITLE_LENGTH = 30


def title_from_content(user_content: str) -> str:
    """Derive a conversation title from the first user message."""
    return user_content.strip()[:TITLE_LENGTH] or DEFAULT_CONVERSATION_TITLE


class MessagePairStorage(Protocol):
    """Durable storage for conversations and their messages."""

    async def save_message_pair(
        self,
        user_content: str,
        ai_content: str,
        agent_id: str,
        conversation_id: str | None = None,
    ) -> PersistedPair:
        """Persist a user/assistant pair as one unit.

        Creates the conversation first when ``conversation_id`` is missing or
        temporary. Either both messages are stored or neither is.
        """
        ...

    async def create_conversation(self, title: str | None = None) -> Conversation: ...

    async def list_conversations(self) -> list[ConversationSummary]: ...

    async def load_messages(self, conversation_id: str) -> list[Message]: ...

    async def update_conversation_title(self, conversation_id: str, title: str) -> Conversation: ...

    async def delete_conversation(self, conversation_id: str) -> bool: ...

    async def cleanup_empty_conversations(self) -> int: ...
