"""In-memory storage for local development and tests."""

from collections.abc import Callable
from datetime import UTC, datetime

from app.models.messages import Conversation, ConversationSummary, Message, PersistedPair
from app.storage.base import DEFAULT_CONVERSATION_TITLE, title_from_content
from app.utils.ids import generate_id, is_permanent_id
from app.utils.logging import get_logger

logger = get_logger(__name__)

FailureHook = Callable[[int], Exception | None]


class InMemoryMessageStorage:
    """Conversation and message storage kept in process memory."""

    def __init__(self, user_id: str = "local-user", failure_hook: FailureHook | None = None):
        """Initialize storage.

        Args:
            user_id: Owner assigned to created conversations
            failure_hook: Called with the 1-based save call number before each
                pair save; an exception it returns is raised instead of saving
        """
        self.user_id = user_id
        self.failure_hook = failure_hook
        self.conversations: dict[str, Conversation] = {}
        self.messages: dict[str, list[Message]] = {}
        self.save_calls = 0

    async def save_message_pair(
        self,
        user_content: str,
        ai_content: str,
        agent_id: str,
        conversation_id: str | None = None,
    ) -> PersistedPair:
        """Persist a user/assistant pair, creating the conversation if needed."""
        self.save_calls += 1
        if self.failure_hook:
            failure = self.failure_hook(self.save_calls)
            if failure is not None:
                raise failure

        if is_permanent_id(conversation_id) and conversation_id in self.conversations:
            conversation = self.conversations[conversation_id]
        else:
            conversation = await self.create_conversation(title_from_content(user_content))

        now = datetime.now(UTC)
        user_message = Message(
            id=generate_id(),
            conversation_id=conversation.id,
            agent_id=agent_id,
            role="user",
            content=user_content,
            created_at=now,
        )
        ai_message = Message(
            id=generate_id(),
            conversation_id=conversation.id,
            agent_id=agent_id,
            role="assistant",
            content=ai_content,
            created_at=now,
        )
        self.messages.setdefault(conversation.id, []).extend([user_message, ai_message])
        conversation = conversation.model_copy(update={"updated_at": now})
        self.conversations[conversation.id] = conversation

        logger.debug(f"Saved message pair {user_message.id}/{ai_message.id} to conversation {conversation.id}")
        return PersistedPair(user_message=user_message, ai_message=ai_message, conversation=conversation)

    async def create_conversation(self, title: str | None = None) -> Conversation:
        """Create an empty conversation."""
        now = datetime.now(UTC)
        conversation = Conversation(
            id=generate_id(),
            user_id=self.user_id,
            title=title or DEFAULT_CONVERSATION_TITLE,
            created_at=now,
            updated_at=now,
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def list_conversations(self) -> list[ConversationSummary]:
        """List conversations that have messages, most recently updated first."""
        summaries = []
        for conversation in self.conversations.values():
            messages = self.messages.get(conversation.id)
            if not messages:
                continue
            last = messages[-1]
            summaries.append(
                ConversationSummary(
                    **conversation.model_dump(),
                    last_message=last.content,
                    last_message_at=last.created_at,
                    last_agent_id=last.agent_id,
                )
            )
        return sorted(summaries, key=lambda summary: summary.updated_at, reverse=True)

    async def load_messages(self, conversation_id: str) -> list[Message]:
        """Messages of a conversation in insertion order."""
        return list(self.messages.get(conversation_id, []))

    async def update_conversation_title(self, conversation_id: str, title: str) -> Conversation:
        """Rename a conversation.

        Raises:
            KeyError: If the conversation does not exist
        """
        conversation = self.conversations[conversation_id].model_copy(
            update={"title": title, "updated_at": datetime.now(UTC)}
        )
        self.conversations[conversation_id] = conversation
        return conversation

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages."""
        self.messages.pop(conversation_id, None)
        return self.conversations.pop(conversation_id, None) is not None

    async def cleanup_empty_conversations(self) -> int:
        """Delete conversations without messages; returns how many were removed."""
        empty = [conversation_id for conversation_id in self.conversations if not self.messages.get(conversation_id)]
        for conversation_id in empty:
            del self.conversations[conversation_id]
        if empty:
            logger.info(f"Cleaned up {len(empty)} empty conversations")
        return len(empty)
