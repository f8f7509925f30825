"""Client-side chat session: agent replies, optimistic display and persistence."""

import asyncio
from collections.abc import Awaitable, Callable

from app.agents.registry import DEFAULT_AGENT_ID, get_agent_by_id, validate_agent_id
from app.clients.chat_api import ChatAPIClient
from app.models.conversation import ChatMessage
from app.models.messages import PersistedPair
from app.services.errors import ErrorStats, RetryConfig
from app.services.optimistic_store import OptimisticMessageStore
from app.services.persistence import MessagePairPipeline
from app.storage.base import MessagePairStorage
from app.utils.logging import get_logger

logger = get_logger(__name__)


class ChatSession:
    """State for one user chatting in one conversation at a time."""

    def __init__(
        self,
        api: ChatAPIClient,
        storage: MessagePairStorage,
        agent_id: str = DEFAULT_AGENT_ID,
        retry_config: RetryConfig | None = None,
        error_stats: ErrorStats | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the session.

        Args:
            api: Chat API client used to get agent replies
            storage: Storage collaborator for conversations and messages
            agent_id: Initially selected agent
            retry_config: Retry settings for pair persistence
            error_stats: Error collector shared with the pipeline
            sleep: Awaitable sleep used for persistence backoff
        """
        self.api = api
        self.storage = storage
        self.agent_id = agent_id
        self.conversation_id: str | None = None
        self.error_stats = error_stats or ErrorStats()
        self.store = OptimisticMessageStore()
        self.pipeline = MessagePairPipeline(self.store, storage, retry_config, self.error_stats, sleep)

    def history(self) -> list[ChatMessage]:
        """Messages to send to the agent as context.

        Both messages of a pair that is still waiting to be saved are left out,
        so user and assistant turns keep alternating.
        """
        unsaved = {
            message_id for pair in self.pipeline.pending_pairs for message_id in (pair.user_temp_id, pair.ai_temp_id)
        }
        return [
            ChatMessage(role=message.role, content=message.content)
            for message in self.store.messages
            if message.content and not message.error and message.id not in unsaved
        ]

    def _adopt_conversation(self, persisted: PersistedPair) -> None:
        # Pairs discarded by a conversation switch must not pull the session back
        if self.store.get_message(persisted.user_message.id):
            self.conversation_id = persisted.conversation_id

    async def send(self, content: str, on_chunk: Callable[[str], None] | None = None) -> PersistedPair:
        """Ask the current agent and persist the resulting pair.

        Args:
            content: User message
            on_chunk: Receives the reply accumulated so far while streaming

        Returns:
            The persisted user/assistant pair

        Raises:
            ChatError: If the agent request or the save fails terminally
        """
        messages = [*self.history(), ChatMessage(role="user", content=content)]
        reply = await self.api.complete_chat(messages, self.agent_id, on_chunk=on_chunk)

        persisted = await self.pipeline.save_pair(content, reply, self.agent_id, self.conversation_id)
        self._adopt_conversation(persisted)
        return persisted

    async def retry(self, pair_id: str) -> PersistedPair | None:
        """Retry saving a pair that is waiting for a manual retry."""
        persisted = await self.pipeline.retry_pair(pair_id)
        if persisted:
            self._adopt_conversation(persisted)
        return persisted

    def switch_agent(self, agent_id: str) -> None:
        """Select another agent for the following messages.

        Raises:
            ValueError: If the agent id is invalid; the message lists suggestions
        """
        result = validate_agent_id(agent_id)
        if not result.is_valid:
            hint = f" Did you mean: {', '.join(result.suggestions)}?" if result.suggestions else ""
            raise ValueError(f"{result.error}.{hint}")
        self.agent_id = agent_id

    def new_conversation(self) -> None:
        """Start over with an empty conversation and the default agent."""
        self.pipeline.clear()
        self.store.clear()
        self.conversation_id = None
        self.agent_id = DEFAULT_AGENT_ID

    async def open_conversation(self, conversation_id: str) -> None:
        """Load a stored conversation and select the agent of its last message."""
        messages = await self.storage.load_messages(conversation_id)
        self.pipeline.clear()
        self.store.sync_with_persisted(messages)
        self.conversation_id = conversation_id

        if messages:
            last_agent_id = messages[-1].agent_id
            if get_agent_by_id(last_agent_id):
                self.agent_id = last_agent_id
            else:
                logger.warning(f"Invalid agent_id found: {last_agent_id}. Falling back to default agent.")
                self.agent_id = DEFAULT_AGENT_ID

    def close(self) -> None:
        """Stop pending retries; the session should not be used afterwards."""
        self.pipeline.close()
