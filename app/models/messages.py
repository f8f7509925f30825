"""Message and conversation data models."""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["user", "assistant"]


class Message(BaseModel):
    """A single chat turn, either speculative (temporary id) or persisted."""

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    agent_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    is_loading: bool = False
    error: str | None = None


class Conversation(BaseModel):
    """A stored conversation record."""

    id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime


class ConversationSummary(Conversation):
    """Conversation with details of its most recent message, for listings."""

    last_message: str | None = None
    last_message_at: datetime | None = None
    last_agent_id: str | None = None


@dataclass(frozen=True)
class PendingPair:
    """A user/assistant pair whose temporary messages await durable save."""

    pair_id: str
    user_temp_id: str
    ai_temp_id: str
    agent_id: str
    conversation_id: str | None = None
    user_content: str = ""
    ai_content: str = ""


@dataclass(frozen=True)
class PersistedPair:
    """Both messages of a pair as returned by storage, with their conversation."""

    user_message: Message
    ai_message: Message
    conversation: Conversation | None = None

    @property
    def conversation_id(self) -> str:
        """Id of the conversation the pair was saved into."""
        return self.user_message.conversation_id
