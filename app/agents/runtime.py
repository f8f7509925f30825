"""Agent runtime boundary: streams agent replies through LangGraph."""

import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage
from langgraph.prebuilt import create_react_agent

from app.agents.registry import get_all_agents
from app.models.agent import Agent
from app.models.conversation import ChatMessage
from app.utils.logging import get_logger

logger = get_logger(__name__)


class ChatAgent(Protocol):
    """An agent that answers a conversation with streamed text."""

    id: str

    def stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]: ...


class AgentRuntime(Protocol):
    """Hosts the agents served by the chat API."""

    def get_agent(self, agent_id: str) -> ChatAgent | None: ...


@dataclass
class AgentRuntimeConfig:
    """Model settings shared by all agents."""

    api_key: str | None = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY"))
    model: str = field(default_factory=lambda: os.getenv("CHAT_MODEL", "claude-3-5-sonnet-20241022"))
    temperature: float = 0.3
    max_tokens: int = 4096


def to_langchain_messages(messages: Sequence[ChatMessage]) -> list[BaseMessage]:
    """Convert API chat messages to LangChain message objects."""
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def chunk_text(content: Any) -> str:
    """Extract plain text from a message chunk's content (string or content blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
            if not isinstance(block, dict) or block.get("type", "text") == "text"
        )
    return ""


class LangGraphAgent:
    """A registry agent backed by a LangGraph prebuilt agent graph."""

    def __init__(self, agent: Agent, model: ChatAnthropic):
        """Build the agent graph.

        Args:
            agent: Registry entry providing id and instructions
            model: Chat model used by the graph
        """
        self.id = agent.id
        self.agent = agent
        self.graph = create_react_agent(model, tools=[], prompt=agent.instructions)

    async def stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:
        """Yield reply text as the model produces it."""
        inputs = {"messages": to_langchain_messages(messages)}
        async for message, _metadata in self.graph.astream(inputs, stream_mode="messages"):
            if isinstance(message, AIMessageChunk):
                text = chunk_text(message.content)
                if text:
                    yield text


class LangGraphAgentRuntime:
    """Runtime holding one LangGraph agent per registry entry."""

    def __init__(self, config: AgentRuntimeConfig | None = None):
        """Initialize runtime.

        Args:
            config: Model settings (API key defaults to ANTHROPIC_API_KEY)
        """
        self.config = config or AgentRuntimeConfig()
        if not self.config.api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        model = ChatAnthropic(
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            anthropic_api_key=self.config.api_key,
            streaming=True,
        )
        self._agents: dict[str, LangGraphAgent] = {agent.id: LangGraphAgent(agent, model) for agent in get_all_agents()}
        logger.info(f"Agent runtime initialized with agents: {', '.join(self._agents)}")

    def get_agent(self, agent_id: str) -> ChatAgent | None:
        return self._agents.get(agent_id)


_agent_runtime: AgentRuntime | None = None


def get_agent_runtime() -> AgentRuntime | None:
    """Get or create the agent runtime; None when it cannot be started."""
    global _agent_runtime
    if _agent_runtime is None:
        try:
            _agent_runtime = LangGraphAgentRuntime()
        except ValueError as e:
            logger.error(f"Agent runtime unavailable: {e}")
            return None
    return _agent_runtime
