"""HTTP client for the chat API."""

import asyncio
import os
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field

import httpx

from app.models.conversation import ChatMessage
from app.services.errors import ChatError, RetryConfig, execute_with_retry
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ChatAPIConfig:
    """Configuration for the chat API client."""

    base_url: str = field(default_factory=lambda: os.getenv("CHAT_API_URL", "http://localhost:8000"))
    timeout: float = 60.0
    retry: RetryConfig = field(default_factory=RetryConfig)


class ChatAPIClient:
    """Streams agent replies from ``POST /api/chat``."""

    def __init__(
        self,
        config: ChatAPIConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            config: Client configuration (base URL defaults to CHAT_API_URL)
            http_client: Pre-built httpx client, mainly for tests
            sleep: Awaitable sleep used for retry backoff
        """
        self.config = config or ChatAPIConfig()
        self.client = http_client or httpx.AsyncClient(base_url=self.config.base_url, timeout=self.config.timeout)
        self._sleep = sleep

    async def stream_chat(self, messages: Sequence[ChatMessage], agent_id: str) -> AsyncIterator[str]:
        """Yield reply text chunks as the server streams them.

        Raises:
            httpx.HTTPStatusError: On a non-2xx response
        """
        payload = {"messages": [message.model_dump() for message in messages], "agentId": agent_id}
        async with self.client.stream("POST", "/api/chat", json=payload) as response:
            if response.is_error:
                await response.aread()
                logger.warning(f"Chat API returned {response.status_code}: {response.text[:200]}")
                response.raise_for_status()
            async for chunk in response.aiter_text():
                if chunk:
                    yield chunk

    async def complete_chat(
        self,
        messages: Sequence[ChatMessage],
        agent_id: str,
        on_chunk: Callable[[str], None] | None = None,
    ) -> str:
        """Stream a whole reply and return the accumulated text.

        Retryable failures (network, rate limit, timeouts) restart the stream
        with exponential backoff.

        Args:
            messages: Conversation so far, ending with the new user message
            agent_id: Agent to ask
            on_chunk: Called with the text accumulated so far after every chunk

        Returns:
            Final reply text

        Raises:
            ChatError: When the request fails terminally
        """

        async def attempt() -> str:
            parts: list[str] = []
            async for chunk in self.stream_chat(messages, agent_id):
                parts.append(chunk)
                if on_chunk:
                    on_chunk("".join(parts))
            return "".join(parts)

        def log_retry(failed_attempt: int, error: ChatError) -> None:
            logger.warning(f"Chat request to {agent_id} failed on attempt {failed_attempt}: {error.kind.value}")

        return await execute_with_retry(attempt, self.config.retry, on_retry=log_retry, sleep=self._sleep)

    async def health(self) -> bool:
        """Check whether the service answers its health endpoint."""
        try:
            response = await self.client.get("/health")
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return response.status_code == 200

    async def aclose(self) -> None:
        await self.client.aclose()
