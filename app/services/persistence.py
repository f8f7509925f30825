"""Speculative-then-confirmed persistence of user/assistant message pairs."""

import asyncio
from collections.abc import Awaitable, Callable

from app.models.messages import PendingPair, PersistedPair
from app.services.errors import ChatError, ErrorStats, RetryConfig, backoff_delay, classify_error, log_error_details
from app.services.optimistic_store import OptimisticMessageStore, SetError, SetLoading
from app.storage.base import MessagePairStorage
from app.utils.ids import generate_id
from app.utils.logging import get_logger

logger = get_logger(__name__)


class PipelineClosedError(RuntimeError):
    """Raised when a save or retry is abandoned because the pipeline was closed."""


class MessagePairPipeline:
    """Saves message pairs through a storage collaborator with retry and rollback.

    The pipeline only proposes changes; the store applies them. Each pair
    moves through: speculative messages added, storage call, then either
    resolution (temporary ids replaced by permanent ones), a backoff and
    another attempt, or rollback (both speculative messages removed).
    """

    def __init__(
        self,
        store: OptimisticMessageStore,
        storage: MessagePairStorage,
        retry_config: RetryConfig | None = None,
        error_stats: ErrorStats | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the pipeline.

        Args:
            store: Store that owns the message list
            storage: Durable storage collaborator
            retry_config: Retry and backoff settings
            error_stats: Collector that receives every classified failure
            sleep: Awaitable sleep used for backoff, injectable for tests
        """
        self.store = store
        self.storage = storage
        self.retry_config = retry_config or RetryConfig()
        self.error_stats = error_stats or ErrorStats()
        self._sleep = sleep
        self._pending: dict[str, PendingPair] = {}
        self._retry_attempts: dict[str, int] = {}
        self._in_flight: set[str] = set()
        self._closed = False
        self.last_error: ChatError | None = None

    @property
    def pending_pairs(self) -> list[PendingPair]:
        """Pairs that are neither resolved nor rolled back."""
        return list(self._pending.values())

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def retry_count(self, pair_id: str) -> int:
        """Failed attempts recorded so far for a pair."""
        return self._retry_attempts.get(pair_id, 0)

    def close(self) -> None:
        """Stop scheduling retries; pairs waiting on a backoff are abandoned."""
        if not self._closed:
            logger.info(f"Closing message pair pipeline with {len(self._pending)} pending pairs")
        self._closed = True

    def clear(self) -> None:
        """Forget every pending pair, for when the store's list is reset.

        Saves already in flight still finish, but a discarded pair is never
        retried and its outcome never touches the store.
        """
        if self._pending:
            logger.info(f"Discarding {len(self._pending)} pending message pairs")
        self._pending.clear()
        self._retry_attempts.clear()

    async def save_pair(
        self,
        user_content: str,
        ai_content: str,
        agent_id: str,
        conversation_id: str | None = None,
    ) -> PersistedPair:
        """Show a pair immediately and persist it.

        Args:
            user_content: Text the user sent
            ai_content: Final text of the agent's response
            agent_id: Agent that handled the turn
            conversation_id: Owning conversation; missing or temporary ids make
                storage create the conversation

        Returns:
            The persisted pair

        Raises:
            ChatError: On terminal failure, after both speculative messages were
                removed; with auto retry disabled also on a retryable failure,
                leaving the pair pending for ``retry_pair``
            PipelineClosedError: If the pipeline is closed before the pair resolves
        """
        if self._closed:
            raise PipelineClosedError("Message pair pipeline is closed")

        user_temp_id = self.store.add_user_message(user_content, agent_id, conversation_id)
        ai_temp_id = self.store.add_ai_message(agent_id, conversation_id, ai_content)

        pair = PendingPair(
            pair_id=generate_id(),
            user_temp_id=user_temp_id,
            ai_temp_id=ai_temp_id,
            agent_id=agent_id,
            conversation_id=conversation_id,
            user_content=user_content,
            ai_content=ai_content,
        )
        self._pending[pair.pair_id] = pair
        self._retry_attempts[pair.pair_id] = 0

        logger.info(
            f"Saving message pair {pair.pair_id} for agent {agent_id} "
            f"(user {len(user_content)} chars, assistant {len(ai_content)} chars)"
        )
        return await self._persist(pair)

    async def retry_pair(self, pair_id: str) -> PersistedPair | None:
        """Re-attempt the save of a pending pair with its current message contents.

        The attempt counter is not reset.

        Returns:
            The persisted pair, or None when the pair is unknown or already saving
        """
        if self._closed:
            raise PipelineClosedError("Message pair pipeline is closed")

        pair = self._pending.get(pair_id)
        if pair is None:
            logger.warning(f"No pending message pair {pair_id} to retry")
            return None
        if pair_id in self._in_flight:
            logger.warning(f"Message pair {pair_id} is already being saved")
            return None

        logger.info(f"Manual retry of message pair {pair_id} after {self.retry_count(pair_id)} failed attempts")
        return await self._persist(pair)

    async def _persist(self, pair: PendingPair) -> PersistedPair:
        pair_id = pair.pair_id
        max_attempts = self.retry_config.max_attempts
        self._in_flight.add(pair_id)

        try:
            while True:
                user_content, ai_content = self._current_contents(pair)
                try:
                    persisted = await self.storage.save_message_pair(
                        user_content, ai_content, pair.agent_id, pair.conversation_id
                    )
                except Exception as e:
                    attempts = self._retry_attempts.get(pair_id, 0) + 1
                    self._retry_attempts[pair_id] = attempts

                    error = classify_error(e, {"pair_id": pair_id, "attempt": attempts, "max_attempts": max_attempts})
                    self.error_stats.record_error(error)
                    self.last_error = error
                    cause = None if error is e else e

                    if self._closed:
                        self._forget(pair_id)
                        raise PipelineClosedError(f"Message pair {pair_id} abandoned after close") from e

                    if pair_id not in self._pending:
                        logger.info(f"Message pair {pair_id} was discarded while saving, not retrying")
                        self._forget(pair_id)
                        raise error from cause

                    if not error.retryable or attempts >= max_attempts:
                        logger.error(
                            f"Message pair {pair_id} failed terminally after {attempts} attempts "
                            f"({error.kind.value}), rolling back: {e}"
                        )
                        log_error_details(error, logger)
                        self._rollback(pair)
                        raise error from cause

                    self.store.update_message(
                        pair.ai_temp_id, SetError(f"{error.message} (retrying {attempts}/{max_attempts})")
                    )

                    if not self.retry_config.auto_retry:
                        logger.warning(f"Message pair {pair_id} failed ({error.kind.value}), waiting for manual retry")
                        raise error from cause

                    delay = backoff_delay(attempts, self.retry_config)
                    logger.warning(
                        f"Message pair {pair_id} failed ({error.kind.value}), "
                        f"retrying in {delay:.1f}s (attempt {attempts}/{max_attempts})"
                    )
                    await self._sleep(delay)

                    if self._closed:
                        self._forget(pair_id)
                        raise PipelineClosedError(f"Message pair {pair_id} abandoned after close") from e

                    if pair_id not in self._pending:
                        logger.info(f"Message pair {pair_id} was discarded during backoff")
                        self._forget(pair_id)
                        raise error from cause

                    self.store.update_message(pair.ai_temp_id, SetLoading(True))
                    continue

                if pair_id in self._pending:
                    self.store.resolve_pair(pair, persisted)
                else:
                    logger.info(f"Message pair {pair_id} saved after being discarded; store left unchanged")
                self._forget(pair_id)
                logger.info(
                    f"Message pair {pair_id} saved as {persisted.user_message.id}/{persisted.ai_message.id} "
                    f"in conversation {persisted.conversation_id}"
                )
                return persisted
        finally:
            self._in_flight.discard(pair_id)

    def _current_contents(self, pair: PendingPair) -> tuple[str, str]:
        """Latest contents of a pair, preferring what the store currently shows."""
        user_message = self.store.get_message(pair.user_temp_id)
        ai_message = self.store.get_message(pair.ai_temp_id)
        return (
            user_message.content if user_message else pair.user_content,
            ai_message.content if ai_message else pair.ai_content,
        )

    def _rollback(self, pair: PendingPair) -> None:
        self.store.remove_message(pair.user_temp_id)
        self.store.remove_message(pair.ai_temp_id)
        self._forget(pair.pair_id)

    def _forget(self, pair_id: str) -> None:
        self._pending.pop(pair_id, None)
        self._retry_attempts.pop(pair_id, None)
