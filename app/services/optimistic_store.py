"""Optimistic message store.

The message list is an immutable tuple. Every mutation is expressed as an
action and applied by ``reduce_messages``, a pure function, so readers always
see either the whole previous list or the whole next one. Updates and removals
that target an id no longer in the list are no-ops: a late streaming update
can race with a rollback without tearing the list.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from app.models.messages import Message, PendingPair, PersistedPair
from app.utils.ids import TEMP_CONVERSATION_ID, generate_temp_id, is_permanent_id, is_temporary_id
from app.utils.logging import get_logger

logger = get_logger(__name__)

Messages = tuple[Message, ...]
Listener = Callable[[Messages], None]


# Message updates


@dataclass(frozen=True)
class SetContent:
    """Replace the content of a message that is still speculative."""

    content: str
    is_loading: bool | None = None


@dataclass(frozen=True)
class SetLoading:
    is_loading: bool


@dataclass(frozen=True)
class SetError:
    """Attach a failure description; the message stops loading."""

    error: str


@dataclass(frozen=True)
class ClearError:
    pass


@dataclass(frozen=True)
class PromoteToPermanent:
    """Swap a speculative message for its persisted counterpart."""

    persisted: Message


MessageUpdate = SetContent | SetLoading | SetError | ClearError | PromoteToPermanent


# Store actions


@dataclass(frozen=True)
class AddMessage:
    message: Message


@dataclass(frozen=True)
class UpdateMessage:
    message_id: str
    update: MessageUpdate


@dataclass(frozen=True)
class RemoveMessage:
    message_id: str


@dataclass(frozen=True)
class ResolvePair:
    user_temp_id: str
    ai_temp_id: str
    user_message: Message
    ai_message: Message


@dataclass(frozen=True)
class ReplaceMessages:
    messages: Messages


@dataclass(frozen=True)
class ClearMessages:
    pass


Action = AddMessage | UpdateMessage | RemoveMessage | ResolvePair | ReplaceMessages | ClearMessages


def apply_update(message: Message, update: MessageUpdate) -> Message:
    """Apply one named update to a message, returning a new message."""
    match update:
        case SetContent(content=content, is_loading=is_loading):
            if is_permanent_id(message.id):
                logger.debug(f"Ignoring content update for persisted message {message.id}")
                return message
            changes: dict = {"content": content}
            if is_loading is not None:
                changes["is_loading"] = is_loading
            return message.model_copy(update=changes)
        case SetLoading(is_loading=is_loading):
            return message.model_copy(update={"is_loading": is_loading})
        case SetError(error=error):
            return message.model_copy(update={"error": error, "is_loading": False})
        case ClearError():
            return message.model_copy(update={"error": None})
        case PromoteToPermanent(persisted=persisted):
            if not is_temporary_id(message.id):
                return message
            return persisted.model_copy(update={"is_loading": False, "error": None})
    raise TypeError(f"Unknown message update: {update!r}")


def _promote(messages: Messages, temp_id: str, persisted: Message) -> Messages:
    """Promote one message, dropping the temporary entry if the persisted id is already listed."""
    if any(message.id == persisted.id for message in messages):
        return tuple(message for message in messages if message.id != temp_id)
    return tuple(
        apply_update(message, PromoteToPermanent(persisted)) if message.id == temp_id else message
        for message in messages
    )


def _dedupe(messages: Iterable[Message]) -> Messages:
    seen: set[str] = set()
    unique: list[Message] = []
    for message in messages:
        if message.id in seen:
            continue
        seen.add(message.id)
        unique.append(message)
    return tuple(unique)


def reduce_messages(messages: Messages, action: Action) -> Messages:
    """Compute the next message list from the current one and an action.

    Args:
        messages: Current list
        action: Mutation to apply

    Returns:
        New list; the input is never modified
    """
    match action:
        case AddMessage(message=message):
            if any(existing.id == message.id for existing in messages):
                logger.warning(f"Ignoring duplicate message id {message.id}")
                return messages
            return (*messages, message)
        case UpdateMessage(message_id=message_id, update=PromoteToPermanent(persisted=persisted)):
            return _promote(messages, message_id, persisted)
        case UpdateMessage(message_id=message_id, update=update):
            return tuple(apply_update(message, update) if message.id == message_id else message for message in messages)
        case RemoveMessage(message_id=message_id):
            return tuple(message for message in messages if message.id != message_id)
        case ResolvePair(user_temp_id=user_temp_id, ai_temp_id=ai_temp_id, user_message=user, ai_message=ai):
            resolved = _promote(messages, user_temp_id, user)
            return _promote(resolved, ai_temp_id, ai)
        case ReplaceMessages(messages=replacement):
            return _dedupe(replacement)
        case ClearMessages():
            return ()
    raise TypeError(f"Unknown store action: {action!r}")


class OptimisticMessageStore:
    """Owner and sole mutator of the chat message list shown to the user."""

    def __init__(self, initial_messages: Iterable[Message] | None = None):
        """Initialize the store.

        Args:
            initial_messages: Persisted messages to start from
        """
        self._messages: Messages = _dedupe(
            message.model_copy(update={"is_loading": False}) for message in initial_messages or ()
        )
        self._listeners: list[Listener] = []

    @property
    def messages(self) -> Messages:
        """Current snapshot of the list."""
        return self._messages

    @property
    def pending_ids(self) -> list[str]:
        """Ids of messages that have not been persisted yet."""
        return [message.id for message in self._messages if is_temporary_id(message.id)]

    def get_message(self, message_id: str) -> Message | None:
        """Find a message by id."""
        return next((message for message in self._messages if message.id == message_id), None)

    def dispatch(self, action: Action) -> Messages:
        """Apply an action and notify listeners with the new snapshot."""
        self._messages = reduce_messages(self._messages, action)
        for listener in list(self._listeners):
            listener(self._messages)
        return self._messages

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add_user_message(self, content: str, agent_id: str, conversation_id: str | None = None) -> str:
        """Append a speculative user message and return its temporary id."""
        temp_id = generate_temp_id("user")
        self.dispatch(
            AddMessage(
                Message(
                    id=temp_id,
                    conversation_id=conversation_id or TEMP_CONVERSATION_ID,
                    agent_id=agent_id,
                    role="user",
                    content=content,
                    created_at=datetime.now(UTC),
                    is_loading=False,
                )
            )
        )
        return temp_id

    def add_ai_message(self, agent_id: str, conversation_id: str | None = None, initial_content: str = "") -> str:
        """Append a speculative assistant message in loading state and return its temporary id."""
        temp_id = generate_temp_id("ai")
        self.dispatch(
            AddMessage(
                Message(
                    id=temp_id,
                    conversation_id=conversation_id or TEMP_CONVERSATION_ID,
                    agent_id=agent_id,
                    role="assistant",
                    content=initial_content,
                    created_at=datetime.now(UTC),
                    is_loading=True,
                )
            )
        )
        return temp_id

    def update_message(self, message_id: str, update: MessageUpdate) -> None:
        """Apply a named update to one message; unknown ids are ignored."""
        self.dispatch(UpdateMessage(message_id, update))

    def stream_content(self, message_id: str, content: str, is_complete: bool = False) -> None:
        """Show the content accumulated so far for a streaming message."""
        self.update_message(message_id, SetContent(content, is_loading=not is_complete))

    def remove_message(self, message_id: str) -> None:
        """Delete a message; unknown ids are ignored."""
        self.dispatch(RemoveMessage(message_id))

    def resolve_pair(self, pair: PendingPair, persisted: PersistedPair) -> None:
        """Replace both speculative messages of a pair with their persisted versions in one step."""
        self.dispatch(ResolvePair(pair.user_temp_id, pair.ai_temp_id, persisted.user_message, persisted.ai_message))

    def sync_with_persisted(self, messages: Iterable[Message]) -> None:
        """Replace the list with messages loaded from storage."""
        self.dispatch(ReplaceMessages(tuple(message.model_copy(update={"is_loading": False}) for message in messages)))

    def clear(self) -> None:
        """Empty the list, e.g. when switching conversations."""
        self.dispatch(ClearMessages())
