"""Tests for conversation and message pair storage."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.errors import ErrorKind, classify_error
from app.services.optimistic_store import OptimisticMessageStore
from app.services.persistence import MessagePairPipeline
from app.storage import InMemoryMessageStorage, get_storage
from app.storage.supabase import SupabaseConfig, SupabaseMessageStorage

NOW = "2025-01-01T00:00:00+00:00"


def conversation_row(conversation_id: str = "conv-1", title: str = "Tokyo weather?") -> dict:
    return {"id": conversation_id, "user_id": "user-1", "title": title, "created_at": NOW, "updated_at": NOW}


def message_row(message_id: int, role: str, content: str, conversation_id: str = "conv-1") -> dict:
    return {
        "id": message_id,
        "conversation_id": conversation_id,
        "agent_id": "weatherAgent",
        "role": role,
        "content": content,
        "created_at": NOW,
    }


@pytest.fixture
def tables():
    """Mock Supabase tables keyed by name."""
    return {"conversations": MagicMock(), "messages": MagicMock()}


@pytest.fixture
def supabase_storage(tables):
    """Create Supabase storage over a mock client."""
    client = MagicMock()
    client.table.side_effect = lambda name: tables[name]
    config = SupabaseConfig(url="https://example.supabase.co", key="anon-key", user_id="user-1")
    return SupabaseMessageStorage(config, client=client)


class TestInMemoryStorage:
    """Tests for the in-memory storage."""

    @pytest.mark.asyncio
    async def test_save_creates_conversation(self):
        """Test that the first pair creates a titled conversation."""
        storage = InMemoryMessageStorage()

        persisted = await storage.save_message_pair(
            "What's the weather like in Tokyo tomorrow morning?", "Sunny", "weatherAgent", "temp-conversation"
        )

        assert persisted.conversation.title == "What's the weather like in Tok"
        assert persisted.user_message.role == "user"
        assert persisted.ai_message.role == "assistant"
        assert persisted.user_message.id != persisted.ai_message.id
        assert await storage.load_messages(persisted.conversation_id) == [persisted.user_message, persisted.ai_message]

    @pytest.mark.asyncio
    async def test_failure_hook_stores_nothing(self):
        """Test that a failed save leaves no messages or conversations behind."""
        storage = InMemoryMessageStorage(failure_hook=lambda call: ConnectionError("network down"))

        with pytest.raises(ConnectionError):
            await storage.save_message_pair("hi", "hello", "weatherAgent")

        assert storage.conversations == {}
        assert storage.messages == {}
        assert storage.save_calls == 1

    @pytest.mark.asyncio
    async def test_list_conversations(self):
        """Test that listings skip empty conversations and put recent ones first."""
        storage = InMemoryMessageStorage()
        first = await storage.save_message_pair("first", "1", "weatherAgent")
        await storage.create_conversation()
        second = await storage.save_message_pair("second", "2", "researchAgent")

        summaries = await storage.list_conversations()

        assert [summary.id for summary in summaries] == [second.conversation_id, first.conversation_id]
        assert summaries[0].last_message == "2"
        assert summaries[0].last_agent_id == "researchAgent"

    @pytest.mark.asyncio
    async def test_update_title(self):
        """Test renaming a conversation."""
        storage = InMemoryMessageStorage()
        conversation = await storage.create_conversation()

        renamed = await storage.update_conversation_title(conversation.id, "Trip planning")

        assert renamed.title == "Trip planning"
        assert storage.conversations[conversation.id].title == "Trip planning"
        with pytest.raises(KeyError):
            await storage.update_conversation_title("missing", "x")

    @pytest.mark.asyncio
    async def test_delete_and_cleanup(self):
        """Test deleting conversations and cleaning up empty ones."""
        storage = InMemoryMessageStorage()
        kept = await storage.save_message_pair("keep", "ok", "weatherAgent")
        await storage.create_conversation()
        await storage.create_conversation()

        assert await storage.cleanup_empty_conversations() == 2
        assert list(storage.conversations) == [kept.conversation_id]

        assert await storage.delete_conversation(kept.conversation_id) is True
        assert await storage.delete_conversation(kept.conversation_id) is False
        assert await storage.load_messages(kept.conversation_id) == []

    def test_get_storage_defaults_to_memory(self, monkeypatch):
        """Test that storage falls back to memory without Supabase settings."""
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        assert isinstance(get_storage(), InMemoryMessageStorage)


class TestSupabaseStorage:
    """Tests for the Supabase storage over a mocked client."""

    @pytest.mark.asyncio
    async def test_save_inserts_both_rows_at_once(self, supabase_storage, tables):
        """Test that a pair is written with a single insert into an existing conversation."""
        messages = tables["messages"]
        messages.insert.return_value.execute.return_value = SimpleNamespace(
            data=[message_row(2, "assistant", "Sunny"), message_row(1, "user", "Weather?")]
        )

        persisted = await supabase_storage.save_message_pair("Weather?", "Sunny", "weatherAgent", "conv-1")

        messages.insert.assert_called_once()
        rows = messages.insert.call_args.args[0]
        assert [row["role"] for row in rows] == ["user", "assistant"]
        assert all(row["conversation_id"] == "conv-1" for row in rows)
        assert persisted.user_message.id == "1"
        assert persisted.ai_message.id == "2"
        assert persisted.conversation is None
        tables["conversations"].insert.assert_not_called()
        tables["conversations"].update.assert_called_once()

    @pytest.mark.asyncio
    async def test_save_creates_conversation_for_temporary_id(self, supabase_storage, tables):
        """Test that a temporary conversation id creates a new conversation first."""
        conversations = tables["conversations"]
        conversations.insert.return_value.execute.return_value = SimpleNamespace(data=[conversation_row("conv-9")])
        tables["messages"].insert.return_value.execute.return_value = SimpleNamespace(
            data=[message_row(1, "user", "Tokyo weather?", "conv-9"), message_row(2, "assistant", "Sunny", "conv-9")]
        )

        persisted = await supabase_storage.save_message_pair("Tokyo weather?", "Sunny", "weatherAgent", "temp-conversation")

        assert conversations.insert.call_args.args[0] == {"user_id": "user-1", "title": "Tokyo weather?"}
        assert persisted.conversation.id == "conv-9"
        assert persisted.conversation_id == "conv-9"

    @pytest.mark.asyncio
    async def test_failed_insert_removes_new_conversation(self, supabase_storage, tables):
        """Test that a conversation created for a failed pair is deleted again."""
        conversations = tables["conversations"]
        conversations.insert.return_value.execute.return_value = SimpleNamespace(data=[conversation_row("conv-9")])
        tables["messages"].insert.return_value.execute.side_effect = ConnectionError("network error")

        with pytest.raises(ConnectionError):
            await supabase_storage.save_message_pair("Tokyo weather?", "Sunny", "weatherAgent")

        conversations.delete.return_value.eq.assert_called_with("id", "conv-9")
        tables["messages"].delete.return_value.eq.assert_called_with("conversation_id", "conv-9")

    @pytest.mark.asyncio
    async def test_timestamp_update_failure_still_returns_pair(self, supabase_storage, tables):
        """Test that a failing conversation touch after the insert does not fail the save."""
        conversations = tables["conversations"]
        conversations.insert.return_value.execute.return_value = SimpleNamespace(data=[conversation_row("conv-9")])
        conversations.update.return_value.eq.return_value.execute.side_effect = ConnectionError(
            "network connection lost"
        )
        tables["messages"].insert.return_value.execute.return_value = SimpleNamespace(
            data=[message_row(1, "user", "hi", "conv-9"), message_row(2, "assistant", "yo", "conv-9")]
        )

        persisted = await supabase_storage.save_message_pair("hi", "yo", "weatherAgent")

        assert persisted.conversation_id == "conv-9"
        assert (persisted.user_message.id, persisted.ai_message.id) == ("1", "2")
        conversations.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_pipeline_saves_once_when_timestamp_update_fails(self, supabase_storage, tables):
        """Test that the pipeline does not store a second copy after a late storage failure."""
        conversations = tables["conversations"]
        conversations.insert.return_value.execute.return_value = SimpleNamespace(data=[conversation_row("conv-9")])
        conversations.update.return_value.eq.return_value.execute.side_effect = [
            ConnectionError("network connection lost"),
            SimpleNamespace(data=[]),
        ]
        tables["messages"].insert.return_value.execute.return_value = SimpleNamespace(
            data=[message_row(1, "user", "hi", "conv-9"), message_row(2, "assistant", "yo", "conv-9")]
        )
        store = OptimisticMessageStore()
        pipeline = MessagePairPipeline(store, supabase_storage, sleep=AsyncMock())

        await pipeline.save_pair("hi", "yo", "weatherAgent")

        assert tables["messages"].insert.call_count == 1
        assert conversations.insert.call_count == 1
        assert [message.id for message in store.messages] == ["1", "2"]
        assert not pipeline.has_pending

    @pytest.mark.asyncio
    async def test_failed_insert_keeps_existing_conversation(self, supabase_storage, tables):
        """Test that an existing conversation survives a failed insert."""
        tables["messages"].insert.return_value.execute.side_effect = Exception("deadlock detected")

        with pytest.raises(Exception, match="deadlock"):
            await supabase_storage.save_message_pair("hi", "hello", "weatherAgent", "conv-1")

        tables["conversations"].delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_row_count(self, supabase_storage, tables):
        """Test that a partial insert result is an error."""
        tables["messages"].insert.return_value.execute.return_value = SimpleNamespace(
            data=[message_row(1, "user", "hi")]
        )

        with pytest.raises(RuntimeError):
            await supabase_storage.save_message_pair("hi", "hello", "weatherAgent", "conv-1")

    @pytest.mark.asyncio
    async def test_missing_user_is_authentication_error(self, tables):
        """Test that saving without a user fails as an authentication error."""
        client = MagicMock()
        client.table.side_effect = lambda name: tables[name]
        storage = SupabaseMessageStorage(SupabaseConfig(url="u", key="k", user_id=None), client=client)

        with pytest.raises(PermissionError) as exc_info:
            await storage.save_message_pair("hi", "hello", "weatherAgent")

        assert classify_error(exc_info.value).kind == ErrorKind.AUTHENTICATION
        tables["messages"].insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_conversations(self, supabase_storage, tables):
        """Test that listings carry the newest message of each conversation."""
        row = conversation_row()
        row["messages"] = [
            {"content": "first", "created_at": "2025-01-01T00:00:00+00:00", "agent_id": "weatherAgent"},
            {"content": "latest", "created_at": "2025-01-02T00:00:00+00:00", "agent_id": "researchAgent"},
        ]
        query = tables["conversations"].select.return_value.eq.return_value.order.return_value
        query.execute.return_value = SimpleNamespace(data=[row])

        [summary] = await supabase_storage.list_conversations()

        assert summary.last_message == "latest"
        assert summary.last_agent_id == "researchAgent"
        tables["conversations"].select.return_value.eq.assert_called_with("user_id", "user-1")

    @pytest.mark.asyncio
    async def test_load_messages(self, supabase_storage, tables):
        """Test loading the messages of a conversation."""
        query = tables["messages"].select.return_value.eq.return_value.order.return_value
        query.execute.return_value = SimpleNamespace(
            data=[message_row(1, "user", "hi"), message_row(2, "assistant", "hello")]
        )

        messages = await supabase_storage.load_messages("conv-1")

        assert [(message.id, message.role) for message in messages] == [("1", "user"), ("2", "assistant")]

    @pytest.mark.asyncio
    async def test_cleanup_empty_conversations(self, supabase_storage, tables):
        """Test that only conversations without messages are removed."""
        conversations = tables["conversations"]
        conversations.select.return_value.eq.return_value.execute.return_value = SimpleNamespace(
            data=[{"id": "conv-1"}, {"id": "conv-2"}]
        )
        tables["messages"].select.return_value.in_.return_value.execute.return_value = SimpleNamespace(
            data=[{"conversation_id": "conv-1"}]
        )

        removed = await supabase_storage.cleanup_empty_conversations()

        assert removed == 1
        conversations.delete.return_value.in_.assert_called_with("id", ["conv-2"])

    def test_missing_settings(self):
        """Test that a client cannot be built without URL and key."""
        with pytest.raises(ValueError):
            SupabaseMessageStorage(SupabaseConfig(url=None, key=None))
