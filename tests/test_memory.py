"""
Tests for Conversation Memory Module
"""

from datetime import datetime, timezone

from message_rag.memory import (
    ASSISTANT_USER_ID,
    ConversationTurn,
    MessageHistory,
    format_message_history,
    to_context_string,
)


class TestConversationTurn:
    """Tests for ConversationTurn dataclass."""

    def test_str(self):
        assert str(ConversationTurn(role="user", content="hi")) == "user: hi"

    def test_dict_round_trip(self):
        turn = ConversationTurn(
            role="assistant",
            content="hello",
            timestamp=datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc),
        )

        restored = ConversationTurn.from_dict(turn.to_dict())

        assert restored == turn


class TestMessageHistory:
    """Tests for MessageHistory."""

    def test_add_messages(self):
        history = MessageHistory()
        history.add_user_message("question")
        history.add_assistant_message("answer")

        assert len(history) == 2
        assert [t.role for t in history] == ["user", "assistant"]

    def test_window_drops_oldest(self):
        history = MessageHistory(max_turns=3)
        for i in range(5):
            history.add_user_message(f"m{i}")

        assert [t.content for t in history.get_turns()] == ["m2", "m3", "m4"]

    def test_last(self):
        history = MessageHistory()
        for i in range(5):
            history.add_user_message(f"m{i}")

        assert [t.content for t in history.last(2)] == ["m3", "m4"]
        assert history.last(0) == []
        assert len(history.last(10)) == 5

    def test_clear(self):
        history = MessageHistory([ConversationTurn("user", "x")])
        history.clear()
        assert len(history) == 0

    def test_to_dict_from_dict(self):
        history = MessageHistory(max_turns=7)
        history.add_user_message("a")
        history.add_assistant_message("b")

        restored = MessageHistory.from_dict(history.to_dict())

        assert restored.max_turns == 7
        assert [str(t) for t in restored] == ["user: a", "assistant: b"]


class TestFormatting:
    """Tests for context rendering and datastore row mapping."""

    def test_to_context_string(self):
        turns = [ConversationTurn("user", "hi"), ConversationTurn("assistant", "hello")]

        assert to_context_string(turns) == "user: hi\nassistant: hello"

    def test_to_context_string_empty(self):
        assert to_context_string([]) == ""

    def test_format_message_history(self):
        rows = [
            {"content": "how do I deploy?", "user_id": "u-42", "created_at": "2024-01-01T10:00:00Z"},
            {"content": "run make deploy", "user_id": ASSISTANT_USER_ID, "created_at": "2024-01-01T10:00:05Z"},
        ]

        turns = format_message_history(rows)

        assert [t.role for t in turns] == ["user", "assistant"]
        assert turns[0].timestamp == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert turns[1].content == "run make deploy"

    def test_format_message_history_custom_assistant(self):
        rows = [{"content": "beep", "userId": "bot-7"}]

        turns = format_message_history(rows, assistant_user_id="bot-7")

        assert turns[0].role == "assistant"
