"""
Conversation Memory Module

Direct-message history handed to the assistant on every call.

Design Rationale:
- The caller owns the history; the pipeline never stores conversations
- A bounded window (deque) keeps only the most recent turns
- Rows from the chat datastore are mapped to user/assistant turns by
  comparing the author with the assistant's user id

Usage:
    history = MessageHistory(max_turns=20)
    history.add_user_message("Can you summarize yesterday's standup?")
    history.add_assistant_message("Sure, the main points were...")

    context = to_context_string(history.last(10))
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

# The chat app stores the assistant's own messages under this user id
ASSISTANT_USER_ID = "00000000-0000-0000-0000-000000000001"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConversationTurn:
    """
    A single turn in a DM conversation.

    Attributes:
        role: "user" or "assistant"
        content: The message text
        timestamp: When the message was created
    """
    role: str
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationTurn":
        """Create from dictionary."""
        timestamp = data.get("timestamp")
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(timestamp) if timestamp else _utcnow(),
        )

    def __str__(self) -> str:
        return f"{self.role}: {self.content}"


class MessageHistory:
    """
    Bounded window over a conversation, oldest turn first.

    Example:
        history = MessageHistory(max_turns=20)
        history.add_user_message("What is our on-call rotation?")
        recent = history.last(3)
    """

    def __init__(
        self,
        turns: Optional[Iterable[ConversationTurn]] = None,
        max_turns: int = 50,
    ):
        """
        Initialize the history.

        Args:
            turns: Existing turns, oldest first
            max_turns: Turns kept; older ones are dropped
        """
        self.max_turns = max_turns
        self._turns: deque = deque(turns or [], maxlen=max_turns)

    def add(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)

    def add_user_message(self, content: str) -> None:
        self.add(ConversationTurn(role="user", content=content))

    def add_assistant_message(self, content: str) -> None:
        self.add(ConversationTurn(role="assistant", content=content))

    def last(self, n: int) -> List[ConversationTurn]:
        """Most recent n turns, oldest first."""
        if n <= 0:
            return []
        return list(self._turns)[-n:]

    def get_turns(self) -> List[ConversationTurn]:
        return list(self._turns)

    def clear(self) -> None:
        self._turns.clear()

    def to_dict(self) -> Dict[str, Any]:
        """Export for persistence by the caller."""
        return {
            "max_turns": self.max_turns,
            "turns": [t.to_dict() for t in self._turns],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageHistory":
        return cls(
            turns=[ConversationTurn.from_dict(t) for t in data.get("turns", [])],
            max_turns=data.get("max_turns", 50),
        )

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(list(self._turns))


def to_context_string(turns: Iterable[ConversationTurn]) -> str:
    """Render turns as "role: content" lines."""
    return "\n".join(str(turn) for turn in turns)


def format_message_history(
    rows: Iterable[Dict[str, Any]],
    assistant_user_id: str = ASSISTANT_USER_ID,
) -> List[ConversationTurn]:
    """
    Map datastore message rows to conversation turns.

    Rows written by the assistant user become assistant turns, everything
    else is a user turn.

    Args:
        rows: Dicts with content, user_id and created_at
        assistant_user_id: Author id of the assistant

    Returns:
        Turns in the order given
    """
    turns = []
    for row in rows:
        author = row.get("user_id") or row.get("userId")
        created = row.get("created_at") or row.get("createdAt")
        if isinstance(created, str):
            created = datetime.fromisoformat(created.replace("Z", "+00:00"))
        turns.append(ConversationTurn(
            role="assistant" if author == assistant_user_id else "user",
            content=row.get("content", ""),
            timestamp=created or _utcnow(),
        ))
    return turns
