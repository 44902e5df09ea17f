"""
Core data models for conversational memory.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    """Author of a conversation turn."""
    USER = 'user'
    ASSISTANT = 'assistant'


class Tone(str, Enum):
    """Emotional tone inferred from keyword vocabularies."""
    POSITIVE = 'positive'
    NEGATIVE = 'negative'
    NEUTRAL = 'neutral'


@dataclass(frozen=True)
class Turn:
    """One message in a conversation. Immutable once produced."""
    id: str
    conversation_id: str
    user_id: str
    role: Role
    content: str
    timestamp: datetime


@dataclass
class MemoryRecord:
    """Persisted, searchable form of a Turn.

    The id is derived from the conversation id and turn index so that a
    retried write overwrites the same record instead of adding another one.
    """
    id: str
    vector: List[float]
    metadata: Dict[str, Any]

    @staticmethod
    def record_id(conversation_id: str, turn_index: int) -> str:
        return f'{conversation_id}_{turn_index}'


@dataclass
class MemoryFilter:
    """Metadata predicate for vector store queries and deletes.

    Every field is optional, but a query or delete must set at least one.
    """
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    start: Optional[datetime] = None  # inclusive
    end: Optional[datetime] = None  # exclusive

    def is_empty(self) -> bool:
        return not (self.user_id or self.conversation_id or self.start or self.end)


@dataclass
class MemorySearchResult:
    """A prior turn returned by similarity search."""
    id: str
    content: str
    role: Role
    conversation_id: str
    timestamp: datetime
    score: float  # similarity in [0, 1]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ContextEntry:
    """One entry of an assembled context window."""
    id: str
    content: str
    role: Role
    conversation_id: str
    timestamp: datetime
    relevance: float
    live: bool = False  # from the active conversation rather than retrieved

    @property
    def dedup_key(self):
        return (self.conversation_id, self.timestamp, self.role)


@dataclass
class AssembledContext:
    """Bounded, ranked and deduplicated context for the next response."""
    conversation_id: str
    user_id: str
    entries: List[ContextEntry]
    topics: List[str]
    tone: Tone
    user_preferences: Dict[str, Any] = field(default_factory=dict)
    degraded: bool = False


@dataclass
class MemoryStats:
    """Aggregate view of a user's stored memories."""
    user_id: str
    total_memories: int
    total_conversations: int
    top_topics: List[str]
