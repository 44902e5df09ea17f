"""
Shared pytest fixtures for the memory engine tests.

Provides:
- In-memory fakes of the embedding client and the vector store
- Turn factories
- A MemoryService wired to the fakes
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from context_memory.models.core import MemoryFilter, MemorySearchResult, Role, Turn
from context_memory.services.memory_management import MemoryService
from context_memory.utils.config import load_config
from context_memory.utils.errors import InvalidInputError, ProviderUnavailableError
from context_memory.utils.timestamp_utils import parse_timestamp

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

# ============================================================================
# Fakes
# ============================================================================


class FakeEmbed:
    """Embedding client returning preset vectors, or a text-derived default."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dimension: int = 2):
        self.vectors = vectors or {}
        self.dimension = dimension
        self.calls: List[str] = []
        self.fail_on: set = set()
        self.unavailable = False

    def embed(self, text, input_type='document', deadline=None):
        if not text or not text.strip():
            raise InvalidInputError('Empty text cannot be embedded')
        if deadline is not None:
            deadline.check('fake embed')
        self.calls.append(text)
        if self.unavailable or text in self.fail_on:
            raise ProviderUnavailableError(f'embedding unavailable for {text!r}')
        if text in self.vectors:
            return list(self.vectors[text])
        seed = sum(ord(char) for char in text)
        return [math.cos(seed), math.sin(seed)]

    def embed_batch(self, texts, input_type='document', deadline=None):
        return [self.embed(text, input_type, deadline) for text in texts]


def _cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeVectorStore:
    """Vector store keeping records in a dict and ranking by cosine similarity."""

    def __init__(self):
        self.records: Dict[str, Dict] = {}
        self.unavailable = False
        self.upserts = 0
        self.index_created = False

    def _check(self):
        if self.unavailable:
            raise ProviderUnavailableError('vector store unreachable')

    @staticmethod
    def _matches(metadata: Dict, memory_filter: MemoryFilter) -> bool:
        if memory_filter.user_id and metadata.get('user_id') != memory_filter.user_id:
            return False
        if memory_filter.conversation_id and metadata.get('conversation_id') != memory_filter.conversation_id:
            return False
        timestamp = parse_timestamp(metadata.get('timestamp'))
        if memory_filter.start and timestamp < memory_filter.start:
            return False
        if memory_filter.end and timestamp >= memory_filter.end:
            return False
        return True

    def create_index_if_not_exists(self, sync_wait=15.0):
        self.index_created = True
        return 'created'

    def upsert(self, record_id, vector, metadata, deadline=None):
        self._check()
        self.upserts += 1
        self.records[record_id] = {'vector': list(vector), 'metadata': dict(metadata)}

    def query(self, vector, memory_filter, top_k, deadline=None):
        self._check()
        results = []
        for record_id, record in self.records.items():
            metadata = record['metadata']
            if not self._matches(metadata, memory_filter):
                continue
            score = max(0.0, min(1.0, _cosine(vector, record['vector'])))
            results.append(
                MemorySearchResult(id=record_id,
                                   content=metadata['content'],
                                   role=Role(metadata['role']),
                                   conversation_id=metadata['conversation_id'],
                                   timestamp=parse_timestamp(metadata['timestamp']),
                                   score=score,
                                   metadata=metadata))
        results.sort(key=lambda result: result.score, reverse=True)
        return results[:top_k]

    def delete_by_filter(self, memory_filter, deadline=None):
        self._check()
        doomed = [key for key, record in self.records.items() if self._matches(record['metadata'], memory_filter)]
        for key in doomed:
            del self.records[key]
        return len(doomed)

    def aggregate_stats(self, user_id):
        self._check()
        owned = [record['metadata'] for record in self.records.values() if record['metadata']['user_id'] == user_id]
        topic_counts: Dict[str, int] = {}
        for metadata in owned:
            for topic in metadata.get('topics', []):
                topic_counts[topic] = topic_counts.get(topic, 0) + 1
        top_topics = sorted(topic_counts, key=lambda topic: topic_counts[topic], reverse=True)[:5]
        return {
            'total_memories': len(owned),
            'total_conversations': len({metadata['conversation_id'] for metadata in owned}),
            'top_topics': top_topics
        }


class FakeConversationLog:
    """Conversation log backed by a dict of conversation id to turns."""

    def __init__(self, conversations: Optional[Dict[str, List[Turn]]] = None):
        self.conversations = conversations or {}

    def list_turns(self, conversation_id):
        return list(self.conversations.get(conversation_id, []))


# ============================================================================
# Factories
# ============================================================================


def make_turns(conversation_id: str, user_id: str, contents: List[str], start: datetime = BASE_TIME) -> List[Turn]:
    """Alternate user/assistant turns one minute apart."""
    turns = []
    for index, content in enumerate(contents):
        turns.append(
            Turn(id=f'{conversation_id}-t{index}',
                 conversation_id=conversation_id,
                 user_id=user_id,
                 role=Role.USER if index % 2 == 0 else Role.ASSISTANT,
                 content=content,
                 timestamp=start + timedelta(minutes=index)))
    return turns


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_embed() -> FakeEmbed:
    return FakeEmbed()


@pytest.fixture
def fake_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def fake_log() -> FakeConversationLog:
    return FakeConversationLog()


@pytest.fixture
def app_config():
    return load_config()


@pytest.fixture
def memory_service(app_config, fake_embed, fake_store, fake_log) -> MemoryService:
    return MemoryService(app_config=app_config, embed=fake_embed, store=fake_store, conversation_log=fake_log)
