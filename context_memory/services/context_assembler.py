"""
Context Assembler: merges the live conversation with retrieved memories.
"""

from typing import List, Optional

from ..models.core import AssembledContext, ContextEntry, MemorySearchResult, Role, Turn
from ..utils.deadline import Deadline, ensure_deadline
from ..utils.errors import InvalidInputError, ProviderUnavailableError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_utc
from .content_classifier import MAX_TOPICS, classify_tone, classify_topics, infer_user_preferences
from .memory_retriever import DEFAULT_MIN_SCORE, MemoryRetriever

logger = get_logger(__name__)

LIVE_RELEVANCE = 1.0


def _rank_key(entry: ContextEntry):
    # Live turns win relevance ties and keep their chronological order
    # (the sort is stable); retrieved ties go most recent first.
    if entry.live:
        return (-entry.relevance, 0, 0.0)
    return (-entry.relevance, 1, -entry.timestamp.timestamp())


def rank_entries(entries: List[ContextEntry], top_k: int) -> List[ContextEntry]:
    """Sort by relevance, drop repeated (conversation, timestamp, role) triples, truncate."""
    ranked = sorted(entries, key=_rank_key)

    seen = set()
    unique = []
    for entry in ranked:
        if entry.dedup_key in seen:
            continue
        seen.add(entry.dedup_key)
        unique.append(entry)

    return unique[:top_k]


class ContextAssembler:
    """Build the bounded context window used to generate the next response."""

    def __init__(self,
                 retriever: MemoryRetriever,
                 retrieval_width_factor: int = 2,
                 min_score: float = DEFAULT_MIN_SCORE,
                 max_topics: int = MAX_TOPICS):
        self.retriever = retriever
        self.retrieval_width_factor = max(1, retrieval_width_factor)
        self.min_score = min_score
        self.max_topics = max_topics

    @staticmethod
    def _live_entry(turn: Turn) -> ContextEntry:
        return ContextEntry(id=turn.id,
                            content=turn.content,
                            role=turn.role,
                            conversation_id=turn.conversation_id,
                            timestamp=to_utc(turn.timestamp),
                            relevance=LIVE_RELEVANCE,
                            live=True)

    @staticmethod
    def _memory_entry(result: MemorySearchResult) -> ContextEntry:
        return ContextEntry(id=result.id,
                            content=result.content,
                            role=result.role,
                            conversation_id=result.conversation_id,
                            timestamp=to_utc(result.timestamp),
                            relevance=result.score)

    def assemble_context(self,
                         conversation_id: str,
                         user_id: str,
                         current_query: str,
                         recent_turns: List[Turn],
                         top_k: int = 15,
                         deadline: Optional[Deadline] = None) -> AssembledContext:
        """
        Assemble context for the next response.

        The live conversation's turns carry relevance 1.0; a retrieved memory
        only outranks them with strictly greater relevance. If retrieval fails
        the context holds the recent turns alone and is marked degraded.

        Args:
            conversation_id: Active conversation
            user_id: Owner of the conversation
            current_query: The user's new message
            recent_turns: Active conversation turns in chronological order
            top_k: Maximum number of entries
            deadline: Optional caller deadline

        Returns:
            AssembledContext with at most top_k entries

        Raises:
            InvalidInputError: If a precondition is violated
        """
        if not conversation_id or not conversation_id.strip():
            raise InvalidInputError('Conversation ID is required')
        if not user_id or not user_id.strip():
            raise InvalidInputError('User ID is required')
        if not current_query or not current_query.strip():
            raise InvalidInputError('Current query is required')
        if top_k <= 0:
            raise InvalidInputError(f'top_k must be positive, got {top_k}')

        deadline = ensure_deadline(deadline)
        entries = [self._live_entry(turn) for turn in recent_turns]

        degraded = False
        try:
            memories = self.retriever.search(current_query,
                                             user_id,
                                             conversation_id=None,
                                             top_k=top_k * self.retrieval_width_factor,
                                             min_score=self.min_score,
                                             deadline=deadline)
        except ProviderUnavailableError as e:
            logger.warning(f'Context for conversation {conversation_id} assembled without memories: {e}')
            memories = []
            degraded = True

        # The live thread already represents the current conversation
        entries.extend(self._memory_entry(memory) for memory in memories if memory.conversation_id != conversation_id)

        selected = rank_entries(entries, top_k)
        contents = [entry.content for entry in selected]
        user_contents = [entry.content for entry in selected if entry.role == Role.USER]

        logger.debug(f'Assembled {len(selected)} entries for conversation {conversation_id} '
                     f'({sum(1 for entry in selected if not entry.live)} from memory)')

        return AssembledContext(conversation_id=conversation_id,
                                user_id=user_id,
                                entries=selected,
                                topics=classify_topics(contents, self.max_topics),
                                tone=classify_tone(contents),
                                user_preferences=infer_user_preferences(user_contents, self.max_topics),
                                degraded=degraded)
