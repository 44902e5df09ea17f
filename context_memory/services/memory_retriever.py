"""
Memory Retriever: similarity search over a user's stored turns.
"""

from typing import List, Optional

from ..models.core import MemoryFilter, MemorySearchResult
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.deadline import Deadline, ensure_deadline
from ..utils.errors import InvalidInputError, ProviderUnavailableError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient

logger = get_logger(__name__)

DEFAULT_MIN_SCORE = 0.7


class MemoryRetriever:
    """Embed a query and return prior turns above a similarity floor."""

    def __init__(self, embed: BedrockEmbed, store: OpenSearchClient):
        self.embed = embed
        self.store = store

    def search(self,
               query: str,
               user_id: str,
               conversation_id: Optional[str] = None,
               top_k: int = 10,
               min_score: float = DEFAULT_MIN_SCORE,
               deadline: Optional[Deadline] = None) -> List[MemorySearchResult]:
        """
        Search a user's memories, propagating provider failures.

        Results below min_score are discarded, not down-weighted.

        Args:
            query: Free-text query
            user_id: User whose memories are searched
            conversation_id: Restrict the search to one conversation when given
            top_k: Maximum number of results
            min_score: Similarity floor in [0, 1]
            deadline: Optional caller deadline

        Returns:
            At most top_k results, by score descending then timestamp descending

        Raises:
            InvalidInputError: If a precondition is violated
            ProviderUnavailableError: If embedding or the vector store fails
        """
        if not query or not query.strip():
            raise InvalidInputError('Query is required')
        if not user_id or not user_id.strip():
            raise InvalidInputError('User ID is required')
        if top_k <= 0:
            raise InvalidInputError(f'top_k must be positive, got {top_k}')
        if not 0.0 <= min_score <= 1.0:
            raise InvalidInputError(f'min_score must be within [0, 1], got {min_score}')

        deadline = ensure_deadline(deadline)
        memory_filter = MemoryFilter(user_id=user_id, conversation_id=conversation_id)

        query_vector = self.embed.embed(query, input_type='query', deadline=deadline)
        results = self.store.query(query_vector, memory_filter, top_k, deadline=deadline)

        kept = [result for result in results if result.score >= min_score]
        if len(kept) < len(results):
            logger.debug(f'Discarded {len(results) - len(kept)} results below score {min_score}')

        # Two stable sorts: timestamp descending breaks score ties
        kept.sort(key=lambda result: result.timestamp, reverse=True)
        kept.sort(key=lambda result: result.score, reverse=True)
        return kept[:top_k]

    def retrieve(self,
                 query: str,
                 user_id: str,
                 conversation_id: Optional[str] = None,
                 top_k: int = 10,
                 min_score: float = DEFAULT_MIN_SCORE,
                 deadline: Optional[Deadline] = None) -> List[MemorySearchResult]:
        """
        Search a user's memories, degrading to an empty list on provider failure.

        Raises:
            InvalidInputError: If a precondition is violated
        """
        try:
            return self.search(query, user_id, conversation_id, top_k, min_score, deadline)
        except ProviderUnavailableError as e:
            logger.warning(f'Memory retrieval degraded for user {user_id}: {e}')
            return []
