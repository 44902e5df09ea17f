"""
Memory Management Service for unified memory operations.
"""

from typing import List, Optional

from ..models.core import AssembledContext, MemoryFilter, MemorySearchResult, MemoryStats, Turn
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import AppConfig
from ..utils.config import config as default_config
from ..utils.deadline import Deadline
from ..utils.errors import InvalidInputError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import days_ago
from .content_classifier import classify_topics
from .context_assembler import ContextAssembler
from .conversation_log import ConversationLogStore
from .memory_retriever import MemoryRetriever
from .memory_writer import MemoryWriter

logger = get_logger(__name__)


class MemoryService:
    """Unified service for storing, retrieving, assembling and purging conversation memory."""

    def __init__(self,
                 app_config: Optional[AppConfig] = None,
                 embed: Optional[BedrockEmbed] = None,
                 store: Optional[OpenSearchClient] = None,
                 conversation_log: Optional[ConversationLogStore] = None,
                 create_index: bool = True):
        """
        Initialize the memory service.

        Args:
            app_config: Application configuration, uses the global config if None
            embed: Embedding client, built from config if None
            store: Vector store client, built from config if None
            conversation_log: Host conversation log, needed only by log-backed operations
            create_index: Create the memory index on startup if missing
        """
        self.config = app_config or default_config
        self.embed = embed or BedrockEmbed(self.config.bedrock_embed)
        self.store = store or OpenSearchClient(self.config.opensearch)
        self.conversation_log = conversation_log

        self.writer = MemoryWriter(self.embed, self.store, max_workers=self.config.memory.write_concurrency)
        self.retriever = MemoryRetriever(self.embed, self.store)
        self.assembler = ContextAssembler(self.retriever,
                                          retrieval_width_factor=self.config.context.retrieval_width_factor,
                                          min_score=self.config.memory.min_score,
                                          max_topics=self.config.context.max_topics)

        if create_index:
            try:
                self.store.create_index_if_not_exists()
            except OpenSearchError as e:
                logger.warning(f'Failed to create OpenSearch index: {e}')

        logger.info('Initialized MemoryService')

    def store_conversation_memory(self,
                                  conversation_id: str,
                                  user_id: str,
                                  turns: List[Turn],
                                  deadline: Optional[Deadline] = None) -> List[str]:
        """Make a batch of turns searchable. See MemoryWriter.store_conversation_memory."""
        return self.writer.store_conversation_memory(conversation_id, user_id, turns, deadline=deadline)

    def store_conversation_from_log(self,
                                    conversation_id: str,
                                    user_id: str,
                                    deadline: Optional[Deadline] = None) -> List[str]:
        """Read a conversation from the log store and write all of its turns."""
        turns = self._log().list_turns(conversation_id)
        return self.writer.store_conversation_memory(conversation_id, user_id, turns, deadline=deadline)

    def retrieve(self,
                 query: str,
                 user_id: str,
                 conversation_id: Optional[str] = None,
                 top_k: Optional[int] = None,
                 min_score: Optional[float] = None,
                 deadline: Optional[Deadline] = None) -> List[MemorySearchResult]:
        """Ad-hoc memory search, empty on provider failure. See MemoryRetriever.retrieve."""
        return self.retriever.retrieve(query,
                                       user_id,
                                       conversation_id=conversation_id,
                                       top_k=top_k if top_k is not None else self.config.memory.default_top_k,
                                       min_score=min_score if min_score is not None else self.config.memory.min_score,
                                       deadline=deadline)

    def assemble_context(self,
                         conversation_id: str,
                         user_id: str,
                         current_query: str,
                         recent_turns: List[Turn],
                         top_k: Optional[int] = None,
                         deadline: Optional[Deadline] = None) -> AssembledContext:
        """Context for the next response. See ContextAssembler.assemble_context."""
        return self.assembler.assemble_context(conversation_id,
                                               user_id,
                                               current_query,
                                               recent_turns,
                                               top_k=top_k if top_k is not None else self.config.context.top_k,
                                               deadline=deadline)

    def delete_conversation_memory(self, conversation_id: str) -> int:
        """
        Delete every memory of a conversation.

        Returns:
            Number of deleted records

        Raises:
            InvalidInputError: If conversation_id is empty
            OpenSearchError: If the delete fails
        """
        if not conversation_id or not conversation_id.strip():
            raise InvalidInputError('Conversation ID is required')
        deleted = self.store.delete_by_filter(MemoryFilter(conversation_id=conversation_id))
        logger.info(f'Deleted {deleted} memories of conversation {conversation_id}')
        return deleted

    def delete_user_memory(self, user_id: str) -> int:
        """
        Delete every memory of a user.

        Returns:
            Number of deleted records
        """
        if not user_id or not user_id.strip():
            raise InvalidInputError('User ID is required')
        deleted = self.store.delete_by_filter(MemoryFilter(user_id=user_id))
        logger.info(f'Deleted {deleted} memories of user {user_id}')
        return deleted

    def cleanup_old_memories(self, user_id: str, older_than_days: Optional[int] = None) -> int:
        """
        Remove a user's memories older than a retention window.

        Args:
            user_id: User whose memories are cleaned up
            older_than_days: Retention in days, defaults to MEMORY_DEFAULT_EXPIRATION_DAYS

        Returns:
            Number of memories deleted
        """
        if not user_id or not user_id.strip():
            raise InvalidInputError('User ID is required')
        days = older_than_days if older_than_days is not None else self.config.memory.default_expiration_days
        if days < 0:
            raise InvalidInputError(f'older_than_days must not be negative, got {days}')

        deleted = self.store.delete_by_filter(MemoryFilter(user_id=user_id, end=days_ago(days)))
        if deleted > 0:
            logger.info(f'Cleaned up {deleted} memories older than {days} days for user {user_id}')
        else:
            logger.debug(f'No memories older than {days} days for user {user_id}')
        return deleted

    def get_memory_stats(self, user_id: str) -> MemoryStats:
        """Aggregate counts and most frequent topics of a user's memories."""
        if not user_id or not user_id.strip():
            raise InvalidInputError('User ID is required')
        stats = self.store.aggregate_stats(user_id)
        return MemoryStats(user_id=user_id,
                           total_memories=stats['total_memories'],
                           total_conversations=stats['total_conversations'],
                           top_topics=stats['top_topics'])

    def generate_memory_summary(self, conversation_id: str) -> str:
        """Summarize a logged conversation by the topics it covered."""
        turns = self._log().list_turns(conversation_id)
        if not turns:
            return ''
        topics = classify_topics(turn.content for turn in turns)
        return f'Conversation covered: {", ".join(topics)}'

    def _log(self) -> ConversationLogStore:
        if self.conversation_log is None:
            raise InvalidInputError('No conversation log store configured')
        return self.conversation_log
