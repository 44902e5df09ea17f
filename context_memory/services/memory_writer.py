"""
Memory Writer: makes conversation turns searchable.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from ..models.core import MemoryRecord, Turn
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.deadline import Deadline, ensure_deadline
from ..utils.errors import DeadlineExceededError, InvalidInputError, PartialWriteError, ProviderUnavailableError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from ..utils.timestamp_utils import to_iso
from .content_classifier import (
    classify_tone,
    classify_topics,
    conversation_flow,
    detect_conversation_type,
    semantic_chunk,
)

logger = get_logger(__name__)


class MemoryWriter:
    """Embed and upsert turns with bounded parallelism, best effort per turn."""

    def __init__(self, embed: BedrockEmbed, store: OpenSearchClient, max_workers: int = 4):
        """
        Initialize the memory writer.

        Args:
            embed: Embedding client
            store: Vector store client
            max_workers: Maximum concurrent embed+upsert operations
        """
        if max_workers < 1:
            raise InvalidInputError(f'max_workers must be at least 1, got {max_workers}')
        self.embed = embed
        self.store = store
        self.max_workers = max_workers

    @staticmethod
    def _validate(conversation_id: str, user_id: str, turns: List[Turn]) -> None:
        if not conversation_id or not conversation_id.strip():
            raise InvalidInputError('Conversation ID is required')
        if not user_id or not user_id.strip():
            raise InvalidInputError('User ID is required')
        for index, turn in enumerate(turns):
            if not turn.content or not turn.content.strip():
                raise InvalidInputError(f'Turn {index} has empty content')
            if turn.conversation_id != conversation_id:
                raise InvalidInputError(f'Turn {index} belongs to conversation {turn.conversation_id}, not {conversation_id}')
            if turn.user_id != user_id:
                raise InvalidInputError(f'Turn {index} belongs to another user')

    def build_record(self, turn: Turn, turn_index: int, turn_count: int, conversation_type: str, flow: str,
                     vector: List[float]) -> MemoryRecord:
        """Build the MemoryRecord for one embedded turn."""
        metadata = {
            'conversation_id': turn.conversation_id,
            'user_id': turn.user_id,
            'turn_id': turn.id,
            'role': turn.role.value,
            'content': turn.content,
            'timestamp': to_iso(turn.timestamp),
            'topics': classify_topics([turn.content]),
            'tone': classify_tone([turn.content]).value,
            'semantic_chunk': semantic_chunk(turn.content),
            'conversation_flow': flow,
            'conversation_type': conversation_type,
            'turn_index': turn_index,
            'turn_count': turn_count,
        }
        return MemoryRecord(id=MemoryRecord.record_id(turn.conversation_id, turn_index), vector=vector, metadata=metadata)

    def _write_turn(self, turn: Turn, turn_index: int, turn_count: int, conversation_type: str, flow: str,
                    deadline: Deadline) -> str:
        deadline.check(f'write of turn {turn_index}')
        vector = self.embed.embed(turn.content, input_type='document', deadline=deadline)
        record = self.build_record(turn, turn_index, turn_count, conversation_type, flow, vector)
        self.store.upsert(record.id, record.vector, record.metadata, deadline=deadline)
        return record.id

    def store_conversation_memory(self,
                                  conversation_id: str,
                                  user_id: str,
                                  turns: List[Turn],
                                  deadline: Optional[Deadline] = None) -> List[str]:
        """
        Embed and persist every turn of a conversation.

        Turns are written concurrently; a failed turn does not stop the others.

        Args:
            conversation_id: Conversation the turns belong to
            user_id: Owner of the conversation
            turns: Turns in the order they were produced
            deadline: Optional caller deadline

        Returns:
            Ids of the records written

        Raises:
            InvalidInputError: If a precondition is violated (nothing is written)
            DeadlineExceededError: If the deadline expired before all turns were written
            PartialWriteError: If some turns failed; written records are kept
        """
        self._validate(conversation_id, user_id, turns)
        if not turns:
            logger.warning(f'No turns provided for conversation {conversation_id}')
            return []

        deadline = ensure_deadline(deadline)
        turn_count = len(turns)
        conversation_type = detect_conversation_type(turn.content for turn in turns)

        written: Dict[int, str] = {}
        errors: Dict[int, str] = {}
        cancelled: List[int] = []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, turn_count)) as executor:
            futures = {
                executor.submit(self._write_turn, turn, index, turn_count, conversation_type,
                                conversation_flow(turns, index), deadline): index
                for index, turn in enumerate(turns)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    written[index] = future.result()
                except DeadlineExceededError as e:
                    cancelled.append(index)
                    errors[index] = str(e)
                except ProviderUnavailableError as e:
                    # A transport timeout cut short by the caller deadline is a deadline failure
                    if deadline.expired:
                        cancelled.append(index)
                    else:
                        logger.error(f'Failed to write turn {index} of conversation {conversation_id}: {e}')
                    errors[index] = str(e)
                except InvalidInputError as e:
                    logger.error(f'Failed to write turn {index} of conversation {conversation_id}: {e}')
                    errors[index] = str(e)

        if cancelled:
            logger.error(f'Deadline exceeded writing conversation {conversation_id}: '
                         f'{len(written)} of {turn_count} turns written')
            raise DeadlineExceededError(f'Memory write for conversation {conversation_id} interrupted: '
                                        f'{len(written)} of {turn_count} turns written')
        if errors:
            raise PartialWriteError(list(errors), errors, total=turn_count)

        logger.info(f'Stored {turn_count} turns in memory for conversation {conversation_id}')
        return [written[index] for index in sorted(written)]
