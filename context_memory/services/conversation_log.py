"""
Read-only contract for the conversation log owned by the host application.
"""

from abc import ABC, abstractmethod
from typing import List

from ..models.core import Turn


class ConversationLogStore(ABC):
    """Ordered, append-only record of turns per conversation."""

    @abstractmethod
    def list_turns(self, conversation_id: str) -> List[Turn]:
        """Return the conversation's turns in the order they were produced."""
        raise NotImplementedError
