"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from context_memory.services.memory_management import MemoryService
from context_memory.utils.config import config
from context_memory.utils.errors import ContextMemoryError
from context_memory.utils.health_check import get_health_status
from context_memory.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Conversation Memory')
_memory_service: Optional[MemoryService] = None


def get_memory_service() -> MemoryService:
    """Build the memory service on first use."""
    global _memory_service
    if _memory_service is None:
        _memory_service = MemoryService()
    return _memory_service


@mcp.tool()
def search_memories(user_id: str,
                    query: str,
                    conversation_id: Optional[str] = None,
                    top_k: int = 10,
                    min_score: float = 0.7) -> List[Dict[str, Any]]:
    """Search a user's conversation history.

    Args:
        user_id: User ID
        query: Natural language query
        conversation_id: Restrict the search to one conversation (optional)
        top_k: Maximum number of results to return (default: 10)
        min_score: Minimum similarity in [0, 1] (default: 0.7)

    Returns:
        List of matching turns with content, role, conversation_id, timestamp and score

    Raises:
        InvalidInputError: If the query or user ID is blank, or top_k/min_score are out of range
    """
    memories = get_memory_service().retrieve(query, user_id, conversation_id, top_k, min_score)

    result = [{
        'content': memory.content,
        'role': memory.role.value,
        'conversation_id': memory.conversation_id,
        'timestamp': memory.timestamp.isoformat(),
        'score': memory.score
    } for memory in memories]

    logger.debug(f'MCP search returned {len(result)} memories for user {user_id}')
    return result


@mcp.tool()
def delete_conversation_memory(conversation_id: str) -> int:
    """Delete all memories of a conversation. Returns the number deleted."""
    try:
        return get_memory_service().delete_conversation_memory(conversation_id)
    except ContextMemoryError as e:
        logger.error(f'Memory deletion failed in MCP: {e}')
        raise Exception(f'Memory deletion failed: {e}')


@mcp.tool()
def delete_user_memory(user_id: str) -> int:
    """Delete all memories of a user. Returns the number deleted."""
    try:
        return get_memory_service().delete_user_memory(user_id)
    except ContextMemoryError as e:
        logger.error(f'Memory deletion failed in MCP: {e}')
        raise Exception(f'Memory deletion failed: {e}')


@mcp.tool()
def memory_stats(user_id: str) -> Dict[str, Any]:
    """Count a user's memories and conversations and list their top topics."""
    try:
        stats = get_memory_service().get_memory_stats(user_id)
    except ContextMemoryError as e:
        logger.error(f'Memory stats failed in MCP: {e}')
        raise Exception(f'Memory stats failed: {e}')

    return {
        'total_memories': stats.total_memories,
        'total_conversations': stats.total_conversations,
        'top_topics': stats.top_topics
    }


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report the health of the embedding provider and the vector store."""
    return get_health_status()


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
