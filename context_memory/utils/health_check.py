"""
Health check utilities for the application.
"""

from typing import Any, Dict

from .bedrock_embed import BedrockEmbed
from .config import config
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def check_health() -> bool:
    """Check the health of the embedding provider and the vector store.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status()

        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All memory components are healthy')
        else:
            logger.warning('Some memory components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of each component.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    try:
        embed = BedrockEmbed(config.bedrock_embed)
        health_status['bedrock_embed'] = {
            'healthy': embed.health_check(),
            'service': 'Amazon Bedrock Embed',
            'model': config.bedrock_embed.model_id,
            'dimension': config.bedrock_embed.dimension
        }
    except Exception as e:
        health_status['bedrock_embed'] = {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': str(e)}

    try:
        opensearch = OpenSearchClient(config.opensearch)
        health_status['opensearch'] = {
            'healthy': opensearch.health_check(),
            'service': 'Amazon OpenSearch',
            'endpoint': config.opensearch.endpoint,
            'index': config.opensearch.index_name
        }
    except Exception as e:
        health_status['opensearch'] = {'healthy': False, 'service': 'Amazon OpenSearch', 'error': str(e)}

    return health_status
