"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    timeout: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    service: str
    index_name: str
    dimension: int
    timeout: float


@dataclass
class MemoryConfig:
    """Configuration for memory writing and retrieval."""
    default_expiration_days: int
    write_concurrency: int
    min_score: float
    default_top_k: int


@dataclass
class ContextConfig:
    """Configuration for context assembly."""
    top_k: int
    retrieval_width_factor: int
    max_topics: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    memory: MemoryConfig
    context: ContextConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')),
                                              timeout=float(os.getenv('BEDROCK_EMBED_TIMEOUT', '30')))

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'es'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'conversation_memory'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         timeout=float(os.getenv('OPENSEARCH_TIMEOUT', '10')))

    # Memory configuration
    memory_config = MemoryConfig(default_expiration_days=int(os.getenv('MEMORY_DEFAULT_EXPIRATION_DAYS', '90')),
                                 write_concurrency=int(os.getenv('MEMORY_WRITE_CONCURRENCY', '4')),
                                 min_score=float(os.getenv('MEMORY_MIN_SCORE', '0.7')),
                                 default_top_k=int(os.getenv('MEMORY_DEFAULT_TOP_K', '10')))

    # Context assembly configuration
    context_config = ContextConfig(top_k=int(os.getenv('CONTEXT_TOP_K', '15')),
                                   retrieval_width_factor=int(os.getenv('CONTEXT_RETRIEVAL_WIDTH_FACTOR', '2')),
                                   max_topics=int(os.getenv('CONTEXT_MAX_TOPICS', '5')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     memory=memory_config,
                     context=context_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
