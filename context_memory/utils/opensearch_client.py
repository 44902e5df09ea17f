"""
OpenSearch client wrapper for conversation memory vector search.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.core import MemoryFilter, MemorySearchResult, Role
from .config import OpenSearchConfig
from .deadline import Deadline, ensure_deadline
from .errors import DeadlineExceededError, InvalidInputError, ProviderUnavailableError
from .logging_config import get_logger
from .timestamp_utils import parse_timestamp, to_iso

logger = get_logger(__name__)

MAX_STATS_TOPICS = 5


class OpenSearchError(ProviderUnavailableError):
    """Custom exception for OpenSearch errors."""
    pass


def score_to_similarity(score: float) -> float:
    """Convert a lucene cosinesimil score back to cosine similarity in [0, 1].

    The engine reports (1 + cos) / 2. Negative cosines carry no useful
    signal for retrieval and are clamped to 0.
    """
    similarity = 2.0 * score - 1.0
    return min(1.0, max(0.0, similarity))


def build_filter_clauses(memory_filter: MemoryFilter) -> List[Dict[str, Any]]:
    """Translate a MemoryFilter into OpenSearch bool filter clauses."""
    clauses = []
    if memory_filter.user_id:
        clauses.append({'term': {'user_id': memory_filter.user_id}})
    if memory_filter.conversation_id:
        clauses.append({'term': {'conversation_id': memory_filter.conversation_id}})
    if memory_filter.start or memory_filter.end:
        time_range = {}
        if memory_filter.start:
            time_range['gte'] = to_iso(memory_filter.start)
        if memory_filter.end:
            time_range['lt'] = to_iso(memory_filter.end)
        clauses.append({'range': {'timestamp': time_range}})
    return clauses


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config
        self.index_name = config.index_name

        # Get AWS credentials and create auth
        credentials = boto3.Session().get_credentials()
        auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
        # Parse endpoint to get host
        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 timeout=config.timeout,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def _timeout(self, deadline: Deadline, operation: str) -> float:
        deadline.check(operation)
        return deadline.remaining(cap=self.config.timeout)

    @staticmethod
    def _check_expired(deadline: Deadline, operation: str, error: Exception) -> None:
        # A request cut short by the remaining-time cap is a deadline failure, not a store outage
        if deadline.expired:
            logger.warning(f'{operation} stopped by the caller deadline: {error}')
            raise DeadlineExceededError(f'{operation} exceeded its deadline: {error}')

    def create_index_if_not_exists(self, sync_wait: float = 15.0) -> str:
        """
        Create the memory index with its k-NN mapping if it doesn't exist.

        Args:
            sync_wait: Seconds to wait for a newly created index to become searchable

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            index_body = {
                'mappings': {
                    'properties': {
                        'record_id': {
                            'type': 'keyword'
                        },
                        'user_id': {
                            'type': 'keyword'
                        },
                        'conversation_id': {
                            'type': 'keyword'
                        },
                        'role': {
                            'type': 'keyword'
                        },
                        'content': {
                            'type': 'text'
                        },
                        'topics': {
                            'type': 'keyword'
                        },
                        'tone': {
                            'type': 'keyword'
                        },
                        'conversation_type': {
                            'type': 'keyword'
                        },
                        'semantic_chunk': {
                            'type': 'text'
                        },
                        'conversation_flow': {
                            'type': 'keyword'
                        },
                        'turn_index': {
                            'type': 'integer'
                        },
                        'turn_count': {
                            'type': 'integer'
                        },
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'lucene'
                            }
                        },
                        'timestamp': {
                            'type': 'date'
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True
                    }
                }
            }

            response = self.client.indices.create(index=self.index_name, body=index_body)
            logger.info(f'Created index {self.index_name}')
            if response.get('acknowledged', False):
                if sync_wait > 0:
                    logger.info(f'Waiting {sync_wait}s for index {self.index_name} sync-up...')
                    time.sleep(sync_wait)
                return 'created'
            else:
                return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')

    def upsert(self,
               record_id: str,
               vector: List[float],
               metadata: Dict[str, Any],
               deadline: Optional[Deadline] = None) -> None:
        """
        Write a memory record, replacing any record with the same id.

        Args:
            record_id: Deterministic record id, used as the document id
            vector: Embedding of the record content
            metadata: Record metadata; datetime values must already be serialized

        Raises:
            InvalidInputError: If the vector has the wrong dimension
            OpenSearchError: If the write fails
        """
        if len(vector) != self.config.dimension:
            raise InvalidInputError(f'Vector has {len(vector)} dimensions, index expects {self.config.dimension}')

        deadline = ensure_deadline(deadline)
        document = dict(metadata)
        document['record_id'] = record_id
        document['embedding'] = vector

        try:
            response = self.client.index(index=self.index_name,
                                         id=record_id,
                                         body=document,
                                         request_timeout=self._timeout(deadline, 'upsert'))
        except DeadlineExceededError:
            raise
        except OpenSearchException as e:
            self._check_expired(deadline, 'upsert', e)
            logger.error(f'Error upserting record {record_id}: {e}')
            raise OpenSearchError(f'Failed to upsert record: {e}')
        except Exception as e:
            logger.error(f'Unexpected error upserting record {record_id}: {e}')
            raise OpenSearchError(f'Unexpected error upserting record: {e}')

        if response.get('result') not in ['created', 'updated']:
            raise OpenSearchError(f'Unexpected result upserting record {record_id}: {response}')
        logger.debug(f'Upserted record {record_id} ({response.get("result")})')

    def query(self,
              vector: List[float],
              memory_filter: MemoryFilter,
              top_k: int,
              deadline: Optional[Deadline] = None) -> List[MemorySearchResult]:
        """
        Perform filtered vector similarity search.

        Args:
            vector: Query vector
            memory_filter: Metadata predicate; user_id is required
            top_k: Maximum number of results to return

        Returns:
            At most top_k results, ordered by similarity descending

        Raises:
            InvalidInputError: If user_id is missing or top_k is not positive
            OpenSearchError: If the search fails
        """
        if not memory_filter.user_id:
            raise InvalidInputError('Vector queries must be scoped to a user')
        if top_k <= 0:
            raise InvalidInputError(f'top_k must be positive, got {top_k}')

        deadline = ensure_deadline(deadline)
        search_body = {
            'size': top_k,
            'query': {
                'knn': {
                    'embedding': {
                        'vector': vector,
                        'k': top_k,
                        'filter': {
                            'bool': {
                                'filter': build_filter_clauses(memory_filter)
                            }
                        }
                    }
                }
            },
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }

        try:
            response = self.client.search(index=self.index_name,
                                          body=search_body,
                                          request_timeout=self._timeout(deadline, 'vector query'))
        except DeadlineExceededError:
            raise
        except OpenSearchException as e:
            self._check_expired(deadline, 'vector query', e)
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

        results = []
        for hit in response['hits']['hits']:
            doc = hit['_source']
            results.append(
                MemorySearchResult(id=hit['_id'],
                                   content=doc.get('content', ''),
                                   role=Role(doc.get('role', Role.USER.value)),
                                   conversation_id=doc.get('conversation_id', ''),
                                   timestamp=parse_timestamp(doc.get('timestamp')),
                                   score=score_to_similarity(hit['_score']),
                                   metadata=doc))

        results.sort(key=lambda result: result.score, reverse=True)
        logger.debug(f'Vector search returned {len(results)} results for user {memory_filter.user_id}')
        return results[:top_k]

    def delete_by_filter(self, memory_filter: MemoryFilter, deadline: Optional[Deadline] = None) -> int:
        """
        Delete every record matching the filter.

        Returns:
            Number of deleted records

        Raises:
            InvalidInputError: If the filter is empty
            OpenSearchError: If the delete fails
        """
        if memory_filter.is_empty():
            raise InvalidInputError('Refusing to delete with an empty filter')

        deadline = ensure_deadline(deadline)
        body = {'query': {'bool': {'filter': build_filter_clauses(memory_filter)}}}

        try:
            response = self.client.delete_by_query(index=self.index_name,
                                                   body=body,
                                                   conflicts='proceed',
                                                   request_timeout=self._timeout(deadline, 'delete by filter'))
        except DeadlineExceededError:
            raise
        except NotFoundError:
            logger.warning(f'Index {self.index_name} not found for deletion')
            return 0
        except OpenSearchException as e:
            self._check_expired(deadline, 'delete by filter', e)
            logger.error(f'Error deleting by filter {memory_filter}: {e}')
            raise OpenSearchError(f'Failed to delete records: {e}')

        deleted = int(response.get('deleted', 0))
        logger.debug(f'Deleted {deleted} records matching {memory_filter}')
        return deleted

    def aggregate_stats(self, user_id: str) -> Dict[str, Any]:
        """
        Aggregate a user's records.

        Returns:
            Dictionary with total_memories, total_conversations and top_topics
        """
        body = {
            'size': 0,
            'track_total_hits': True,
            'query': {
                'bool': {
                    'filter': build_filter_clauses(MemoryFilter(user_id=user_id))
                }
            },
            'aggs': {
                'conversations': {
                    'cardinality': {
                        'field': 'conversation_id'
                    }
                },
                'topics': {
                    'terms': {
                        'field': 'topics',
                        'size': MAX_STATS_TOPICS
                    }
                }
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=body)
        except NotFoundError:
            return {'total_memories': 0, 'total_conversations': 0, 'top_topics': []}
        except OpenSearchException as e:
            logger.error(f'Error aggregating stats for user {user_id}: {e}')
            raise OpenSearchError(f'Stats aggregation failed: {e}')

        aggregations = response.get('aggregations', {})
        return {
            'total_memories': int(response['hits']['total']['value']),
            'total_conversations': int(aggregations.get('conversations', {}).get('value', 0)),
            'top_topics': [bucket['key'] for bucket in aggregations.get('topics', {}).get('buckets', [])]
        }

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
