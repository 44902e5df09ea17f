"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .deadline import Deadline, ensure_deadline
from .errors import DeadlineExceededError, InvalidInputError, ProviderUnavailableError
from .logging_config import get_logger

logger = get_logger(__name__)

# Output sizes Titan v2 accepts for its `dimensions` parameter
TITAN_DIMENSIONS = (256, 512, 1024)
# Cohere embed accepts at most this many texts per request
COHERE_BATCH_SIZE = 96
# Granularity at which an in-flight request notices caller cancellation
CANCEL_POLL_INTERVAL = 0.05


class BedrockEmbedError(ProviderUnavailableError):
    """Custom exception for Bedrock embedding errors."""
    pass


def project_to_dimension(vector: List[float], dimension: int) -> List[float]:
    """Deterministically fit a vector to `dimension` components.

    Longer vectors are truncated and shorter ones are zero-padded. This is
    lossy: it only keeps vectors comparable when the provider's output size
    does not match the index.
    """
    if len(vector) == dimension:
        return list(vector)
    if len(vector) > dimension:
        return list(vector[:dimension])
    return list(vector) + [0.0] * (dimension - len(vector))


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        # Create Bedrock runtime client; retries are handled here, not by botocore
        self.bedrock = boto3.client(service_name='bedrock-runtime',
                                    region_name=config.region,
                                    config=BotoConfig(connect_timeout=config.timeout,
                                                      read_timeout=config.timeout,
                                                      retries={'max_attempts': 0}))
        # Requests run here so a caller deadline can abandon one that is still in flight
        self._executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix='bedrock-embed')

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id} ({self.dimension} dimensions)')

    @property
    def is_cohere(self) -> bool:
        return 'cohere' in self.model_id.lower()

    @property
    def is_titan(self) -> bool:
        return 'titan' in self.model_id.lower()

    def _invoke(self, body: str) -> dict:
        response = self.bedrock.invoke_model(body=body,
                                             modelId=self.model_id,
                                             accept='application/json',
                                             contentType='application/json')
        return json.loads(response.get('body').read())

    def _invoke_within(self, body: str, deadline: Deadline) -> dict:
        """
        Run one request, giving up when the deadline or the per-request timeout passes.

        The abandoned request keeps its worker until botocore's own read timeout ends it.

        Raises:
            DeadlineExceededError: If the caller deadline expires or is cancelled
            BedrockEmbedError: If the request exceeds the configured timeout
        """
        limit = deadline.remaining(cap=self.config.timeout)
        give_up_at = time.monotonic() + limit
        future = self._executor.submit(self._invoke, body)

        while True:
            try:
                return future.result(timeout=min(CANCEL_POLL_INTERVAL, max(0.0, give_up_at - time.monotonic())))
            except FutureTimeoutError:
                if deadline.expired:
                    future.cancel()
                    deadline.check('Bedrock Embed request')
                if time.monotonic() >= give_up_at:
                    future.cancel()
                    raise BedrockEmbedError(f'Bedrock Embed request timed out after {limit:.2f}s')

    def _call_with_retry(self, data: dict, deadline: Deadline) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary
            deadline: Caller deadline, bounding every attempt and every backoff

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
            DeadlineExceededError: If the deadline passes or the request is cancelled
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            deadline.check('Bedrock Embed request')
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                result = self._invoke_within(body, deadline)
                deadline.check('Bedrock Embed request')
                logger.debug('Bedrock Embed request successful')
                return result

            except DeadlineExceededError:
                raise

            except (ClientError, BotoCoreError, BedrockEmbedError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter, never sleeping past the deadline
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(deadline.remaining(cap=delay))
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _request_vectors(self, texts: List[str], input_type: str, deadline: Deadline) -> List[List[float]]:
        if self.is_titan:
            vectors = []
            for text in texts:
                data = {'inputText': text}
                if self.dimension in TITAN_DIMENSIONS:
                    data['dimensions'] = self.dimension
                response = self._call_with_retry(data, deadline)
                if 'embedding' not in response:
                    raise BedrockEmbedError(f'Titan response without embedding: {list(response)}')
                vectors.append(response['embedding'])
            return vectors

        elif self.is_cohere:
            vectors = []
            for start in range(0, len(texts), COHERE_BATCH_SIZE):
                chunk = texts[start:start + COHERE_BATCH_SIZE]
                data = {'input_type': f'search_{input_type}', 'texts': chunk}
                response = self._call_with_retry(data, deadline)
                embeddings = response.get('embeddings') or []
                if len(embeddings) != len(chunk):
                    raise BedrockEmbedError(f'Cohere returned {len(embeddings)} embeddings for {len(chunk)} texts')
                vectors.extend(embeddings)
            return vectors

        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

    def embed_batch(self,
                    texts: List[str],
                    input_type: str = 'document',
                    deadline: Optional[Deadline] = None) -> List[List[float]]:
        """
        Generate embeddings for several texts, one vector per input in input order.

        Args:
            texts: Texts to embed, each non-empty after trimming
            input_type: 'document' for stored turns, 'query' for search text
            deadline: Optional caller deadline

        Returns:
            List of vectors of the configured dimension

        Raises:
            InvalidInputError: If any text is empty
            BedrockEmbedError: If embedding generation fails
            DeadlineExceededError: If the deadline passes
        """
        if input_type not in ('document', 'query'):
            raise InvalidInputError(f'Unknown input type: {input_type}')
        for index, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise InvalidInputError(f'Empty text at position {index} cannot be embedded')
        if not texts:
            return []

        deadline = ensure_deadline(deadline)
        try:
            raw_vectors = self._request_vectors(list(texts), input_type, deadline)
        except (BedrockEmbedError, DeadlineExceededError):
            raise
        except Exception as e:
            logger.error(f'Error generating embeddings: {e}')
            raise BedrockEmbedError(f'Embedding failed: {e}')

        vectors = []
        for vector in raw_vectors:
            if len(vector) != self.dimension:
                logger.debug(f'Projecting {len(vector)}-dimension embedding to {self.dimension}')
            vectors.append(project_to_dimension(vector, self.dimension))
        return vectors

    def embed(self, text: str, input_type: str = 'document', deadline: Optional[Deadline] = None) -> List[float]:
        """
        Generate the embedding for a single text.

        Raises:
            InvalidInputError: If text is empty
            BedrockEmbedError: If embedding generation fails
        """
        return self.embed_batch([text], input_type=input_type, deadline=deadline)[0]

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed('test')
            return len(test_embedding) == self.dimension

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
