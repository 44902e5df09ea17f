"""
Error taxonomy shared by the write and read paths.
"""

from typing import Dict, List, Optional


class ContextMemoryError(Exception):
    """Base exception for the memory engine."""
    pass


class InvalidInputError(ContextMemoryError, ValueError):
    """Caller violated a precondition. Never retried, never swallowed."""
    pass


class ProviderUnavailableError(ContextMemoryError):
    """Embedding provider or vector store call failed or timed out."""
    pass


class DeadlineExceededError(ProviderUnavailableError):
    """The caller's deadline expired or the request was cancelled."""
    pass


class PartialWriteError(ContextMemoryError):
    """Some turns of a batch could not be written.

    Records written before or alongside the failed ones are kept.
    """

    def __init__(self, failed_indices: List[int], errors: Optional[Dict[int, str]] = None, total: Optional[int] = None):
        self.failed_indices = sorted(failed_indices)
        self.errors = errors or {}
        self.total = total
        of_total = f' of {total}' if total is not None else ''
        super().__init__(f'Failed to write {len(self.failed_indices)}{of_total} turns: indices {self.failed_indices}')
