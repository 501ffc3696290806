"""
Mock modules for testing.

Provides mock implementations of external capabilities to enable
testing without real models or storage engines.
"""

from tests.mocks.embedding import MockEmbeddingProvider
from tests.mocks.llm import MockLLMCaller
from tests.mocks.store import FailingStore, SlowStore

__all__ = [
    "MockEmbeddingProvider",
    "MockLLMCaller",
    "FailingStore",
    "SlowStore",
]
