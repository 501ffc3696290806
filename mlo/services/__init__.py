"""
External Service Clients

- EmbeddingService: Injected embedding provider with retries and caching
- LLMService: Injected LLM capability used for summarization
"""

from mlo.services.embedding import EmbeddingProvider, EmbeddingService, cosine_similarity
from mlo.services.llm import LLMCaller, LLMService

__all__ = [
    "EmbeddingProvider",
    "EmbeddingService",
    "cosine_similarity",
    "LLMCaller",
    "LLMService",
]
