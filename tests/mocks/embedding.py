"""
Mock Embedding Provider

Provides deterministic embeddings for testing without a real model.
"""

import asyncio
import hashlib

import numpy as np


class MockEmbeddingProvider:
    """
    Mock implementation of the embedding capability.

    Features:
    - Deterministic embeddings based on text hash
    - Per-text vector overrides to force similarities
    - Failure injection (first N calls, or always)
    - Optional latency for deadline tests
    """

    def __init__(
        self,
        dimensions: int = 64,
        fail_times: int = 0,
        always_fail: bool = False,
        delay: float = 0.0,
    ):
        self.dimensions = dimensions
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.delay = delay
        self._overrides: dict[str, list[float]] = {}
        self._embed_call_count = 0
        self.texts: list[str] = []

    async def embed(self, text: str) -> list[float]:
        """
        Generate a deterministic embedding based on text hash.

        The same text always produces the same embedding.
        """
        self._embed_call_count += 1
        self.texts.append(text)

        if self.delay:
            await asyncio.sleep(self.delay)

        if self.always_fail or self._embed_call_count <= self.fail_times:
            raise ConnectionError("embedding backend unavailable")

        if text in self._overrides:
            return list(self._overrides[text])
        return self._generate_embedding(text)

    def set_vector(self, text: str, vector: list[float]) -> None:
        """Force the embedding returned for ``text``."""
        self._overrides[text] = list(vector)

    def _generate_embedding(self, text: str) -> list[float]:
        """
        Generate a deterministic embedding vector from text.

        Uses SHA-256 hash as seed for reproducible results.
        """
        text_hash = hashlib.sha256(text.encode()).hexdigest()
        seed = int(text_hash[:8], 16)
        rng = np.random.default_rng(seed)

        embedding = rng.standard_normal(self.dimensions)
        embedding = embedding / np.linalg.norm(embedding)
        return embedding.tolist()

    def reset_call_counts(self) -> None:
        self._embed_call_count = 0

    @property
    def embed_call_count(self) -> int:
        """Number of times embed() was called."""
        return self._embed_call_count


def unit_vector(dimensions: int, index: int, tilt: float = 0.0, tilt_index: int | None = None) -> list[float]:
    """Basis vector, optionally tilted toward another axis."""
    vector = [0.0] * dimensions
    vector[index] = 1.0
    if tilt_index is not None:
        vector[tilt_index] = tilt
    return vector
