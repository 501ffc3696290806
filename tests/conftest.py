"""
Pytest Configuration and Fixtures

Provides shared fixtures: test settings, tenant contexts, mock
capabilities, repositories and orchestrator factories.
"""

import pytest

from mlo.config import Settings
from mlo.context import TenantContext
from mlo.engine.entity_aligner import EntityAligner
from mlo.engine.orchestrator import MemoryLifecycleOrchestrator
from mlo.engine.profiles import MemoryProfileRegistry
from mlo.engine.similarity import SimilarityScorer
from mlo.engine.stages.base import StageDependencies
from mlo.models.memory import MemoryItem, MemoryMetadata
from mlo.services.embedding import EmbeddingService
from mlo.services.llm import LLMService
from mlo.storage.association_repo import AssociationRepository
from mlo.storage.entity_repo import EntityRepository
from mlo.storage.memory_store import InMemoryStore

from tests.mocks.embedding import MockEmbeddingProvider
from tests.mocks.llm import MockLLMCaller


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """Settings with no retry backoff so failure tests run instantly."""
    return Settings(
        _env_file=None,
        log_level="DEBUG",
        log_json=False,
        retry_attempts=3,
        retry_wait_min=0,
        retry_wait_max=0,
        retry_wait_multiplier=0,
    )


# =============================================================================
# Context Fixtures
# =============================================================================

@pytest.fixture
def tenant_ctx() -> TenantContext:
    return TenantContext(tenant_id="tenant-a")


@pytest.fixture
def other_tenant_ctx() -> TenantContext:
    return TenantContext(tenant_id="tenant-b")


# =============================================================================
# Mock Capability Fixtures
# =============================================================================

@pytest.fixture
def mock_embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider(dimensions=64)


@pytest.fixture
def embedding_service(mock_embedding_provider, test_settings) -> EmbeddingService:
    return EmbeddingService(mock_embedding_provider, settings=test_settings)


@pytest.fixture
def mock_llm_caller() -> MockLLMCaller:
    return MockLLMCaller()


@pytest.fixture
def llm_service(mock_llm_caller, test_settings) -> LLMService:
    return LLMService(mock_llm_caller, settings=test_settings)


# =============================================================================
# Storage Fixtures
# =============================================================================

@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def entity_repository() -> EntityRepository:
    return EntityRepository()


@pytest.fixture
def association_repository() -> AssociationRepository:
    return AssociationRepository()


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def scorer() -> SimilarityScorer:
    return SimilarityScorer()


@pytest.fixture
def aligner(entity_repository, scorer, test_settings) -> EntityAligner:
    """Aligner without an embedding service (lexical tiers only)."""
    return EntityAligner(entity_repository, scorer=scorer, settings=test_settings)


@pytest.fixture
def stage_deps(test_settings, scorer) -> StageDependencies:
    return StageDependencies(settings=test_settings, scorer=scorer)


@pytest.fixture
def registry() -> MemoryProfileRegistry:
    return MemoryProfileRegistry()


@pytest.fixture
def make_orchestrator(test_settings, registry, store, entity_repository, association_repository):
    """Factory building orchestrators that share the fixture stores."""

    def _make(profile="basic", **overrides) -> MemoryLifecycleOrchestrator:
        kwargs = {
            "store": store,
            "entity_repository": entity_repository,
            "association_repository": association_repository,
            "settings": test_settings,
            "registry": registry,
        }
        kwargs.update(overrides)
        return MemoryLifecycleOrchestrator(profile, **kwargs)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> MemoryLifecycleOrchestrator:
    return make_orchestrator("basic")


# =============================================================================
# Item Factory
# =============================================================================

@pytest.fixture
def make_item():
    """Build a MemoryItem for tenant-a unless told otherwise."""

    def _make(data, item_id="item-1", tenant_id="tenant-a", **metadata) -> MemoryItem:
        return MemoryItem(
            id=item_id,
            tenant_id=tenant_id,
            data=data,
            metadata=MemoryMetadata(**metadata),
        )

    return _make
