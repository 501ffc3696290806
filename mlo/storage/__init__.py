"""
Storage Layer

- PersistenceBackend: Tenant-scoped get/set/query/delete capability
- InMemoryStore: Reference backend
- EntityRepository: Entities, aliases and alignment records
- AssociationRepository: Weighted edges between items
"""

from mlo.storage.association_repo import AssociationRepository
from mlo.storage.base import PersistenceBackend
from mlo.storage.entity_repo import EntityRepository
from mlo.storage.memory_store import InMemoryStore

__all__ = [
    "AssociationRepository",
    "EntityRepository",
    "InMemoryStore",
    "PersistenceBackend",
]
