"""
Memory Lifecycle Orchestrator

A tenant-aware, six-stage memory pipeline (acquisition, encoding,
derivation, retrieval, neural memory, utilization) with entity alignment,
duplicate-confidence scoring and recognition of already-stored memories.
"""

__version__ = "1.0.0"

from mlo.context import CancellationToken, TenantContext
from mlo.engine.orchestrator import MemoryLifecycleOrchestrator
from mlo.engine.profiles import MemoryProfileRegistry, get_profile_registry

__all__ = [
    "CancellationToken",
    "TenantContext",
    "MemoryLifecycleOrchestrator",
    "MemoryProfileRegistry",
    "get_profile_registry",
]
