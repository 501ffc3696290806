"""
In-Memory Store

Reference ``PersistenceBackend`` keeping records in process memory.
Records are copied on the way in and out so callers never share state
with the store.
"""

import asyncio
import copy
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class InMemoryStore:
    """
    Async dict-backed store.

    Supported query filter keys:
    - tags: record must carry every listed tag
    - memory_type: record metadata ``memory_type`` must match
    - keys: restrict to these keys
    """

    def __init__(self):
        self._records: dict[tuple[str, str], dict[str, Any]] = {}
        self._tags: dict[tuple[str, str], set[str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, tenant_id: str, key: str) -> dict[str, Any] | None:
        async with self._lock:
            record = self._records.get((tenant_id, key))
            return copy.deepcopy(record) if record is not None else None

    async def set(
        self,
        tenant_id: str,
        key: str,
        value: dict[str, Any],
        tags: list[str] | None = None,
    ) -> None:
        async with self._lock:
            self._records[(tenant_id, key)] = copy.deepcopy(value)
            self._tags[(tenant_id, key)] = set(tags or [])
        logger.debug("Record stored", tenant_id=tenant_id, key=key)

    async def query(
        self,
        tenant_id: str,
        filter: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        filter = filter or {}
        wanted_tags = set(filter.get("tags") or [])
        memory_type = filter.get("memory_type")
        keys = filter.get("keys")

        async with self._lock:
            results = []
            for (owner, key), record in self._records.items():
                if owner != tenant_id:
                    continue
                if keys is not None and key not in keys:
                    continue
                if wanted_tags and not wanted_tags <= self._tags.get((owner, key), set()):
                    continue
                if memory_type is not None:
                    metadata = record.get("metadata") or {}
                    if metadata.get("memory_type") != memory_type:
                        continue
                results.append(copy.deepcopy(record))
            return results

    async def delete(self, tenant_id: str, key: str) -> None:
        async with self._lock:
            self._records.pop((tenant_id, key), None)
            self._tags.pop((tenant_id, key), None)
        logger.debug("Record deleted", tenant_id=tenant_id, key=key)

    async def keys(self, tenant_id: str) -> list[str]:
        async with self._lock:
            return [key for owner, key in self._records if owner == tenant_id]
