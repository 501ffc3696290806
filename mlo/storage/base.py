"""
Persistence Capability

The orchestrator only needs four tenant-scoped primitives from the
underlying storage engine. Any object with these coroutine methods can be
plugged in.
"""

from typing import Any, Protocol


class PersistenceBackend(Protocol):
    """Tenant-scoped key/value store with tag filtering."""

    async def get(self, tenant_id: str, key: str) -> dict[str, Any] | None:
        ...

    async def set(
        self,
        tenant_id: str,
        key: str,
        value: dict[str, Any],
        tags: list[str] | None = None,
    ) -> None:
        ...

    async def query(
        self,
        tenant_id: str,
        filter: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        ...

    async def delete(self, tenant_id: str, key: str) -> None:
        ...
