"""
Association Model

Weighted edges between memory items built by the neural memory stage.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from mlo.models.memory import utcnow


class Association(BaseModel):
    """
    Weighted relationship between two memory items of the same tenant.

    Bidirectional edges are stored once and answer lookups from either end.
    """

    tenant_id: str
    from_item_id: str
    to_item_id: str
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    association_type: str = "related_to"
    bidirectional: bool = True
    shared_cues: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_no_self_reference(self) -> "Association":
        """Ensure an association doesn't reference the same item."""
        if self.from_item_id == self.to_item_id:
            raise ValueError("Association cannot reference the same item (self-reference)")
        return self

    @property
    def key(self) -> tuple[str, str, str]:
        if self.bidirectional:
            a, b = sorted((self.from_item_id, self.to_item_id))
            return (self.tenant_id, a, b)
        return (self.tenant_id, self.from_item_id, self.to_item_id)

    def connects(self, item_id: str) -> bool:
        if self.from_item_id == item_id:
            return True
        return self.bidirectional and self.to_item_id == item_id

    def other_end(self, item_id: str) -> str:
        return self.to_item_id if self.from_item_id == item_id else self.from_item_id


class StrengthUpdate(BaseModel):
    """Result of ``update_association_strength``."""

    old_strength: float
    new_strength: float
    updated: bool
    association: Association | None = None
