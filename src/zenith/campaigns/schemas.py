"""Pydantic schemas for internal (saved) campaigns.

SavedCampaign is the record produced by campaign generation and kept by the
app. The sync layer only reads it, plus writes ``external_ids`` -- the
per-connection link to the provider record created for it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field, JsonValue


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class SavedCampaign(BaseModel):
    """A generated marketing campaign as stored by the app.

    Attributes:
        result: Generated content (opaque JSON from the content generator).
        external_ids: connection id -> provider record id. Presence of the
            active connection's id is what makes a sync an update.
    """

    id: str
    name: str
    description: str = ""
    product_description: str = ""
    status: CampaignStatus = CampaignStatus.DRAFT
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 1
    result: dict[str, JsonValue] = Field(default_factory=dict)
    external_ids: dict[str, str] = Field(default_factory=dict)

    def snapshot_json(self) -> str:
        """Serialized copy of the record without its provider links."""
        return self.model_dump_json(exclude={"external_ids"})


@runtime_checkable
class AccessControl(Protocol):
    """Permission check supplied by the authentication layer."""

    def has_permission(self, action: str) -> bool: ...
