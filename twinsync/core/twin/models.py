"""
Twin, definition and state models.

A twin owns an append-only list of definitions; the last one decides which
telemetry attributes are captured into state snapshots.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

Metadata = Dict[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Attribute(BaseModel):
    """Binding of a telemetry topic coordinate to a persistence policy."""

    channel: str = Field(..., description="Channel the attribute values arrive on")
    subtopic: str = Field(default="", description="Subtopic within the channel")
    persist_state: bool = Field(default=False, description="Capture values into twin state")


class Definition(BaseModel):
    id: int = 0
    created: Optional[datetime] = None
    attributes: Dict[str, Attribute] = Field(default_factory=dict)


class Twin(BaseModel):
    id: str = ""
    owner: str = ""
    name: str = ""
    thing_id: str = ""
    revision: int = 0
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    definitions: List[Definition] = Field(default_factory=list)
    metadata: Metadata = Field(default_factory=dict)

    def latest_definition(self) -> Definition:
        """Definition currently used for routing telemetry into state."""
        return self.definitions[-1]


class State(BaseModel):
    twin_id: str = ""
    id: int = 0
    definition: int = 0
    created: Optional[datetime] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class PageMetadata(BaseModel):
    total: int = 0
    offset: int = 0
    limit: int = 0


class TwinsPage(PageMetadata):
    twins: List[Twin] = Field(default_factory=list)


class StatesPage(PageMetadata):
    states: List[State] = Field(default_factory=list)


__all__ = [
    "Metadata",
    "Attribute",
    "Definition",
    "Twin",
    "State",
    "PageMetadata",
    "TwinsPage",
    "StatesPage",
    "utcnow",
]
