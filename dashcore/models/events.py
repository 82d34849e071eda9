"""
Raw event model.

Events are immutable facts emitted by the platform's services. They are
never mutated after ingestion and are retained until pruned.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dashcore.utils.clock import to_naive_utc

from .enums import EventType


class RawEvent(BaseModel):
    """
    A single business event as recorded by the event store.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: Tag from the EventType set
        source_service: Service that emitted the event (e.g. "catalog", "orders")
        user_id: Acting user, if known
        session_id: Browsing session, if known
        timestamp: When the event happened (naive UTC)
        attributes: Free-form event payload
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this event instance",
    )
    event_type: EventType = Field(description="Event type tag")
    source_service: str = Field(min_length=1, description="Service that emitted the event")
    user_id: Optional[str] = Field(default=None, description="Acting user, if known")
    session_id: Optional[str] = Field(default=None, description="Browsing session, if known")
    timestamp: datetime = Field(description="When the event happened (UTC)")
    attributes: dict[str, Any] = Field(
        default_factory=dict, description="Free-form event payload"
    )

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store all instants as naive UTC."""
        return to_naive_utc(v)
