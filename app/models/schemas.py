from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TrackingStatus = Literal["sent", "opened", "bounced"]


class OpenEvent(BaseModel):
    timestamp: datetime
    user_agent: str = Field(alias="userAgent")
    ip: str

    model_config = ConfigDict(populate_by_name=True)


class ResponseDetails(BaseModel):
    timestamp: datetime | None = None
    user_agent: str | None = Field(default=None, alias="userAgent")
    ip: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class TrackingRecord(BaseModel):
    """One sent email, as persisted in the `emails` collection."""

    model_config = ConfigDict(populate_by_name=True)

    tracking_id: str = Field(alias="trackingId")
    message_id: str = Field(alias="messageId")
    to: str
    subject: str
    body: str
    status: TrackingStatus = "sent"
    sent_at: datetime = Field(alias="sentAt")
    bounce_details: dict[str, Any] = Field(default_factory=dict, alias="bounceDetails")
    response_details: ResponseDetails = Field(default_factory=ResponseDetails, alias="responseDetails")
    open_count: int = Field(default=0, alias="openCount")
    last_opened: datetime | None = Field(default=None, alias="lastOpened")
    open_history: list[OpenEvent] = Field(default_factory=list, alias="openHistory")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class PingResponse(BaseModel):
    success: bool
    timestamp: datetime | None = None
    connection_state: str | None = Field(default=None, serialization_alias="connectionState")
    error: str | None = None
    details: str | None = None
