from __future__ import annotations

import uuid
from datetime import datetime, timezone
from email.utils import make_msgid
from typing import Any

from pymongo import ReturnDocument

from app.models.schemas import OpenEvent, TrackingRecord


async def ensure_indexes(collection: Any) -> None:
    await collection.create_index("trackingId", unique=True)
    await collection.create_index("messageId", unique=True)


def new_tracking_id() -> str:
    return uuid.uuid4().hex


async def create_tracking_record(
    collection: Any,
    to: str,
    subject: str,
    body: str,
    tracking_id: str | None = None,
    message_id: str | None = None,
) -> TrackingRecord:
    now = datetime.now(timezone.utc)
    record = TrackingRecord(
        tracking_id=tracking_id or new_tracking_id(),
        message_id=message_id or make_msgid(),
        to=to,
        subject=subject,
        body=body,
        status="sent",
        sent_at=now,
        created_at=now,
        updated_at=now,
    )
    await collection.insert_one(record.model_dump(by_alias=True))
    return record


async def find_record(collection: Any, tracking_id: str) -> TrackingRecord | None:
    doc = await collection.find_one({"trackingId": tracking_id}, projection={"_id": 0})
    if doc is None:
        return None
    return TrackingRecord.model_validate(doc)


def build_open_update(event: OpenEvent, history_limit: int | None = None) -> dict[str, Any]:
    """The whole open as one document update: status, last-open fields, history entry, counter."""

    entry = event.model_dump(by_alias=True)
    if history_limit:
        push: Any = {"$each": [entry], "$slice": -history_limit}
    else:
        push = entry

    return {
        "$set": {
            "status": "opened",
            "lastOpened": event.timestamp,
            "responseDetails.timestamp": event.timestamp,
            "responseDetails.userAgent": event.user_agent,
            "responseDetails.ip": event.ip,
            "updatedAt": event.timestamp,
        },
        "$push": {"openHistory": push},
        "$inc": {"openCount": 1},
    }


async def apply_open(
    collection: Any,
    tracking_id: str,
    event: OpenEvent,
    max_time_ms: int,
    history_limit: int | None = None,
) -> int | None:
    """Apply one open; returns the new openCount, or None when nothing matched."""

    doc = await collection.find_one_and_update(
        {"trackingId": tracking_id},
        build_open_update(event, history_limit),
        projection={"_id": 0, "openCount": 1},
        return_document=ReturnDocument.AFTER,
        maxTimeMS=max_time_ms,
    )
    if doc is None:
        return None
    return int(doc.get("openCount", 0))


async def mark_bounced(collection: Any, tracking_id: str, details: dict[str, Any]) -> bool:
    now = datetime.now(timezone.utc)
    result = await collection.update_one(
        {"trackingId": tracking_id},
        {"$set": {"status": "bounced", "bounceDetails": details, "updatedAt": now}},
    )
    return result.matched_count > 0
