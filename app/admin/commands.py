from __future__ import annotations

from typing import Any

from pymongo.errors import DuplicateKeyError

from app.config import get_settings
from app.db.connection import get_collection, get_connection_manager
from app.db.tracking_store import create_tracking_record, ensure_indexes, find_record, mark_bounced


def pixel_url(tracking_id: str, base_url: str | None = None) -> str:
    base = (base_url or get_settings().tracking_base_url).rstrip("/")
    return f"{base}/icon/{tracking_id}"


def pixel_img_tag(tracking_id: str, base_url: str | None = None) -> str:
    return f'<img src="{pixel_url(tracking_id, base_url)}" width="1" height="1" alt="" style="display:none">'


async def create_record(to: str, subject: str, body: str, tracking_id: str | None = None) -> dict[str, Any]:
    collection = await get_collection()
    record = await create_tracking_record(collection, to=to, subject=subject, body=body, tracking_id=tracking_id)
    return {
        "trackingId": record.tracking_id,
        "messageId": record.message_id,
        "pixelUrl": pixel_url(record.tracking_id),
        "imgTag": pixel_img_tag(record.tracking_id),
    }


async def show_record(tracking_id: str) -> dict[str, Any] | None:
    collection = await get_collection()
    record = await find_record(collection, tracking_id)
    if record is None:
        return None
    return record.model_dump(mode="json", by_alias=True)


async def bounce_record(tracking_id: str, reason: str) -> bool:
    collection = await get_collection()
    return await mark_bounced(collection, tracking_id, {"reason": reason})


async def init_indexes() -> None:
    collection = await get_collection()
    await ensure_indexes(collection)


async def run_command(command: str, args: dict[str, Any]) -> tuple[int, Any]:
    """Run one admin command; returns (exit code, JSON-able result)."""

    try:
        if command == "create":
            try:
                result: Any = await create_record(args["to"], args["subject"], args["body"], args.get("tracking_id"))
            except DuplicateKeyError:
                return 1, {"error": "duplicate trackingId or messageId", "trackingId": args.get("tracking_id")}
        elif command == "show":
            result = await show_record(args["tracking_id"])
            if result is None:
                return 1, {"error": "not found", "trackingId": args["tracking_id"]}
        elif command == "bounce":
            if not await bounce_record(args["tracking_id"], args["reason"]):
                return 1, {"error": "not found", "trackingId": args["tracking_id"]}
            result = {"trackingId": args["tracking_id"], "status": "bounced"}
        elif command == "init-indexes":
            await init_indexes()
            result = {"indexes": ["trackingId", "messageId"]}
        else:
            raise ValueError(f"Unknown command: {command}")
    finally:
        await get_connection_manager().close()

    return 0, result
