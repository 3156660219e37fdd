from __future__ import annotations

import base64

from fastapi import APIRouter, Request
from fastapi.responses import Response
from starlette.background import BackgroundTask

from app.services.open_recorder import OpenContext, schedule_record_open

router = APIRouter(tags=["tracking"])

# 1x1 transparent GIF89a.
PIXEL_GIF = base64.b64decode("R0lGODlhAQABAIAAAP///wAAACH5BAEAAAAALAAAAAABAAEAAAICRAEAOw==")

PIXEL_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Content-Length": str(len(PIXEL_GIF)),
}


async def _dispatch_record(tracking_id: str | None, context: OpenContext) -> None:
    # Runs after the body is sent; only spawns the task so the request can finish.
    schedule_record_open(tracking_id, context)


def _pixel_response(request: Request, tracking_id: str | None) -> Response:
    context = OpenContext.from_request(request)
    return Response(
        content=PIXEL_GIF,
        media_type="image/gif",
        headers=PIXEL_HEADERS,
        background=BackgroundTask(_dispatch_record, tracking_id, context),
    )


@router.get("/icon/{tracking_id}")
async def tracking_pixel(tracking_id: str, request: Request) -> Response:
    return _pixel_response(request, tracking_id.strip())


@router.get("/icon")
@router.get("/icon/")
async def tracking_pixel_without_id(request: Request) -> Response:
    return _pixel_response(request, None)
