from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from hireflow.api.deps import Runtime
from hireflow.auth.deps import CurrentUser
from hireflow.dashboard.broadcaster import DashboardBroadcaster, DashboardConnection

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


async def _event_stream(
    broadcaster: DashboardBroadcaster, connection: DashboardConnection
) -> AsyncIterator[str]:
    try:
        async for frame in connection.stream(broadcaster.heartbeat_seconds):
            yield frame
    finally:
        broadcaster.disconnect(connection.id)


@router.get("/stream")
def dashboard_stream(user: CurrentUser, runtime: Runtime) -> StreamingResponse:
    broadcaster = runtime.broadcaster
    connection = broadcaster.connect()
    return StreamingResponse(
        _event_stream(broadcaster, connection),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/connections")
def dashboard_connections(user: CurrentUser, runtime: Runtime):
    return {"active": runtime.broadcaster.active_count}
