from __future__ import annotations

from fastapi import APIRouter, Depends

from impostor.api.deps import get_runtime
from impostor.runtime import ImpostorRuntime

router = APIRouter(tags=["system"])


@router.get("/api/health")
async def health(runtime: ImpostorRuntime = Depends(get_runtime)) -> dict[str, object]:
    ws_stats = await runtime.get_ws_stats()
    ws_summary = {
        "activeConnections": ws_stats["stats"].get("activeConnections", 0),
        "peakConnections": ws_stats["stats"].get("peakConnections", 0),
        "connectAttempts": ws_stats["stats"].get("connectAttempts", 0),
        "connectRejected": ws_stats["stats"].get("connectRejected", 0),
    }
    return {
        "ok": True,
        "activeRooms": runtime.active_rooms_count,
        "websocket": ws_summary,
    }


@router.get("/api/ws-stats")
async def websocket_stats(runtime: ImpostorRuntime = Depends(get_runtime)) -> dict[str, object]:
    return await runtime.get_ws_stats()
