from __future__ import annotations

from fastapi import APIRouter, Depends, WebSocket

from impostor.api.deps import get_ws_runtime
from impostor.runtime import ImpostorRuntime

router = APIRouter(tags=["websocket"])


@router.websocket("/api/ws")
async def websocket_api(ws: WebSocket, runtime: ImpostorRuntime = Depends(get_ws_runtime)) -> None:
    await runtime.handle_websocket(ws)


@router.websocket("/ws")
async def websocket_compat(ws: WebSocket, runtime: ImpostorRuntime = Depends(get_ws_runtime)) -> None:
    await runtime.handle_websocket(ws)
