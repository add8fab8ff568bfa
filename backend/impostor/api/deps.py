from __future__ import annotations

from fastapi import Request, WebSocket

from impostor.runtime import ImpostorRuntime


def get_runtime(request: Request) -> ImpostorRuntime:
    return request.app.state.runtime


def get_ws_runtime(websocket: WebSocket) -> ImpostorRuntime:
    return websocket.app.state.runtime
