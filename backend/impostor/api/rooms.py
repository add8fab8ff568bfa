from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from impostor.api.deps import get_runtime
from impostor.runtime import ImpostorRuntime
from impostor.runtime_validation import sanitize_room_name
from impostor.schemas.rooms import RoomSummaryResponse

router = APIRouter(tags=["rooms"])


@router.get("/api/rooms/{room_id}", response_model=RoomSummaryResponse)
async def room_summary(room_id: str, runtime: ImpostorRuntime = Depends(get_runtime)) -> RoomSummaryResponse:
    room_id_value = sanitize_room_name(room_id)
    summary = runtime.get_room_summary(room_id_value) if room_id_value else None
    if summary is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return RoomSummaryResponse(**summary)
