from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class RoomSummaryResponse(BaseModel):
    roomId: str = Field(min_length=1, max_length=20)
    status: Literal["lobby", "playing", "extra-round-vote", "voting", "results"]
    playerCount: int = Field(ge=0)
    playerNames: list[str] = Field(default_factory=list)
    hostName: str | None = None
    currentRound: int = Field(default=0, ge=0)
    maxRounds: int = Field(ge=1)
    disconnectedCount: int = Field(default=0, ge=0)
