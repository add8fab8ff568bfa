from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

Phase = Literal["lobby", "playing", "extra-round-vote", "voting", "results"]
Role = Literal["normal", "impostor"]


class Connection(Protocol):
    """The slice of ``fastapi.WebSocket`` the runtime talks to."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass
class PlayerConnection:
    peer_id: str
    name: str
    websocket: Connection
    role: Role | None = None
    vote: str | None = None
    joined_at: int = 0


@dataclass
class DisconnectedPlayer:
    name: str
    stale_peer_id: str
    role: Role | None
    vote: str | None
    was_host: bool
    disconnected_at: int
    expiry_task: asyncio.Task[None] | None = None


@dataclass
class RoomRuntime:
    room_id: str
    max_rounds: int
    base_max_rounds: int
    status: Phase = "lobby"
    players: dict[str, PlayerConnection] = field(default_factory=dict)
    player_order: list[str] = field(default_factory=list)
    host_peer_id: str = ""
    host_is_temporary: bool = False
    pending_host_name: str | None = None
    secret_word: str | None = None
    impostor_ids: set[str] = field(default_factory=set)
    num_impostors: int = 1
    current_turn_index: int = 0
    current_round: int = 0
    votes: dict[str, str] = field(default_factory=dict)
    extra_round_votes: dict[str, bool] = field(default_factory=dict)
    disconnected_players: dict[str, DisconnectedPlayer] = field(default_factory=dict)
    last_results: dict[str, Any] | None = None
    emptied_at: int | None = None
    state_version: int = 1
    timers: dict[str, asyncio.Task[None] | None] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
