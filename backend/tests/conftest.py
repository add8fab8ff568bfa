from __future__ import annotations

import random
from typing import Any

from impostor.runtime import ImpostorRuntime
from impostor.word_source import WordSource


class FakeWebSocket:
    """Records what the runtime sends to one client."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: int | None = None

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.closed:
            raise RuntimeError("socket is closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = True
        self.close_code = code

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == message_type]

    def last(self, message_type: str) -> dict[str, Any] | None:
        matches = self.of_type(message_type)
        return matches[-1] if matches else None

    def clear(self) -> None:
        self.sent.clear()


def build_runtime(**overrides: Any) -> ImpostorRuntime:
    options: dict[str, Any] = {
        "rng": random.Random(7),
        "disconnect_grace_ms": 60_000,
        "host_reconnect_wait_ms": 3_000,
        "empty_room_cleanup_ms": 5_000,
    }
    options.update(overrides)
    return ImpostorRuntime(WordSource(["Luna", "Pizza", "Playa"], rng=random.Random(3)), **options)


async def join_players(runtime: ImpostorRuntime, room_id: str, *names: str):
    sockets: dict[str, FakeWebSocket] = {}
    players = {}
    room = None
    for name in names:
        ws = FakeWebSocket()
        room, player = await runtime.join(room_id, name, ws)
        sockets[name] = ws
        players[name] = player
    return room, players, sockets


async def send(runtime: ImpostorRuntime, room, player, data: dict[str, Any]) -> None:
    async with room.lock:
        await runtime._handle_message(room, player, data)


def current(room, name: str):
    return next(player for player in room.players.values() if player.name == name)
