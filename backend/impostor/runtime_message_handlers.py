from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .runtime_errors import ValidationError
from .runtime_match_flow import (
    advance_turn,
    cast_extra_round_vote,
    cast_vote,
    kick_player,
    reset_match,
    start_match,
)
from .runtime_utils import now_ms

if TYPE_CHECKING:
    from .runtime import ImpostorRuntime
    from .runtime_types import PlayerConnection, RoomRuntime


async def handle_message(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    player: "PlayerConnection",
    data: dict[str, Any],
) -> None:
    message_type = data.get("type")

    if message_type == "ping":
        runtime._increment_stat("pingReceived")
        await runtime._send_to_player(room, player, {"type": "pong", "serverTime": now_ms()})
        return

    if message_type == "start-game":
        await start_match(runtime, room, player, data.get("maxRounds"), data.get("numImpostors"))
    elif message_type == "next-turn":
        await advance_turn(runtime, room, player)
    elif message_type == "vote-extra-round":
        await cast_extra_round_vote(runtime, room, player, data.get("wantsExtraRound"))
    elif message_type == "vote":
        await cast_vote(runtime, room, player, data.get("votedPlayerId"))
    elif message_type == "reset-game":
        await reset_match(runtime, room, player)
    elif message_type == "kick-player":
        await kick_player(runtime, room, player, data.get("playerId"))
    else:
        raise ValidationError(f"Unknown message type: {str(message_type)[:40]}", code="UNKNOWN_MESSAGE")

    # The requester may have been replaced or removed by the action itself.
    if room.players.get(player.peer_id) is player:
        await runtime._send_to_player(room, player, {"type": "ack", "action": message_type})
