from __future__ import annotations

from typing import Any

from .runtime_results import player_name_for_peer
from .runtime_types import PlayerConnection, RoomRuntime


def current_turn_peer_id(room: RoomRuntime) -> str | None:
    if room.status != "playing" or not room.player_order:
        return None
    if room.current_turn_index < 0 or room.current_turn_index >= len(room.player_order):
        return None
    return room.player_order[room.current_turn_index]


def ballot_for_status(room: RoomRuntime) -> dict[str, Any] | None:
    if room.status == "voting":
        return room.votes
    if room.status == "extra-round-vote":
        return room.extra_round_votes
    return None


def build_extra_round_progress(room: RoomRuntime) -> dict[str, Any]:
    return {
        "type": "extra-round-vote-update",
        "voted": sum(1 for peer_id in room.players if peer_id in room.extra_round_votes),
        "total": len(room.players),
    }


def build_role_payload(room: RoomRuntime, player: PlayerConnection) -> dict[str, Any] | None:
    if room.status == "lobby" or player.role is None:
        return None
    return {
        "role": player.role,
        "word": None if player.role == "impostor" else room.secret_word,
    }


def build_players_view(room: RoomRuntime) -> list[dict[str, Any]]:
    ballot = ballot_for_status(room)
    turn_peer_id = current_turn_peer_id(room)
    return [
        {
            "id": player.peer_id,
            "name": player.name,
            "isHost": player.peer_id == room.host_peer_id,
            "isTurn": player.peer_id == turn_peer_id,
            "hasVoted": ballot is not None and player.peer_id in ballot,
        }
        for player in room.players.values()
    ]


def build_turn_order_view(room: RoomRuntime) -> list[dict[str, Any]]:
    return [
        {
            "id": peer_id,
            "name": player_name_for_peer(room, peer_id),
            "connected": peer_id in room.players,
        }
        for peer_id in room.player_order
    ]


def build_state(room: RoomRuntime, viewer: PlayerConnection | None = None) -> dict[str, Any]:
    state: dict[str, Any] = {
        "roomId": room.room_id,
        "status": room.status,
        "players": build_players_view(room),
        "playerOrder": build_turn_order_view(room),
        "hostId": room.host_peer_id or None,
        "hostIsTemporary": room.host_is_temporary,
        "awaitingHostReconnect": room.pending_host_name is not None,
        "currentTurn": current_turn_peer_id(room),
        "currentTurnIndex": room.current_turn_index,
        "currentRound": room.current_round,
        "maxRounds": room.max_rounds,
        "numImpostors": room.num_impostors,
        "votesCast": len(room.votes),
        "extraRoundVotesCast": len(room.extra_round_votes),
        "disconnectedPlayers": [snapshot.name for snapshot in room.disconnected_players.values()],
        "results": room.last_results if room.status == "results" else None,
        "stateVersion": room.state_version,
    }
    if viewer is not None:
        state["you"] = {
            "id": viewer.peer_id,
            "name": viewer.name,
            "isHost": viewer.peer_id == room.host_peer_id,
            "vote": viewer.vote,
        }
    return state


def build_state_message(room: RoomRuntime, viewer: PlayerConnection) -> dict[str, Any]:
    return {"type": "game-state-update", "state": build_state(room, viewer)}


def build_room_summary(room: RoomRuntime) -> dict[str, Any]:
    host = room.players.get(room.host_peer_id)
    return {
        "roomId": room.room_id,
        "status": room.status,
        "playerCount": len(room.players),
        "playerNames": [player.name for player in room.players.values()],
        "hostName": host.name if host else None,
        "currentRound": room.current_round,
        "maxRounds": room.max_rounds,
        "disconnectedCount": len(room.disconnected_players),
    }
