from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .runtime_constants import ACTIVE_PHASES, CLOSE_CODE_KICKED, DEFAULT_NUM_IMPOSTORS
from .runtime_errors import CapacityError, NotFoundError, PermissionDenied, PhaseError, ValidationError
from .runtime_reconnect import drop_impostor, remove_from_turn_order, settle_after_departure, withdraw_ballots
from .runtime_results import build_results_payload
from .runtime_state_builders import build_extra_round_progress
from .runtime_utils import double_shuffle
from .runtime_validation import validate_max_rounds, validate_num_impostors, validate_player_reference

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from .runtime import ImpostorRuntime
    from .runtime_types import Phase, PlayerConnection, RoomRuntime


def require_host(room: "RoomRuntime", player: "PlayerConnection", action: str) -> None:
    if room.host_peer_id != player.peer_id:
        raise PermissionDenied(f"Only the host can {action}")


def require_phase(room: "RoomRuntime", *phases: "Phase") -> None:
    if room.status not in phases:
        raise PhaseError(f"Not allowed while the room is in '{room.status}'")


def ballot_complete(room: "RoomRuntime", ballots: dict[str, Any]) -> bool:
    return bool(room.players) and all(peer_id in ballots for peer_id in room.players)


async def start_match(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    player: "PlayerConnection",
    max_rounds_raw: Any = None,
    num_impostors_raw: Any = None,
) -> None:
    require_host(room, player, "start the game")
    require_phase(room, "lobby")

    total_players = len(room.players)
    if total_players < runtime.min_players_to_start:
        raise CapacityError(
            f"At least {runtime.min_players_to_start} players are needed",
            code="NOT_ENOUGH_PLAYERS",
        )

    rounds_result = validate_max_rounds(room.base_max_rounds if max_rounds_raw is None else max_rounds_raw)
    if not rounds_result.ok or rounds_result.value is None:
        raise rounds_result.to_error()
    impostors_result = validate_num_impostors(
        DEFAULT_NUM_IMPOSTORS if num_impostors_raw is None else num_impostors_raw,
        total_players,
    )
    if not impostors_result.ok or impostors_result.value is None:
        raise impostors_result.to_error()

    num_impostors = min(impostors_result.value, total_players - 1)
    secret_word = runtime.word_source.random_word()
    order = double_shuffle(list(room.players), runtime.rng)

    room.status = "playing"
    room.player_order = order
    room.impostor_ids = set(runtime.rng.sample(order, num_impostors))
    room.num_impostors = num_impostors
    room.max_rounds = rounds_result.value
    room.base_max_rounds = rounds_result.value
    room.secret_word = secret_word
    room.current_round = 1
    room.current_turn_index = 0
    room.votes.clear()
    room.extra_round_votes.clear()
    room.last_results = None
    for peer_id, member in room.players.items():
        member.role = "impostor" if peer_id in room.impostor_ids else "normal"
        member.vote = None
    for snapshot in room.disconnected_players.values():
        snapshot.role = None
        snapshot.vote = None

    logger.info(
        "Game started room=%s players=%d impostors=%d rounds=%d",
        room.room_id,
        total_players,
        num_impostors,
        room.max_rounds,
    )
    runtime._log_ws_event(
        "game_started",
        roomId=room.room_id,
        players=total_players,
        impostors=num_impostors,
        maxRounds=room.max_rounds,
    )

    await runtime._send_roles(room)
    await runtime._broadcast(
        room,
        {
            "type": "game-started",
            "message": "The game has started!",
            "maxRounds": room.max_rounds,
            "numImpostors": room.num_impostors,
        },
    )
    await runtime._broadcast_state(room)


async def advance_turn(runtime: "ImpostorRuntime", room: "RoomRuntime", player: "PlayerConnection") -> None:
    require_host(room, player, "advance the turn")
    require_phase(room, "playing")

    room.current_turn_index += 1
    if room.current_turn_index >= len(room.player_order):
        room.current_turn_index = 0
        room.current_round += 1
        if room.current_round > room.max_rounds:
            await open_extra_round_vote(runtime, room)

    await runtime._broadcast_state(room)


async def open_extra_round_vote(runtime: "ImpostorRuntime", room: "RoomRuntime") -> None:
    room.status = "extra-round-vote"
    room.extra_round_votes.clear()
    await runtime._broadcast(
        room,
        {
            "type": "ask-extra-round",
            "message": "Do you want one more round before voting?",
            "currentRound": room.current_round,
        },
    )
    await runtime._broadcast(room, build_extra_round_progress(room))


async def cast_extra_round_vote(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    player: "PlayerConnection",
    wants_extra_round: Any,
) -> None:
    require_phase(room, "extra-round-vote")
    if not isinstance(wants_extra_round, bool):
        raise ValidationError("wantsExtraRound must be true or false", code="INVALID_BALLOT")
    if player.peer_id in room.extra_round_votes:
        raise ValidationError("You already voted", code="ALREADY_VOTED")

    room.extra_round_votes[player.peer_id] = wants_extra_round
    logger.info(
        "Extra round ballot room=%s player=%s wants=%s",
        room.room_id,
        player.peer_id,
        wants_extra_round,
    )
    await runtime._broadcast(room, build_extra_round_progress(room))

    if ballot_complete(room, room.extra_round_votes):
        await process_extra_round_votes(runtime, room)
        return
    await runtime._broadcast_state(room)


async def process_extra_round_votes(runtime: "ImpostorRuntime", room: "RoomRuntime") -> None:
    yes_votes = sum(1 for wants in room.extra_round_votes.values() if wants)
    no_votes = len(room.extra_round_votes) - yes_votes
    logger.info("Extra round tally room=%s yes=%d no=%d", room.room_id, yes_votes, no_votes)
    room.extra_round_votes.clear()

    if yes_votes > no_votes:
        room.status = "playing"
        room.max_rounds += 1
        await runtime._broadcast(
            room,
            {
                "type": "extra-round-approved",
                "message": f"Extra round approved! Continuing with round {room.current_round}",
                "newMaxRounds": room.max_rounds,
                "currentRound": room.current_round,
            },
        )
        await runtime._broadcast_state(room)
        return

    room.status = "voting"
    room.votes.clear()
    for member in room.players.values():
        member.vote = None
    for snapshot in room.disconnected_players.values():
        snapshot.vote = None
    await runtime._broadcast(room, {"type": "start-voting", "message": "Time to vote for the impostor!"})
    await runtime._broadcast_state(room)


async def cast_vote(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    player: "PlayerConnection",
    voted_player_id: Any,
) -> None:
    require_phase(room, "voting")
    if not isinstance(voted_player_id, str) or not voted_player_id:
        raise ValidationError("votedPlayerId is required", code="INVALID_VOTE_TARGET")
    if not validate_player_reference(voted_player_id, room.players):
        raise NotFoundError("That player is not in the room", code="PLAYER_NOT_FOUND")
    if voted_player_id == player.peer_id:
        raise ValidationError("You cannot vote for yourself", code="SELF_VOTE")
    if player.peer_id in room.votes:
        raise ValidationError("You already voted", code="ALREADY_VOTED")

    player.vote = voted_player_id
    room.votes[player.peer_id] = voted_player_id
    logger.info("Vote room=%s voter=%s target=%s", room.room_id, player.peer_id, voted_player_id)

    if ballot_complete(room, room.votes):
        await calculate_results(runtime, room)
        return
    await runtime._broadcast_state(room)


async def calculate_results(runtime: "ImpostorRuntime", room: "RoomRuntime") -> dict[str, Any]:
    results = build_results_payload(room)
    room.status = "results"
    room.last_results = results
    runtime._log_ws_event(
        "game_results",
        roomId=room.room_id,
        mostVotedId=results["mostVotedId"],
        impostorWon=results["impostorWon"],
    )
    await runtime._broadcast(room, results)
    await runtime._broadcast_state(room)
    return results


async def resolve_completed_ballots(runtime: "ImpostorRuntime", room: "RoomRuntime") -> bool:
    # A departure can close the last round without a next-turn.
    if room.status == "playing" and room.current_round > room.max_rounds:
        await open_extra_round_vote(runtime, room)
        await runtime._broadcast_state(room)
        return True
    if room.status == "extra-round-vote" and ballot_complete(room, room.extra_round_votes):
        await process_extra_round_votes(runtime, room)
        return True
    if room.status == "voting" and ballot_complete(room, room.votes):
        await calculate_results(runtime, room)
        return True
    return False


def clear_match_state(room: "RoomRuntime") -> None:
    room.status = "lobby"
    room.secret_word = None
    room.impostor_ids.clear()
    room.votes.clear()
    room.extra_round_votes.clear()
    room.player_order = list(room.players)
    room.current_turn_index = 0
    room.current_round = 0
    room.max_rounds = room.base_max_rounds
    room.last_results = None
    for member in room.players.values():
        member.role = None
        member.vote = None
    for snapshot in room.disconnected_players.values():
        snapshot.role = None
        snapshot.vote = None


async def reset_room_to_lobby(runtime: "ImpostorRuntime", room: "RoomRuntime", message: str) -> None:
    clear_match_state(room)
    runtime._log_ws_event("game_reset", roomId=room.room_id, reason=message)
    await runtime._broadcast(room, {"type": "game-reset", "message": message})
    await runtime._broadcast_state(room)


async def reset_match(runtime: "ImpostorRuntime", room: "RoomRuntime", player: "PlayerConnection") -> None:
    require_host(room, player, "reset the game")
    await reset_room_to_lobby(runtime, room, "The game has been reset")


async def kick_player(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    player: "PlayerConnection",
    target_id: Any,
) -> None:
    require_host(room, player, "kick players")
    if not isinstance(target_id, str) or not target_id:
        raise ValidationError("playerId is required", code="INVALID_PLAYER_ID")
    target = room.players.get(target_id)
    if target is None:
        raise NotFoundError("That player is not in the room", code="PLAYER_NOT_FOUND")
    if target.peer_id == player.peer_id:
        raise ValidationError("You cannot kick yourself", code="CANNOT_KICK_SELF")

    room.players.pop(target_id, None)
    remove_from_turn_order(room, target_id)
    drop_impostor(room, target_id)
    withdraw_ballots(room, target_id)
    runtime._increment_stat("kicks")
    runtime._on_disconnect()
    runtime._log_ws_event("player_kicked", roomId=room.room_id, peerId=target_id, name=target.name)

    await runtime._send_safe(
        target.websocket,
        {"type": "kicked", "message": "You were removed from the room by the host"},
        room_id=room.room_id,
        peer_id=target_id,
    )
    await runtime._close_safe(target.websocket, CLOSE_CODE_KICKED)

    if room.status in ACTIVE_PHASES:
        await settle_after_departure(runtime, room)
        return
    await runtime._broadcast_state(room)
