from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .runtime_types import Connection, DisconnectedPlayer, PlayerConnection
from .runtime_utils import normalize_player_name, now_ms, random_id

if TYPE_CHECKING:
    from .runtime import ImpostorRuntime
    from .runtime_types import RoomRuntime

logger = logging.getLogger(__name__)


def remove_from_turn_order(room: "RoomRuntime", peer_id: str) -> bool:
    """Drop ``peer_id`` from the turn order. Returns True if that closed the current round."""
    if peer_id not in room.player_order:
        return False
    index = room.player_order.index(peer_id)
    room.player_order.pop(index)
    # Keep the turn pointer on the same player.
    if index < room.current_turn_index:
        room.current_turn_index -= 1
    if room.current_turn_index < len(room.player_order):
        return False

    # The last speaker of the round left while holding the turn.
    room.current_turn_index = 0
    if room.status != "playing" or not room.player_order:
        return False
    room.current_round += 1
    return True


def drop_impostor(room: "RoomRuntime", peer_id: str) -> bool:
    """Permanently remove an impostor seat, shrinking ``num_impostors`` to match."""
    if peer_id not in room.impostor_ids:
        return False
    room.impostor_ids.discard(peer_id)
    if room.status != "lobby":
        room.num_impostors = max(1, len(room.impostor_ids))
    logger.info(
        "[IMPOSTOR_REMOVED] room=%s peer=%s remaining=%d",
        room.room_id,
        peer_id,
        len(room.impostor_ids),
    )
    return True


def substitute_peer_id(room: "RoomRuntime", old_peer_id: str, new_peer_id: str) -> None:
    room.player_order = [new_peer_id if peer_id == old_peer_id else peer_id for peer_id in room.player_order]

    if old_peer_id in room.impostor_ids:
        room.impostor_ids.discard(old_peer_id)
        room.impostor_ids.add(new_peer_id)

    room.votes = {
        (new_peer_id if voter == old_peer_id else voter): (new_peer_id if target == old_peer_id else target)
        for voter, target in room.votes.items()
    }
    room.extra_round_votes = {
        (new_peer_id if voter == old_peer_id else voter): wants
        for voter, wants in room.extra_round_votes.items()
    }

    for player in room.players.values():
        if player.vote == old_peer_id:
            player.vote = new_peer_id
    for snapshot in room.disconnected_players.values():
        if snapshot.vote == old_peer_id:
            snapshot.vote = new_peer_id

    if room.host_peer_id == old_peer_id:
        room.host_peer_id = new_peer_id


def withdraw_ballots(room: "RoomRuntime", peer_id: str) -> None:
    """Drop ballots cast by ``peer_id`` and ballots cast for it."""
    room.votes.pop(peer_id, None)
    room.extra_round_votes.pop(peer_id, None)
    for voter, target in list(room.votes.items()):
        if target != peer_id:
            continue
        room.votes.pop(voter, None)
        voter_player = room.players.get(voter)
        if voter_player is not None:
            voter_player.vote = None
    for snapshot in room.disconnected_players.values():
        if snapshot.vote == peer_id:
            snapshot.vote = None


def reconcile_impostors(room: "RoomRuntime") -> bool:
    """Re-derive ``impostor_ids`` from player roles. Returns True if a repair was needed."""
    if room.status == "lobby":
        changed = bool(room.impostor_ids)
        room.impostor_ids.clear()
        return changed

    derived = {peer_id for peer_id, player in room.players.items() if player.role == "impostor"}
    derived.update(
        snapshot.stale_peer_id
        for snapshot in room.disconnected_players.values()
        if snapshot.role == "impostor"
    )
    if derived == room.impostor_ids:
        return False

    logger.warning(
        "[IMPOSTOR_REPAIR] room=%s tracked=%d derived=%d",
        room.room_id,
        len(room.impostor_ids),
        len(derived),
    )
    room.impostor_ids = derived
    return True


def _cancel_expiry(runtime: "ImpostorRuntime", snapshot: DisconnectedPlayer) -> None:
    runtime._cancel_task(snapshot.expiry_task)
    snapshot.expiry_task = None


def discard_snapshot(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    key: str,
    reason: str,
) -> DisconnectedPlayer | None:
    snapshot = room.disconnected_players.pop(key, None)
    if snapshot is None:
        return None

    _cancel_expiry(runtime, snapshot)
    stale_peer_id = snapshot.stale_peer_id
    remove_from_turn_order(room, stale_peer_id)
    drop_impostor(room, stale_peer_id)
    withdraw_ballots(room, stale_peer_id)

    if room.pending_host_name is not None and normalize_player_name(room.pending_host_name) == key:
        room.pending_host_name = None
        runtime._cancel_timer(room, "hostHandoff")
    if room.host_is_temporary and not any(item.was_host for item in room.disconnected_players.values()):
        room.host_is_temporary = False

    runtime._increment_stat("snapshotsEvicted" if reason == "evicted" else "snapshotsExpired")
    runtime._log_ws_event(
        "snapshot_discarded",
        roomId=room.room_id,
        name=snapshot.name,
        reason=reason,
        wasHost=snapshot.was_host,
    )
    return snapshot


def retain_snapshot(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    player: PlayerConnection,
    was_host: bool,
) -> DisconnectedPlayer:
    key = normalize_player_name(player.name)
    previous = room.disconnected_players.pop(key, None)
    if previous is not None:
        _cancel_expiry(runtime, previous)

    while len(room.disconnected_players) >= runtime.max_disconnected_players:
        oldest_key = next(iter(room.disconnected_players))
        discard_snapshot(runtime, room, oldest_key, reason="evicted")

    snapshot = DisconnectedPlayer(
        name=player.name,
        stale_peer_id=player.peer_id,
        role=player.role,
        vote=player.vote,
        was_host=was_host,
        disconnected_at=now_ms(),
    )
    room.disconnected_players[key] = snapshot

    async def expire(inner_room: "RoomRuntime") -> None:
        await expire_snapshot(runtime, inner_room, key, snapshot)

    snapshot.expiry_task = runtime._create_room_task(
        room,
        f"disconnect:{key}",
        runtime.disconnect_grace_ms,
        expire,
    )
    return snapshot


async def expire_snapshot(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    key: str,
    snapshot: DisconnectedPlayer,
) -> None:
    if room.disconnected_players.get(key) is not snapshot:
        return
    snapshot.expiry_task = None
    discard_snapshot(runtime, room, key, reason="expired")
    await settle_after_departure(runtime, room)
    runtime._schedule_empty_room_cleanup(room)


async def promote_stand_in_host(runtime: "ImpostorRuntime", room: "RoomRuntime") -> PlayerConnection | None:
    candidate = next(iter(room.players.values()), None)
    if candidate is None:
        return None

    room.host_peer_id = candidate.peer_id
    room.host_is_temporary = any(snapshot.was_host for snapshot in room.disconnected_players.values())
    runtime._increment_stat("hostReassigned")
    logger.warning(
        "[HOST_REASSIGNED] room=%s new_host=%s temporary=%s status=%s",
        room.room_id,
        candidate.peer_id,
        room.host_is_temporary,
        room.status,
    )
    await runtime._send_to_player(
        room,
        candidate,
        {
            "type": "you-are-host",
            "message": "You are now the host",
            "isTemporary": room.host_is_temporary,
        },
    )
    await runtime._broadcast(
        room,
        {
            "type": "host-changed",
            "hostId": candidate.peer_id,
            "hostName": candidate.name,
            "isTemporary": room.host_is_temporary,
        },
    )
    return candidate


async def host_handoff_timeout(runtime: "ImpostorRuntime", room: "RoomRuntime", expected_name: str) -> None:
    if room.pending_host_name != expected_name:
        return
    room.pending_host_name = None
    if room.host_peer_id in room.players:
        return
    if await promote_stand_in_host(runtime, room) is not None:
        await runtime._broadcast_state(room)


def _open_host_handoff_window(runtime: "ImpostorRuntime", room: "RoomRuntime", host_name: str) -> None:
    room.pending_host_name = host_name

    async def after_wait(inner_room: "RoomRuntime") -> None:
        await host_handoff_timeout(runtime, inner_room, host_name)

    runtime._schedule_timer(room, "hostHandoff", runtime.host_reconnect_wait_ms, after_wait)


async def settle_after_departure(runtime: "ImpostorRuntime", room: "RoomRuntime") -> None:
    """Common follow-up once a player has left ``room.players`` or a snapshot was discarded."""
    from .runtime_match_flow import reset_room_to_lobby, resolve_completed_ballots

    if not room.host_peer_id and room.pending_host_name is None and room.players:
        await promote_stand_in_host(runtime, room)

    if room.status != "lobby":
        if len(room.players) < runtime.min_players_to_start:
            await reset_room_to_lobby(runtime, room, "The game was reset: not enough players")
            return
        if not room.impostor_ids:
            await reset_room_to_lobby(runtime, room, "The game was reset: no impostor is left")
            return

    if await resolve_completed_ballots(runtime, room):
        return
    await runtime._broadcast_state(room)


async def handle_departure(runtime: "ImpostorRuntime", room: "RoomRuntime", player: PlayerConnection) -> None:
    peer_id = player.peer_id
    room.players.pop(peer_id, None)
    was_host = room.host_peer_id == peer_id
    keep_snapshot = room.status != "lobby" or was_host

    if room.status == "lobby":
        remove_from_turn_order(room, peer_id)
    if keep_snapshot:
        retain_snapshot(runtime, room, player, was_host)

    if was_host:
        room.host_peer_id = ""
        if room.players:
            _open_host_handoff_window(runtime, room, player.name)
        else:
            room.pending_host_name = None
            runtime._cancel_timer(room, "hostHandoff")

    runtime._log_ws_event(
        "player_left",
        roomId=room.room_id,
        peerId=peer_id,
        name=player.name,
        wasHost=was_host,
        snapshot=keep_snapshot,
        status=room.status,
    )
    await settle_after_departure(runtime, room)


def restore_from_snapshot(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    key: str,
    name: str,
    websocket: Connection,
) -> tuple[PlayerConnection, bool]:
    """Attach a rejoining connection to its retained snapshot.

    Returns the new player and whether a stand-in host was displaced.
    """
    snapshot = room.disconnected_players.pop(key)
    _cancel_expiry(runtime, snapshot)

    peer_id = random_id()
    player = PlayerConnection(
        peer_id=peer_id,
        name=name,
        websocket=websocket,
        role=snapshot.role,
        vote=snapshot.vote,
        joined_at=now_ms(),
    )
    room.players[peer_id] = player
    substitute_peer_id(room, snapshot.stale_peer_id, peer_id)
    if peer_id not in room.player_order:
        room.player_order.append(peer_id)

    if room.status == "lobby":
        player.role = None
        player.vote = None
    elif player.role is None:
        player.role = "normal"

    displaced_stand_in = False
    if snapshot.was_host and (not room.host_peer_id or room.host_is_temporary):
        displaced_stand_in = room.host_is_temporary and bool(room.host_peer_id)
        room.host_peer_id = peer_id
        room.host_is_temporary = False
        if room.pending_host_name is not None and normalize_player_name(room.pending_host_name) == key:
            room.pending_host_name = None
            runtime._cancel_timer(room, "hostHandoff")
    elif not room.host_peer_id and room.pending_host_name is None:
        room.host_peer_id = peer_id

    reconcile_impostors(room)
    runtime._increment_stat("reconnects")
    runtime._log_ws_event(
        "player_reconnected",
        roomId=room.room_id,
        peerId=peer_id,
        stalePeerId=snapshot.stale_peer_id,
        name=name,
        role=player.role,
        restoredHost=peer_id == room.host_peer_id and snapshot.was_host,
    )
    return player, displaced_stand_in


def hand_off_duplicate(
    runtime: "ImpostorRuntime",
    room: "RoomRuntime",
    existing: PlayerConnection,
    name: str,
    websocket: Connection,
) -> PlayerConnection:
    """Move an active player's seat to a new connection (same name, e.g. a reloaded tab)."""
    peer_id = random_id()
    player = PlayerConnection(
        peer_id=peer_id,
        name=name,
        websocket=websocket,
        role=existing.role,
        vote=existing.vote,
        joined_at=existing.joined_at,
    )
    room.players = {
        (peer_id if current_id == existing.peer_id else current_id): (
            player if current_id == existing.peer_id else current
        )
        for current_id, current in room.players.items()
    }
    substitute_peer_id(room, existing.peer_id, peer_id)
    reconcile_impostors(room)
    runtime._increment_stat("handoffs")
    runtime._log_ws_event(
        "connect_handoff",
        roomId=room.room_id,
        peerId=peer_id,
        replacedPeerId=existing.peer_id,
        name=name,
    )
    return player
