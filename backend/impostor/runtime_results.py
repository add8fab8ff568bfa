from __future__ import annotations

from typing import Any

from .runtime_types import RoomRuntime


def player_name_for_peer(room: RoomRuntime, peer_id: str | None) -> str | None:
    if not peer_id:
        return None
    player = room.players.get(peer_id)
    if player is not None:
        return player.name
    for snapshot in room.disconnected_players.values():
        if snapshot.stale_peer_id == peer_id:
            return snapshot.name
    return None


def tally_votes(votes: dict[str, str]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for target in votes.values():
        counts[target] = counts.get(target, 0) + 1
    return counts


def pick_most_voted(room: RoomRuntime, counts: dict[str, int]) -> str | None:
    """Highest count wins; ties go to the earliest joiner still in the room,
    then to whoever received a ballot first."""
    if not counts:
        return None
    join_rank = {peer_id: index for index, peer_id in enumerate(room.players)}
    ballot_rank = {peer_id: index for index, peer_id in enumerate(counts)}
    absent_rank = len(join_rank)
    return min(
        counts,
        key=lambda peer_id: (-counts[peer_id], join_rank.get(peer_id, absent_rank), ballot_rank[peer_id]),
    )


def build_results_payload(room: RoomRuntime) -> dict[str, Any]:
    counts = tally_votes(room.votes)
    most_voted_id = pick_most_voted(room, counts)
    impostor_ids = [peer_id for peer_id in room.player_order if peer_id in room.impostor_ids]
    impostor_ids.extend(sorted(room.impostor_ids.difference(impostor_ids)))
    impostor_names = [player_name_for_peer(room, peer_id) or "?" for peer_id in impostor_ids]
    impostor_won = most_voted_id is None or most_voted_id not in room.impostor_ids
    impostor_label = ", ".join(impostor_names)

    if impostor_won:
        noun = "impostor" if len(impostor_names) == 1 else "impostors"
        message = f"The {noun} ({impostor_label}) won! They fooled the group."
    else:
        message = f"You caught an impostor ({player_name_for_peer(room, most_voted_id)})! The players win."

    return {
        "type": "game-results",
        "secretWord": room.secret_word,
        "impostorIds": impostor_ids,
        "impostorNames": impostor_names,
        "mostVotedId": most_voted_id,
        "mostVotedName": player_name_for_peer(room, most_voted_id),
        "mostVotedCount": counts.get(most_voted_id, 0) if most_voted_id else 0,
        "votes": [
            {
                "playerId": peer_id,
                "playerName": player_name_for_peer(room, peer_id),
                "count": count,
            }
            for peer_id, count in counts.items()
        ],
        "impostorWon": impostor_won,
        "message": message,
    }
