from __future__ import annotations

import asyncio
import random

from conftest import build_runtime, current, join_players, send

from impostor.runtime import ImpostorRuntime
from impostor.runtime_state_builders import build_state
from impostor.word_source import WordSource


class FailingWordSource(WordSource):
    def random_word(self) -> str:
        raise RuntimeError("word catalog unavailable")


def _comparable_state(room):
    state = build_state(room)
    state.pop("stateVersion")
    return state


async def _start(runtime, room, host, **options):
    payload = {"type": "start-game", "maxRounds": 1, "numImpostors": 1}
    payload.update(options)
    await send(runtime, room, host, payload)


async def _advance_to_extra_round_vote(runtime, room, host):
    for _ in range(len(room.player_order)):
        await send(runtime, room, host, {"type": "next-turn"})
    assert room.status == "extra-round-vote"


async def _advance_to_voting(runtime, room, players):
    host = room.players[room.host_peer_id]
    await _advance_to_extra_round_vote(runtime, room, host)
    for player in list(players.values()):
        await send(runtime, room, player, {"type": "vote-extra-round", "wantsExtraRound": False})
    assert room.status == "voting"


def test_start_with_three_players_succeeds():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Ana"])

        assert room.status == "playing"
        assert room.current_round == 1
        assert room.max_rounds == 1
        assert room.secret_word in ("Luna", "Pizza", "Playa")
        assert sorted(room.player_order) == sorted(room.players)
        assert len(room.impostor_ids) == 1
        assert sockets["Ana"].last("ack") == {"type": "ack", "action": "start-game"}
        for ws in sockets.values():
            assert ws.last("game-started")["numImpostors"] == 1
            assert ws.last("game-state-update")["state"]["status"] == "playing"

    asyncio.run(scenario())


def test_start_with_two_players_is_rejected_without_mutation():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto")
        before = _comparable_state(room)
        await _start(runtime, room, players["Ana"])

        error = sockets["Ana"].last("error")
        assert error["kind"] == "capacity"
        assert error["code"] == "NOT_ENOUGH_PLAYERS"
        assert _comparable_state(room) == before
        assert sockets["Beto"].of_type("error") == []

    asyncio.run(scenario())


def test_start_rejects_too_many_impostors_without_mutation():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro", "Dani")
        before = _comparable_state(room)
        await _start(runtime, room, players["Ana"], numImpostors=3)

        assert sockets["Ana"].last("error")["code"] == "TOO_MANY_IMPOSTORS"
        assert _comparable_state(room) == before
        assert room.status == "lobby"

    asyncio.run(scenario())


def test_only_host_can_start():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Beto"])

        error = sockets["Beto"].last("error")
        assert error["kind"] == "permission"
        assert error["code"] == "HOST_ONLY"
        assert room.status == "lobby"

    asyncio.run(scenario())


def test_impostor_count_and_private_roles():
    async def scenario():
        runtime = build_runtime()
        names = ("Ana", "Beto", "Caro", "Dani", "Eva")
        room, players, sockets = await join_players(runtime, "roles", *names)
        await _start(runtime, room, players["Ana"], numImpostors=2, maxRounds=3)

        assert len(room.impostor_ids) == room.num_impostors == 2
        assert room.impostor_ids <= set(room.players)
        for name in names:
            player = players[name]
            role_message = sockets[name].last("your-role")
            if player.peer_id in room.impostor_ids:
                assert player.role == "impostor"
                assert role_message == {"type": "your-role", "role": "impostor", "word": None}
            else:
                assert player.role == "normal"
                assert role_message == {"type": "your-role", "role": "normal", "word": room.secret_word}

    asyncio.run(scenario())


def test_scenario_extra_round_vote_majority_no_goes_to_voting():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "A1", "B1", "C1")
        await _start(runtime, room, players["A1"])
        await _advance_to_extra_round_vote(runtime, room, players["A1"])

        assert room.current_round == 2
        assert sockets["B1"].last("ask-extra-round") is not None

        await send(runtime, room, players["A1"], {"type": "vote-extra-round", "wantsExtraRound": True})
        await send(runtime, room, players["B1"], {"type": "vote-extra-round", "wantsExtraRound": False})
        assert sockets["C1"].last("extra-round-vote-update") == {
            "type": "extra-round-vote-update",
            "voted": 2,
            "total": 3,
        }
        await send(runtime, room, players["C1"], {"type": "vote-extra-round", "wantsExtraRound": False})

        assert room.status == "voting"
        assert room.extra_round_votes == {}
        for ws in sockets.values():
            assert ws.last("start-voting") is not None
            assert ws.last("extra-round-approved") is None

    asyncio.run(scenario())


def test_extra_round_majority_yes_continues_playing():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Ana"])
        await _advance_to_extra_round_vote(runtime, room, players["Ana"])

        await send(runtime, room, players["Ana"], {"type": "vote-extra-round", "wantsExtraRound": True})
        await send(runtime, room, players["Beto"], {"type": "vote-extra-round", "wantsExtraRound": True})
        await send(runtime, room, players["Caro"], {"type": "vote-extra-round", "wantsExtraRound": False})

        assert room.status == "playing"
        assert room.max_rounds == 2
        approved = sockets["Caro"].last("extra-round-approved")
        assert approved["newMaxRounds"] == 2
        assert approved["currentRound"] == 2

    asyncio.run(scenario())


def test_extra_round_ballot_rejections():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Ana"])
        await send(runtime, room, players["Beto"], {"type": "vote-extra-round", "wantsExtraRound": True})
        assert sockets["Beto"].last("error")["code"] == "WRONG_PHASE"

        await _advance_to_extra_round_vote(runtime, room, players["Ana"])
        await send(runtime, room, players["Beto"], {"type": "vote-extra-round", "wantsExtraRound": "yes"})
        assert sockets["Beto"].last("error")["code"] == "INVALID_BALLOT"

        await send(runtime, room, players["Beto"], {"type": "vote-extra-round", "wantsExtraRound": True})
        await send(runtime, room, players["Beto"], {"type": "vote-extra-round", "wantsExtraRound": False})
        assert sockets["Beto"].last("error")["code"] == "ALREADY_VOTED"
        assert room.extra_round_votes == {players["Beto"].peer_id: True}

    asyncio.run(scenario())


def test_scenario_results_report_most_voted_player():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "A1", "B1", "C1")
        await _start(runtime, room, players["A1"])
        await _advance_to_voting(runtime, room, players)

        beto_id = players["B1"].peer_id
        await send(runtime, room, players["A1"], {"type": "vote", "votedPlayerId": beto_id})
        await send(runtime, room, players["C1"], {"type": "vote", "votedPlayerId": beto_id})
        assert room.status == "voting"
        await send(runtime, room, players["B1"], {"type": "vote", "votedPlayerId": players["A1"].peer_id})

        assert room.status == "results"
        results = sockets["C1"].last("game-results")
        assert results["mostVotedId"] == beto_id
        assert results["mostVotedName"] == "B1"
        assert results["mostVotedCount"] == 2
        assert results["impostorWon"] is (beto_id not in room.impostor_ids)
        assert results["secretWord"] == room.secret_word
        assert sockets["A1"].last("game-state-update")["state"]["results"] == results

    asyncio.run(scenario())


def test_vote_rejections():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Ana"])

        await send(runtime, room, players["Beto"], {"type": "vote", "votedPlayerId": players["Caro"].peer_id})
        assert sockets["Beto"].last("error")["kind"] == "phase"

        await _advance_to_voting(runtime, room, players)
        await send(runtime, room, players["Beto"], {"type": "vote", "votedPlayerId": players["Beto"].peer_id})
        assert sockets["Beto"].last("error")["code"] == "SELF_VOTE"
        await send(runtime, room, players["Beto"], {"type": "vote", "votedPlayerId": "nobody"})
        assert sockets["Beto"].last("error")["code"] == "PLAYER_NOT_FOUND"
        await send(runtime, room, players["Beto"], {"type": "vote"})
        assert sockets["Beto"].last("error")["code"] == "INVALID_VOTE_TARGET"

        await send(runtime, room, players["Beto"], {"type": "vote", "votedPlayerId": players["Caro"].peer_id})
        await send(runtime, room, players["Beto"], {"type": "vote", "votedPlayerId": players["Ana"].peer_id})
        assert sockets["Beto"].last("error")["code"] == "ALREADY_VOTED"
        assert room.votes == {players["Beto"].peer_id: players["Caro"].peer_id}

    asyncio.run(scenario())


def test_results_pick_player_with_most_votes():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "tie", "Ana", "Beto", "Caro", "Dani")
        await _start(runtime, room, players["Ana"])
        await _advance_to_voting(runtime, room, players)

        caro_id = players["Caro"].peer_id
        dani_id = players["Dani"].peer_id
        await send(runtime, room, players["Ana"], {"type": "vote", "votedPlayerId": dani_id})
        await send(runtime, room, players["Beto"], {"type": "vote", "votedPlayerId": dani_id})
        await send(runtime, room, players["Caro"], {"type": "vote", "votedPlayerId": dani_id})
        await send(runtime, room, players["Dani"], {"type": "vote", "votedPlayerId": caro_id})

        results = sockets["Ana"].last("game-results")
        assert results["mostVotedId"] == dani_id
        assert results["mostVotedCount"] == 3

    asyncio.run(scenario())


def test_results_tie_break_between_equal_counts():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "tie", "Ana", "Beto", "Caro", "Dani")
        await _start(runtime, room, players["Ana"])
        await _advance_to_voting(runtime, room, players)

        caro_id = players["Caro"].peer_id
        dani_id = players["Dani"].peer_id
        await send(runtime, room, players["Ana"], {"type": "vote", "votedPlayerId": dani_id})
        await send(runtime, room, players["Beto"], {"type": "vote", "votedPlayerId": caro_id})
        await send(runtime, room, players["Caro"], {"type": "vote", "votedPlayerId": dani_id})
        await send(runtime, room, players["Dani"], {"type": "vote", "votedPlayerId": caro_id})

        results = sockets["Ana"].last("game-results")
        assert results["mostVotedId"] == caro_id
        assert results["mostVotedName"] == "Caro"
        assert {entry["playerName"]: entry["count"] for entry in results["votes"]} == {"Caro": 2, "Dani": 2}

    asyncio.run(scenario())


def test_reset_is_idempotent():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Ana"], maxRounds=3)
        await send(runtime, room, players["Ana"], {"type": "next-turn"})

        await send(runtime, room, players["Ana"], {"type": "reset-game"})
        once = _comparable_state(room)
        await send(runtime, room, players["Ana"], {"type": "reset-game"})
        twice = _comparable_state(room)

        assert once == twice
        assert once["status"] == "lobby"
        assert room.impostor_ids == set()
        assert room.secret_word is None
        assert room.player_order == list(room.players)
        assert all(player.role is None for player in room.players.values())
        assert len(sockets["Caro"].of_type("game-reset")) == 2

    asyncio.run(scenario())


def test_next_turn_is_host_only_and_cycles_order():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Ana"], maxRounds=2)
        first = room.player_order[0]
        assert sockets["Beto"].last("game-state-update")["state"]["currentTurn"] == first

        await send(runtime, room, players["Beto"], {"type": "next-turn"})
        assert sockets["Beto"].last("error")["code"] == "HOST_ONLY"
        assert room.current_turn_index == 0

        for _ in range(3):
            await send(runtime, room, players["Ana"], {"type": "next-turn"})
        assert room.status == "playing"
        assert room.current_round == 2
        assert room.current_turn_index == 0

    asyncio.run(scenario())


def test_kick_in_lobby_closes_socket():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await send(runtime, room, players["Ana"], {"type": "kick-player", "playerId": players["Caro"].peer_id})

        assert players["Caro"].peer_id not in room.players
        assert players["Caro"].peer_id not in room.player_order
        assert sockets["Caro"].last("kicked") is not None
        assert sockets["Caro"].close_code == 4003
        assert room.disconnected_players == {}
        assert [p["name"] for p in sockets["Beto"].last("game-state-update")["state"]["players"]] == ["Ana", "Beto"]

    asyncio.run(scenario())


def test_kick_rejections():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")

        await send(runtime, room, players["Beto"], {"type": "kick-player", "playerId": players["Caro"].peer_id})
        assert sockets["Beto"].last("error")["code"] == "HOST_ONLY"
        await send(runtime, room, players["Ana"], {"type": "kick-player", "playerId": players["Ana"].peer_id})
        assert sockets["Ana"].last("error")["code"] == "CANNOT_KICK_SELF"
        await send(runtime, room, players["Ana"], {"type": "kick-player", "playerId": "ghost"})
        assert sockets["Ana"].last("error")["code"] == "PLAYER_NOT_FOUND"
        assert len(room.players) == 3

    asyncio.run(scenario())


def test_kick_below_minimum_mid_match_resets():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Ana"])
        await send(runtime, room, players["Ana"], {"type": "kick-player", "playerId": players["Beto"].peer_id})

        assert room.status == "lobby"
        assert "not enough players" in sockets["Caro"].last("game-reset")["message"]

    asyncio.run(scenario())


def test_newcomer_mid_match_plays_as_normal():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto", "Caro")
        await _start(runtime, room, players["Ana"])
        _, _, late = await join_players(runtime, "abc", "Dani")

        dani = current(room, "Dani")
        assert dani.role == "normal"
        assert room.player_order[-1] == dani.peer_id
        joined = late["Dani"].last("joined")
        assert joined["role"] == {"role": "normal", "word": room.secret_word}
        assert joined["isHost"] is False

    asyncio.run(scenario())


def test_unknown_message_and_ping():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "abc", "Ana", "Beto")
        await send(runtime, room, players["Beto"], {"type": "ping"})
        assert sockets["Beto"].last("pong") is not None

        await send(runtime, room, players["Beto"], {"type": "launch-rockets"})
        error = sockets["Beto"].last("error")
        assert error["code"] == "UNKNOWN_MESSAGE"
        assert error["kind"] == "validation"

    asyncio.run(scenario())


def test_kicking_one_of_two_impostors_keeps_counts_in_step():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "pair", "Ana", "Beto", "Caro", "Dani", "Eva")
        await _start(runtime, room, players["Ana"], numImpostors=2)
        assert len(room.impostor_ids) == room.num_impostors == 2
        target_id = next(peer_id for peer_id in room.impostor_ids if peer_id != room.host_peer_id)

        await send(runtime, room, players["Ana"], {"type": "kick-player", "playerId": target_id})

        assert room.status == "playing"
        assert target_id not in room.impostor_ids
        assert len(room.impostor_ids) == room.num_impostors == 1
        watcher = next(player for player in room.players.values() if player.peer_id != room.host_peer_id)
        assert sockets[watcher.name].last("game-state-update")["state"]["numImpostors"] == 1

    asyncio.run(scenario())


def test_kicking_last_speaker_of_final_round_opens_extra_round_vote():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "tail", "Ana", "Beto", "Caro", "Dani")
        await _start(runtime, room, players["Ana"])
        plain_id = next(
            peer_id
            for peer_id in room.player_order
            if peer_id not in room.impostor_ids and peer_id != room.host_peer_id
        )
        room.player_order.remove(plain_id)
        room.player_order.append(plain_id)
        for _ in range(3):
            await send(runtime, room, players["Ana"], {"type": "next-turn"})
        assert room.current_turn_index == 3

        await send(runtime, room, players["Ana"], {"type": "kick-player", "playerId": plain_id})

        assert room.status == "extra-round-vote"
        assert room.current_round == 2
        assert room.current_turn_index == 0
        assert sockets["Ana"].last("ask-extra-round")["currentRound"] == 2

    asyncio.run(scenario())


def test_kicking_last_speaker_mid_match_starts_next_round():
    async def scenario():
        runtime = build_runtime()
        room, players, sockets = await join_players(runtime, "wrap", "Ana", "Beto", "Caro", "Dani")
        await _start(runtime, room, players["Ana"], maxRounds=2)
        plain_id = next(
            peer_id
            for peer_id in room.player_order
            if peer_id not in room.impostor_ids and peer_id != room.host_peer_id
        )
        room.player_order.remove(plain_id)
        room.player_order.append(plain_id)
        for _ in range(3):
            await send(runtime, room, players["Ana"], {"type": "next-turn"})

        await send(runtime, room, players["Ana"], {"type": "kick-player", "playerId": plain_id})

        assert room.status == "playing"
        assert room.current_round == 2
        assert room.current_turn_index == 0
        state = sockets["Ana"].last("game-state-update")["state"]
        assert state["currentRound"] == 2
        assert sockets["Ana"].last("ask-extra-round") is None

    asyncio.run(scenario())


def test_unexpected_failure_is_contained_to_the_requester():
    async def scenario():
        runtime = ImpostorRuntime(FailingWordSource(["Luna"]), rng=random.Random(7))
        room, players, sockets = await join_players(runtime, "boom", "Ana", "Beto", "Caro")
        host = players["Ana"]
        sockets["Beto"].clear()

        await runtime.process_frame(room, host.peer_id, host.websocket, {"type": "start-game"})

        error = sockets["Ana"].last("error")
        assert error["code"] == "INTERNAL_ERROR"
        assert error["kind"] == "internal"
        assert runtime._ws_stats["internalErrors"] == 1
        assert host.peer_id in room.players
        assert room.status == "lobby"
        assert room.impostor_ids == set()
        assert sockets["Beto"].sent == []

        await runtime.process_frame(room, host.peer_id, host.websocket, {"type": "ping"})
        assert sockets["Ana"].last("pong") is not None

    asyncio.run(scenario())
