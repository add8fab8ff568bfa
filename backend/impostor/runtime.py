from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

from .config import settings
from .runtime_constants import (
    CLOSE_CODE_POLICY,
    CLOSE_CODE_REPLACED,
    DEFAULT_MAX_ROUNDS,
    DISCONNECT_GRACE_MS,
    EMPTY_ROOM_CLEANUP_MS,
    HOST_RECONNECT_WAIT_MS,
    IDLE_ROOM_SWEEP_INTERVAL_SEC,
    JOIN_TIMEOUT_SEC,
    MAX_DISCONNECTED_PLAYERS,
    MAX_PLAYERS,
    MIN_PLAYERS_TO_START,
)
from .runtime_errors import CapacityError, GameError
from .runtime_message_handlers import handle_message as handle_room_message
from .runtime_reconnect import handle_departure, hand_off_duplicate, restore_from_snapshot
from .runtime_state_builders import build_role_payload, build_room_summary, build_state, build_state_message
from .runtime_types import Connection, PlayerConnection, RoomRuntime
from .runtime_utils import normalize_player_name, now_ms, random_id
from .runtime_validation import validate_player_name, validate_room_name
from .word_source import WordSource

logger = logging.getLogger(__name__)

RoomCallback = Callable[[RoomRuntime], Awaitable[None]]


class ImpostorRuntime:
    def __init__(
        self,
        word_source: WordSource | None = None,
        *,
        rng: random.Random | None = None,
        max_players: int = MAX_PLAYERS,
        min_players_to_start: int = MIN_PLAYERS_TO_START,
        max_disconnected_players: int = MAX_DISCONNECTED_PLAYERS,
        disconnect_grace_ms: int = DISCONNECT_GRACE_MS,
        host_reconnect_wait_ms: int = HOST_RECONNECT_WAIT_MS,
        empty_room_cleanup_ms: int = EMPTY_ROOM_CLEANUP_MS,
        idle_room_sweep_interval_sec: float = IDLE_ROOM_SWEEP_INTERVAL_SEC,
        default_max_rounds: int = DEFAULT_MAX_ROUNDS,
    ) -> None:
        self.rooms: dict[str, RoomRuntime] = {}
        self.rooms_lock = asyncio.Lock()
        self.word_source = word_source or WordSource()
        self.rng = rng or random.Random()
        self.max_players = max_players
        self.min_players_to_start = min_players_to_start
        self.max_disconnected_players = max_disconnected_players
        self.disconnect_grace_ms = disconnect_grace_ms
        self.host_reconnect_wait_ms = host_reconnect_wait_ms
        self.empty_room_cleanup_ms = empty_room_cleanup_ms
        self.idle_room_sweep_interval_sec = idle_room_sweep_interval_sec
        self.default_max_rounds = default_max_rounds
        self._sweep_task: asyncio.Task[None] | None = None
        self._ws_stats: dict[str, int] = {
            "connectAttempts": 0,
            "connectSuccess": 0,
            "connectRejected": 0,
            "reconnects": 0,
            "handoffs": 0,
            "disconnects": 0,
            "staleDisconnects": 0,
            "sendFailures": 0,
            "messageReceived": 0,
            "pingReceived": 0,
            "actionRejected": 0,
            "internalErrors": 0,
            "kicks": 0,
            "hostReassigned": 0,
            "hostRestored": 0,
            "snapshotsEvicted": 0,
            "snapshotsExpired": 0,
            "roomsDeleted": 0,
            "activeConnections": 0,
            "peakConnections": 0,
        }

    @property
    def active_rooms_count(self) -> int:
        return len(self.rooms)

    def _increment_stat(self, key: str, amount: int = 1) -> None:
        self._ws_stats[key] = int(self._ws_stats.get(key, 0)) + amount

    def _on_connect(self) -> None:
        self._increment_stat("connectSuccess")
        active_connections = int(self._ws_stats.get("activeConnections", 0)) + 1
        self._ws_stats["activeConnections"] = active_connections
        if active_connections > int(self._ws_stats.get("peakConnections", 0)):
            self._ws_stats["peakConnections"] = active_connections

    def _on_disconnect(self) -> None:
        self._increment_stat("disconnects")
        active_connections = max(0, int(self._ws_stats.get("activeConnections", 0)) - 1)
        self._ws_stats["activeConnections"] = active_connections

    def _mark_state_changed(self, room: RoomRuntime) -> None:
        room.state_version += 1

    def _log_ws_event(self, event: str, level: int = logging.INFO, **fields: object) -> None:
        logger.log(
            level,
            "ws.%s %s",
            event,
            json.dumps(fields, ensure_ascii=False, separators=(",", ":"), default=str),
        )

    async def get_ws_stats(self) -> dict[str, Any]:
        async with self.rooms_lock:
            room_summaries = [
                {
                    "roomId": room.room_id,
                    "connections": len(room.players),
                    "disconnected": len(room.disconnected_players),
                    "status": room.status,
                }
                for room in self.rooms.values()
            ]
            active_rooms = len(room_summaries)

        room_summaries.sort(key=lambda item: int(item.get("connections", 0)), reverse=True)

        return {
            "generatedAt": now_ms(),
            "activeRooms": active_rooms,
            "stats": dict(self._ws_stats),
            "rooms": room_summaries[:50],
        }

    def get_room_summary(self, room_id: str) -> dict[str, Any] | None:
        room = self.rooms.get(room_id)
        if room is None:
            return None
        return build_room_summary(room)

    # ---- lifecycle ----

    def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_idle_rooms_loop(), name="idle-room-sweep")

    async def shutdown(self) -> None:
        self._cancel_task(self._sweep_task)
        self._sweep_task = None

        async with self.rooms_lock:
            rooms = list(self.rooms.values())
            self.rooms.clear()

        for room in rooms:
            async with room.lock:
                self._clear_timers(room)

        self._ws_stats["activeConnections"] = 0

    # ---- websocket transport ----

    async def _read_join_payload(
        self,
        websocket: WebSocket,
    ) -> tuple[dict[str, Any] | None, str | None, str | None]:
        query_room_id = websocket.query_params.get("roomId")
        query_name = websocket.query_params.get("name")
        if query_room_id and query_name:
            return {"roomId": query_room_id, "name": query_name}, None, None

        try:
            raw = await asyncio.wait_for(websocket.receive_text(), timeout=JOIN_TIMEOUT_SEC)
        except asyncio.TimeoutError:
            return None, "JOIN_TIMEOUT", "No join message received"
        except WebSocketDisconnect:
            return None, "JOIN_DISCONNECTED", "Client disconnected before joining"

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return None, "INVALID_JOIN_PAYLOAD", "Join payload is not valid JSON"

        if not isinstance(payload, dict) or payload.get("type") != "join":
            return None, "INVALID_JOIN_PAYLOAD", "Expected a join message"

        return (
            {
                "roomId": payload.get("roomId") or query_room_id,
                "name": payload.get("name") or query_name,
            },
            None,
            None,
        )

    async def handle_websocket(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._increment_stat("connectAttempts")

        join_payload, join_error_code, join_error_message = await self._read_join_payload(websocket)
        if join_payload is None:
            self._increment_stat("connectRejected")
            if join_error_code != "JOIN_DISCONNECTED":
                await self._send_safe(
                    websocket,
                    {
                        "type": "error",
                        "kind": "validation",
                        "code": join_error_code or "INVALID_JOIN_PAYLOAD",
                        "message": join_error_message or "Invalid join request",
                    },
                )
                await self._close_safe(websocket, CLOSE_CODE_POLICY)
            self._log_ws_event(
                "connect_rejected",
                level=logging.WARNING,
                roomId="-",
                code=join_error_code or "INVALID_JOIN_PAYLOAD",
            )
            return

        try:
            room, player = await self.join(join_payload.get("roomId"), join_payload.get("name"), websocket)
        except GameError as exc:
            self._increment_stat("connectRejected")
            await self._send_safe(websocket, exc.to_payload())
            await self._close_safe(websocket, CLOSE_CODE_POLICY)
            self._log_ws_event(
                "connect_rejected",
                level=logging.WARNING,
                roomId=str(join_payload.get("roomId") or "-")[:40],
                code=exc.code,
            )
            return

        room_id = room.room_id
        peer_id = player.peer_id
        disconnect_code: int | None = None
        disconnect_reason = "unknown"

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if not isinstance(data, dict):
                    continue
                self._increment_stat("messageReceived")
                await self.process_frame(room, peer_id, websocket, data)
        except WebSocketDisconnect as exc:
            disconnect_code = exc.code
            disconnect_reason = "websocket_disconnect"
        except Exception:
            disconnect_reason = "server_error"
            logger.exception("Unexpected websocket error for room %s peer %s", room_id, peer_id)
        finally:
            await self.disconnect(
                room_id,
                peer_id,
                websocket=websocket,
                reason=disconnect_reason,
                close_code=disconnect_code,
            )

    async def process_frame(
        self,
        room: RoomRuntime,
        peer_id: str,
        websocket: Connection,
        data: dict[str, Any],
    ) -> None:
        async with room.lock:
            current = room.players.get(peer_id)
            if current is None or current.websocket is not websocket:
                return
            try:
                await self._handle_message(room, current, data)
            except Exception:
                self._increment_stat("internalErrors")
                logger.exception(
                    "Unhandled error for room %s peer %s message %s",
                    room.room_id,
                    peer_id,
                    str(data.get("type"))[:40],
                )
                await self._send_safe(
                    websocket,
                    {
                        "type": "error",
                        "kind": "internal",
                        "code": "INTERNAL_ERROR",
                        "message": "Something went wrong processing that action",
                    },
                    room_id=room.room_id,
                    peer_id=peer_id,
                )

    async def _handle_message(
        self,
        room: RoomRuntime,
        player: PlayerConnection,
        data: dict[str, Any],
    ) -> None:
        try:
            await handle_room_message(self, room, player, data)
        except GameError as exc:
            self._increment_stat("actionRejected")
            self._log_ws_event(
                "action_rejected",
                level=logging.DEBUG,
                roomId=room.room_id,
                peerId=player.peer_id,
                action=str(data.get("type"))[:40],
                code=exc.code,
            )
            await self._send_to_player(room, player, exc.to_payload())

    # ---- join / leave ----

    async def join(
        self,
        room_name: Any,
        player_name: Any,
        websocket: Connection,
    ) -> tuple[RoomRuntime, PlayerConnection]:
        name_result = validate_player_name(player_name)
        if not name_result.ok or name_result.value is None:
            raise name_result.to_error()
        room_result = validate_room_name(room_name)
        if not room_result.ok or room_result.value is None:
            raise room_result.to_error()
        name = name_result.value
        room_id = room_result.value

        while True:
            room = await self._get_or_create_room(room_id)
            async with room.lock:
                # The room may have been deleted while we waited for its lock.
                if self.rooms.get(room_id) is not room:
                    continue
                player = await self._admit_player(room, name, websocket)
                return room, player

    async def _admit_player(self, room: RoomRuntime, name: str, websocket: Connection) -> PlayerConnection:
        key = normalize_player_name(name)
        duplicate = next(
            (existing for existing in room.players.values() if normalize_player_name(existing.name) == key),
            None,
        )
        reconnected = False
        displaced_stand_in = False

        if key in room.disconnected_players:
            if len(room.players) >= self.max_players:
                raise CapacityError("The room is full", code="ROOM_FULL")
            player, displaced_stand_in = restore_from_snapshot(self, room, key, name, websocket)
            reconnected = True
        elif duplicate is not None:
            player = hand_off_duplicate(self, room, duplicate, name, websocket)
            await self._close_safe(duplicate.websocket, CLOSE_CODE_REPLACED)
            reconnected = True
        else:
            if len(room.players) >= self.max_players:
                raise CapacityError(f"The room is full (max {self.max_players} players)", code="ROOM_FULL")
            player = PlayerConnection(peer_id=random_id(), name=name, websocket=websocket, joined_at=now_ms())
            room.players[player.peer_id] = player
            room.player_order.append(player.peer_id)
            if room.status != "lobby":
                player.role = "normal"
            if not room.host_peer_id and room.pending_host_name is None:
                room.host_peer_id = player.peer_id
                room.host_is_temporary = any(
                    snapshot.was_host for snapshot in room.disconnected_players.values()
                )

        self._cancel_timer(room, "emptyRoom")
        room.emptied_at = None
        if duplicate is None:
            self._on_connect()
        else:
            self._increment_stat("connectSuccess")

        role_payload = build_role_payload(room, player)
        joined: dict[str, Any] = {
            "type": "joined",
            "peerId": player.peer_id,
            "name": player.name,
            "roomId": room.room_id,
            "isHost": player.peer_id == room.host_peer_id,
            "reconnected": reconnected,
            "state": build_state(room, player),
        }
        if role_payload is not None:
            joined["role"] = role_payload
        await self._send_to_player(room, player, joined)
        if reconnected and role_payload is not None:
            await self._send_to_player(room, player, {"type": "your-role", **role_payload})

        if displaced_stand_in:
            self._increment_stat("hostRestored")
            logger.warning("[HOST_RESTORED] room=%s host=%s", room.room_id, player.peer_id)
            await self._broadcast(
                room,
                {
                    "type": "host-restored",
                    "hostId": player.peer_id,
                    "hostName": player.name,
                },
            )

        self._log_ws_event(
            "connect_success",
            roomId=room.room_id,
            peerId=player.peer_id,
            isHost=player.peer_id == room.host_peer_id,
            reconnected=reconnected,
            status=room.status,
        )
        await self._broadcast_state(room)
        return player

    async def disconnect(
        self,
        room_id: str,
        peer_id: str,
        websocket: Connection | None = None,
        reason: str = "unknown",
        close_code: int | None = None,
    ) -> None:
        room = self.rooms.get(room_id)
        if room is None:
            return

        async with room.lock:
            current = room.players.get(peer_id)
            if current is None:
                return
            if websocket is not None and current.websocket is not websocket:
                # Stale disconnect from an old socket after connection handoff.
                self._increment_stat("staleDisconnects")
                self._log_ws_event(
                    "disconnect_stale_ignored",
                    roomId=room_id,
                    peerId=peer_id,
                    reason=reason,
                    closeCode=close_code,
                )
                return

            self._on_disconnect()
            logger.info(
                "[DISCONNECT] room=%s peer=%s code=%s reason=%s",
                room_id,
                peer_id,
                close_code,
                reason,
            )
            await handle_departure(self, room, current)
            self._schedule_empty_room_cleanup(room)

    # ---- registry ----

    async def _get_or_create_room(self, room_id: str) -> RoomRuntime:
        async with self.rooms_lock:
            existing = self.rooms.get(room_id)
            if existing is not None:
                return existing

            room = self._create_room(room_id)
            self.rooms[room_id] = room
            self._log_ws_event("room_created", roomId=room_id)
            return room

    def _create_room(self, room_id: str) -> RoomRuntime:
        return RoomRuntime(
            room_id=room_id,
            max_rounds=self.default_max_rounds,
            base_max_rounds=self.default_max_rounds,
            timers={},
        )

    def _is_room_empty(self, room: RoomRuntime) -> bool:
        return not room.players and not room.disconnected_players

    def _schedule_empty_room_cleanup(self, room: RoomRuntime) -> None:
        if not self._is_room_empty(room):
            return
        if room.emptied_at is None:
            room.emptied_at = now_ms()

        async def delete_if_still_empty(inner_room: RoomRuntime) -> None:
            if self._is_room_empty(inner_room):
                self._delete_room(inner_room, reason="empty")

        self._schedule_timer(room, "emptyRoom", self.empty_room_cleanup_ms, delete_if_still_empty)

    def _delete_room(self, room: RoomRuntime, reason: str) -> None:
        self._clear_timers(room)
        room.disconnected_players.clear()
        if self.rooms.get(room.room_id) is room:
            self.rooms.pop(room.room_id, None)
            self._increment_stat("roomsDeleted")
            self._log_ws_event("room_deleted", roomId=room.room_id, reason=reason)

    async def sweep_idle_rooms(self) -> int:
        deleted = 0
        threshold = now_ms() - self.empty_room_cleanup_ms
        for room in list(self.rooms.values()):
            if not self._is_room_empty(room):
                continue
            async with room.lock:
                if not self._is_room_empty(room):
                    continue
                if room.emptied_at is not None and room.emptied_at > threshold:
                    continue
                self._delete_room(room, reason="sweep")
                deleted += 1
        return deleted

    async def _sweep_idle_rooms_loop(self) -> None:
        while True:
            await asyncio.sleep(self.idle_room_sweep_interval_sec)
            try:
                deleted = await self.sweep_idle_rooms()
            except Exception:
                logger.exception("Idle room sweep failed")
                continue
            if deleted:
                logger.info("Idle room sweep removed %d room(s)", deleted)

    # ---- timers ----

    def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        # A continuation must never cancel itself mid-flight.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _cancel_timer(self, room: RoomRuntime, key: str) -> None:
        self._cancel_task(room.timers.get(key))
        room.timers[key] = None

    def _clear_timers(self, room: RoomRuntime) -> None:
        for key in list(room.timers):
            self._cancel_timer(room, key)
        for snapshot in room.disconnected_players.values():
            self._cancel_task(snapshot.expiry_task)
            snapshot.expiry_task = None

    def _create_room_task(
        self,
        room: RoomRuntime,
        name: str,
        delay_ms: int,
        callback: RoomCallback,
    ) -> asyncio.Task[None]:
        delay_s = max(0.0, (delay_ms or 0) / 1000)

        async def runner() -> None:
            try:
                await asyncio.sleep(delay_s)
            except asyncio.CancelledError:
                return
            async with room.lock:
                if self.rooms.get(room.room_id) is not room:
                    return
                try:
                    await callback(room)
                except Exception:
                    logger.exception("Timer %s failed for room %s", name, room.room_id)

        return asyncio.create_task(runner(), name=f"{room.room_id}:{name}")

    def _schedule_timer(
        self,
        room: RoomRuntime,
        key: str,
        delay_ms: int,
        callback: RoomCallback,
    ) -> asyncio.Task[None]:
        self._cancel_timer(room, key)
        task = self._create_room_task(room, key, delay_ms, callback)
        room.timers[key] = task
        return task

    # ---- broadcast gateway ----

    async def _send_safe(
        self,
        websocket: Connection,
        data: dict[str, Any],
        room_id: str | None = None,
        peer_id: str | None = None,
    ) -> None:
        try:
            await websocket.send_json(data)
        except Exception as exc:
            # Connection may already be closed.
            self._increment_stat("sendFailures")
            logger.debug(
                "[SEND_FAIL] room=%s peer=%s type=%s reason=%s",
                room_id or "-",
                peer_id or "-",
                data.get("type"),
                repr(exc),
            )

    async def _close_safe(self, websocket: Connection, code: int) -> None:
        try:
            await websocket.close(code=code)
        except Exception as exc:
            logger.debug("[CLOSE_FAIL] code=%s reason=%s", code, repr(exc))

    async def _send_to_player(self, room: RoomRuntime, player: PlayerConnection, data: dict[str, Any]) -> None:
        await self._send_safe(player.websocket, data, room_id=room.room_id, peer_id=player.peer_id)

    async def _broadcast(self, room: RoomRuntime, data: dict[str, Any]) -> None:
        for player in list(room.players.values()):
            await self._send_to_player(room, player, data)

    async def _broadcast_state(self, room: RoomRuntime) -> None:
        self._mark_state_changed(room)
        for player in list(room.players.values()):
            await self._send_to_player(room, player, build_state_message(room, player))

    async def _send_roles(self, room: RoomRuntime) -> None:
        for player in list(room.players.values()):
            role_payload = build_role_payload(room, player)
            if role_payload is not None:
                await self._send_to_player(room, player, {"type": "your-role", **role_payload})


runtime = ImpostorRuntime(
    WordSource.from_settings(settings.words_file),
    default_max_rounds=settings.default_max_rounds,
)
