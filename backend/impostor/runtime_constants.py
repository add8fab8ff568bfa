from __future__ import annotations

from .config import settings
from .runtime_types import Phase

MAX_PLAYERS = settings.max_players
MIN_PLAYERS_TO_START = settings.min_players_to_start
MAX_DISCONNECTED_PLAYERS = settings.max_disconnected_players
DISCONNECT_GRACE_MS = settings.disconnect_grace_ms
HOST_RECONNECT_WAIT_MS = settings.host_reconnect_wait_ms
EMPTY_ROOM_CLEANUP_MS = settings.empty_room_cleanup_ms
IDLE_ROOM_SWEEP_INTERVAL_SEC = settings.idle_room_sweep_interval_sec
DEFAULT_MAX_ROUNDS = settings.default_max_rounds
DEFAULT_NUM_IMPOSTORS = 1

PLAYER_NAME_MIN_LENGTH = 2
PLAYER_NAME_MAX_LENGTH = 20
ROOM_NAME_MIN_LENGTH = 3
ROOM_NAME_MAX_LENGTH = 20
MIN_ROUNDS = 1
MAX_ROUNDS = 10
MIN_IMPOSTORS = 1
MAX_IMPOSTORS = 5

JOIN_TIMEOUT_SEC = 8
CLOSE_CODE_POLICY = 1008
CLOSE_CODE_REPLACED = 4002
CLOSE_CODE_KICKED = 4003

ACTIVE_PHASES: frozenset[Phase] = frozenset({"playing", "extra-round-vote", "voting", "results"})
