from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int, *, minimum: int = 0) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default
    return max(minimum, value)


class Settings:
    def __init__(self) -> None:
        self.ws_port = _int_env("WS_PORT", 3001, minimum=1)
        self.log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
        self.max_players = _int_env("MAX_PLAYERS", 20, minimum=3)
        self.min_players_to_start = _int_env("MIN_PLAYERS_TO_START", 3, minimum=3)
        self.max_disconnected_players = _int_env("MAX_DISCONNECTED_PLAYERS", 10, minimum=1)
        self.disconnect_grace_ms = _int_env("DISCONNECT_GRACE_MS", 60_000, minimum=100)
        self.host_reconnect_wait_ms = _int_env("HOST_RECONNECT_WAIT_MS", 3_000, minimum=0)
        self.empty_room_cleanup_ms = _int_env("EMPTY_ROOM_CLEANUP_MS", 5_000, minimum=0)
        self.idle_room_sweep_interval_sec = _int_env("IDLE_ROOM_SWEEP_INTERVAL_SEC", 60, minimum=1)
        self.default_max_rounds = min(10, _int_env("DEFAULT_MAX_ROUNDS", 2, minimum=1))
        self.words_file = os.getenv("WORDS_FILE", "").strip() or None
        self.cors_allow_origins = [
            origin.strip()
            for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
            if origin.strip()
        ] or ["*"]


settings = Settings()
