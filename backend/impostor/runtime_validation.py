from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Generic, Mapping, TypeVar

from .runtime_constants import (
    MAX_IMPOSTORS,
    MAX_ROUNDS,
    MIN_IMPOSTORS,
    MIN_ROUNDS,
    PLAYER_NAME_MAX_LENGTH,
    PLAYER_NAME_MIN_LENGTH,
    ROOM_NAME_MAX_LENGTH,
    ROOM_NAME_MIN_LENGTH,
)
from .runtime_errors import ERROR_CLASSES, ErrorKind, GameError

T = TypeVar("T")

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_ROOM_NAME_STRIP_RE = re.compile(r"[^a-z0-9_-]")
_NAME_EXTRA_CHARS = frozenset({" ", "-", "_"})


@dataclass(frozen=True)
class ValidationResult(Generic[T]):
    ok: bool
    value: T | None = None
    kind: ErrorKind | None = None
    code: str | None = None
    message: str | None = None

    def to_error(self) -> GameError:
        error_class = ERROR_CLASSES.get(self.kind or "validation", ERROR_CLASSES["validation"])
        return error_class(self.message or "Invalid input", code=self.code)


def _valid(value: T) -> ValidationResult[T]:
    return ValidationResult(ok=True, value=value)


def _invalid(code: str, message: str, kind: ErrorKind = "validation") -> ValidationResult[Any]:
    return ValidationResult(ok=False, kind=kind, code=code, message=message)


def _parse_int(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str):
        text = raw.strip()
        if _INTEGER_RE.match(text):
            return int(text)
    return None


def validate_player_name(raw: Any) -> ValidationResult[str]:
    if not isinstance(raw, str):
        return _invalid("INVALID_NAME", "Name is required")

    value = re.sub(r"\s+", " ", unicodedata.normalize("NFC", raw)).strip()
    if not value:
        return _invalid("INVALID_NAME", "Name is required")
    if len(value) < PLAYER_NAME_MIN_LENGTH:
        return _invalid("NAME_TOO_SHORT", f"Name must be at least {PLAYER_NAME_MIN_LENGTH} characters")
    if len(value) > PLAYER_NAME_MAX_LENGTH:
        return _invalid("NAME_TOO_LONG", f"Name must be at most {PLAYER_NAME_MAX_LENGTH} characters")
    if any(not (ch.isalpha() or ch.isdecimal() or ch in _NAME_EXTRA_CHARS) for ch in value):
        return _invalid(
            "NAME_INVALID_CHARACTERS",
            "Name may only contain letters, digits, spaces, hyphens and underscores",
        )
    return _valid(value)


def sanitize_room_name(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    value = _ROOM_NAME_STRIP_RE.sub("", raw.strip().lower())
    if len(value) < ROOM_NAME_MIN_LENGTH or len(value) > ROOM_NAME_MAX_LENGTH:
        return None
    return value


def validate_room_name(raw: Any) -> ValidationResult[str]:
    value = sanitize_room_name(raw)
    if value is None:
        return _invalid(
            "INVALID_ROOM_ID",
            f"Room name must have {ROOM_NAME_MIN_LENGTH}-{ROOM_NAME_MAX_LENGTH} "
            "characters from a-z, 0-9, '-' and '_'",
        )
    return _valid(value)


def validate_max_rounds(raw: Any) -> ValidationResult[int]:
    value = _parse_int(raw)
    if value is None:
        return _invalid("INVALID_ROUNDS", "Round count must be a whole number")
    if value < MIN_ROUNDS or value > MAX_ROUNDS:
        return _invalid("INVALID_ROUNDS", f"Round count must be between {MIN_ROUNDS} and {MAX_ROUNDS}")
    return _valid(value)


def validate_num_impostors(raw: Any, total_players: int) -> ValidationResult[int]:
    value = _parse_int(raw)
    if value is None:
        return _invalid("INVALID_IMPOSTORS", "Impostor count must be a whole number")
    if value < MIN_IMPOSTORS or value > MAX_IMPOSTORS:
        return _invalid(
            "INVALID_IMPOSTORS",
            f"Impostor count must be between {MIN_IMPOSTORS} and {MAX_IMPOSTORS}",
        )
    if value >= total_players:
        return _invalid(
            "TOO_MANY_IMPOSTORS",
            "There must be more players than impostors",
            kind="capacity",
        )
    if value > total_players // 2:
        return _invalid(
            "TOO_MANY_IMPOSTORS",
            f"At most {total_players // 2} impostors for {total_players} players",
            kind="capacity",
        )
    return _valid(value)


def validate_player_reference(peer_id: Any, players: Mapping[str, Any]) -> bool:
    return isinstance(peer_id, str) and bool(peer_id) and peer_id in players
