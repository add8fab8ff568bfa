from __future__ import annotations

from typing import Literal

ErrorKind = Literal["validation", "permission", "phase", "capacity", "not_found", "internal"]


class GameError(Exception):
    """A rejected action. Reported to the requester only; never mutates state."""

    kind: ErrorKind = "internal"
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_payload(self) -> dict[str, str]:
        return {
            "type": "error",
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
        }


class ValidationError(GameError):
    kind: ErrorKind = "validation"
    default_code = "INVALID_INPUT"


class PermissionDenied(GameError):
    kind: ErrorKind = "permission"
    default_code = "HOST_ONLY"


class PhaseError(GameError):
    kind: ErrorKind = "phase"
    default_code = "WRONG_PHASE"


class CapacityError(GameError):
    kind: ErrorKind = "capacity"
    default_code = "CAPACITY"


class NotFoundError(GameError):
    kind: ErrorKind = "not_found"
    default_code = "NOT_FOUND"


ERROR_CLASSES: dict[str, type[GameError]] = {
    "validation": ValidationError,
    "permission": PermissionDenied,
    "phase": PhaseError,
    "capacity": CapacityError,
    "not_found": NotFoundError,
}
