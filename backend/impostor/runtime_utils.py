from __future__ import annotations

import random
import time
import uuid
from typing import TypeVar

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


def random_id() -> str:
    return str(uuid.uuid4())


def normalize_player_name(name: str | None) -> str:
    return " ".join(str(name or "").split()).casefold()


def double_shuffle(items: list[T], rng: random.Random) -> list[T]:
    copy = list(items)
    rng.shuffle(copy)
    rng.shuffle(copy)
    return copy
