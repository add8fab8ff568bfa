from __future__ import annotations

import logging

from impostor.application import app
from impostor.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

__all__ = ["app"]
