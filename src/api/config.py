"""Environment configuration for the scheduling API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from ..scheduler.grid import MAX_ZOOM, MIN_ZOOM

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).resolve().parent.parent.parent / ".env"


@dataclass(frozen=True)
class ServiceSettings:
    """Defaults the API applies when a request leaves grid settings out."""

    start_hour: int = 7
    end_hour: int = 19
    zoom_level: float = 1.5
    max_window_days: int = 366
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ServiceSettings":
        """Read ``SCHEDULER_*`` settings, keeping defaults for anything unusable."""

        if environ is None:
            load_dotenv(dotenv_path=ENV_PATH)
            environ = os.environ
        defaults = cls()
        start_hour = _read_number(environ, "SCHEDULER_START_HOUR", defaults.start_hour, int, 0, 23)
        end_hour = _read_number(environ, "SCHEDULER_END_HOUR", defaults.end_hour, int, 1, 24)
        if start_hour >= end_hour:
            logger.warning(
                "Ignoring SCHEDULER_START_HOUR=%s and SCHEDULER_END_HOUR=%s, using %s-%s",
                start_hour,
                end_hour,
                defaults.start_hour,
                defaults.end_hour,
            )
            start_hour, end_hour = defaults.start_hour, defaults.end_hour
        return cls(
            start_hour=start_hour,
            end_hour=end_hour,
            zoom_level=_read_number(
                environ, "SCHEDULER_ZOOM_LEVEL", defaults.zoom_level, float, MIN_ZOOM, MAX_ZOOM
            ),
            max_window_days=_read_number(
                environ, "SCHEDULER_MAX_WINDOW_DAYS", defaults.max_window_days, int, 1, None
            ),
            log_level=_read_log_level(environ, defaults.log_level),
        )


def _read_number(environ: Mapping[str, str], key: str, default, cast, minimum=None, maximum=None):
    raw = environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", key, raw, default)
        return default
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        logger.warning("Ignoring out-of-range %s=%r, using %s", key, raw, default)
        return default
    return value


def _read_log_level(environ: Mapping[str, str], default: str) -> str:
    raw = environ.get("SCHEDULER_LOG_LEVEL")
    if not raw:
        return default
    level = raw.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        logger.warning("Ignoring invalid SCHEDULER_LOG_LEVEL=%r, using %s", raw, default)
        return default
    return level
