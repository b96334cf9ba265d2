"""
Structured logging setup for the FPC services.

- Rich console output for operators
- Optional JSON file output for log shipping
- Throttling for warnings that repeat on every poll
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from rich.logging import RichHandler

ROOT_LOGGER = "fpc"

# Events that can fire once per poll while a dependency is down.
DEFAULT_THROTTLED_EVENTS = frozenset({
    "balance_poll_failed",
    "primary_balance_read_disabled",
    "quote_rate_limited",
})


class JsonFormatter(logging.Formatter):
    """One compact JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


class ThrottledFilter(logging.Filter):
    """
    Suppress repeats of selected JSON events for `cooldown_sec`.

    Records whose message is not a JSON event payload always pass.
    """

    def __init__(self, cooldown_sec: float = 30.0, throttled_events: Optional[Set[str]] = None):
        super().__init__()
        self._cooldown = cooldown_sec
        self._events = throttled_events if throttled_events is not None else set(DEFAULT_THROTTLED_EVENTS)
        self._last_seen: Dict[str, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            data = json.loads(record.getMessage())
        except (json.JSONDecodeError, TypeError):
            return True
        if not isinstance(data, dict):
            return True
        event = data.get("event", "")
        if event not in self._events:
            return True

        now = time.monotonic()
        last = self._last_seen.get(event)
        if last is not None and now - last < self._cooldown:
            return False
        self._last_seen[event] = now
        return True


def build_logger(
    name: str = ROOT_LOGGER,
    level: int = logging.INFO,
    file_path: Optional[str] = None,
    throttle_warnings: bool = True,
) -> logging.Logger:
    """
    Configure the service logger once; later calls only adjust the level.

    Child loggers (``fpc.topup``, ``fpc.attestation`` ...) propagate here.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        if file_path and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            _add_file_handler(logger, file_path, level)
        return logger

    console = RichHandler(
        rich_tracebacks=False,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
    )
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(name)s %(message)s"))
    if throttle_warnings:
        console.addFilter(ThrottledFilter(cooldown_sec=30.0))
    logger.addHandler(console)

    if file_path:
        _add_file_handler(logger, file_path, level)

    logger.propagate = False
    return logger


def _add_file_handler(logger: logging.Logger, file_path: str, level: int) -> None:
    file_handler = logging.FileHandler(file_path)
    file_handler.setFormatter(JsonFormatter())
    file_handler.setLevel(level)
    logger.addHandler(file_handler)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **data) -> None:
    """
    Log a structured event as a single JSON line.

    Usage:
        log_event(log, "bridge_submitted", amount="1000", leaf_index="7")
    """
    payload = {"event": event, **data}
    logger.log(level, json.dumps(payload, default=str))
