"""Notification channel for payout progress.

Observers (audit logs, dashboards) subscribe to named events on an
:class:`EventEmitter` that is handed to the wallet session and the batcher.
Delivery is synchronous and in emission order; nothing is persisted or
replayed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

UNLOCKED = "unlocked"
LOCKED = "locked"
SUCCESS = "success"
FAILURE = "failure"
DONE = "done"

EVENTS = (UNLOCKED, LOCKED, SUCCESS, FAILURE, DONE)

Handler = Callable[..., None]


@dataclass
class BatchResult:
    """Payload for ``success`` and ``failure`` events.

    ``outputs`` maps address to satoshis for the whole batch. Exactly one of
    ``txid`` and ``error`` is set.
    """

    outputs: Dict[str, int]
    txid: str | None = None
    error: Exception | None = None


class EventEmitter:
    """Minimal synchronous observer registry."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> Handler:
        if event not in EVENTS:
            raise ValueError(f"Unknown event {event!r}; expected one of {', '.join(EVENTS)}")
        self._handlers[event].append(handler)
        return handler

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args)
            except Exception:  # observers must not change payout outcomes
                logger.exception("Handler for %s event failed", event)
