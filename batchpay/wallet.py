"""Wallet unlock/lock lifecycle for sensitive operations."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterator, TypeVar

from .events import LOCKED, UNLOCKED, EventEmitter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WalletState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class WalletSession:
    """Scoped handle on the node wallet's unlocked state.

    The node keeps a single, time-limited unlock per wallet. ``state`` and
    ``unlock_deadline`` reflect what this process last requested; an expiry on
    the node side is not observed or renewed here.
    """

    def __init__(self, rpc: Any, events: EventEmitter | None = None) -> None:
        self.rpc = rpc
        self.events = events or EventEmitter()
        self.state = WalletState.LOCKED
        self.unlock_deadline: datetime | None = None

    def unlock(self, passphrase: str, duration_seconds: int) -> None:
        self.events.emit(UNLOCKED, duration_seconds)
        self.rpc.walletpassphrase(passphrase, duration_seconds)
        self.state = WalletState.UNLOCKED
        self.unlock_deadline = datetime.now(timezone.utc) + timedelta(seconds=duration_seconds)
        logger.info("Wallet unlocked for %d seconds", duration_seconds)

    def lock(self) -> None:
        self.events.emit(LOCKED)
        self.rpc.walletlock()
        self.state = WalletState.LOCKED
        self.unlock_deadline = None
        logger.info("Wallet locked")

    @contextmanager
    def unlocked(self, passphrase: str, duration_seconds: int) -> Iterator["WalletSession"]:
        """Keep the wallet unlocked for the body of a ``with`` block.

        A failed unlock propagates before the body runs and no lock is
        attempted. Once unlocked, the wallet is locked again on every exit
        path.
        """

        self.unlock(passphrase, duration_seconds)
        try:
            yield self
        finally:
            self.lock()

    def run_unlocked(
        self, passphrase: str, duration_seconds: int, body: Callable[[], T]
    ) -> T:
        with self.unlocked(passphrase, duration_seconds):
            return body()
