"""Batch many payout requests into as few ``sendmany`` calls as possible.

Requests are consumed front to back. Each batch keeps growing while its value
is below ``max_batch_value`` and it holds fewer than ``max_outputs`` members,
so the request that crosses the value cap is still part of the batch. Every
batch is one node transaction; a failed batch does not stop later ones.

The whole run happens inside a single wallet unlock. Batches are sent one at a
time because they share that unlock window and the wallet's unspent outputs.
Concurrent ``pay_many`` calls against one wallet must be serialized by the
caller.
"""

from __future__ import annotations

import getpass
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Sequence

from .config import DEFAULT_MAX_BATCH_VALUE, DEFAULT_MAX_OUTPUTS, PayoutConfig
from .events import DONE, FAILURE, SUCCESS, BatchResult, EventEmitter
from .wallet import WalletSession

logger = logging.getLogger(__name__)

CredentialSource = Callable[[], str]


def prompt_passphrase() -> str:
    return getpass.getpass("> ")


@dataclass
class PayoutRequest:
    """One logical payment; ``amount`` is in satoshis.

    After :meth:`PayoutBatcher.pay_many` either ``txid``/``vout`` or ``error``
    is populated.
    """

    address: str
    amount: int
    txid: str | None = None
    vout: int | None = None
    error: Exception | None = None

    def __post_init__(self) -> None:
        if not self.address:
            raise ValueError("Payout address must not be empty")
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError(f"Payout amount must be integer satoshis, got {self.amount!r}")
        if self.amount < 0:
            raise ValueError(f"Payout amount must be non-negative, got {self.amount}")

    @property
    def succeeded(self) -> bool:
        return self.txid is not None and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "amount": self.amount,
            "txid": self.txid,
            "vout": self.vout,
            "error": str(self.error) if self.error is not None else None,
        }


@dataclass
class PayoutBatch:
    members: List[PayoutRequest] = field(default_factory=list)

    @property
    def outputs(self) -> Dict[str, int]:
        """Address -> satoshis, merging members that share an address."""

        outputs: Dict[str, int] = {}
        for request in self.members:
            outputs[request.address] = outputs.get(request.address, 0) + request.amount
        return outputs

    @property
    def value(self) -> int:
        return sum(request.amount for request in self.members)

    @property
    def has_repeated_address(self) -> bool:
        return len(self.outputs) != len(self.members)


def plan_next_batch(
    queue: Deque[PayoutRequest], max_batch_value: int, max_outputs: int
) -> PayoutBatch:
    """Dequeue the next batch from the front of ``queue``.

    At least one request is taken even when it alone exceeds
    ``max_batch_value`` or when ``max_outputs`` is below one.
    """

    if not queue:
        raise ValueError("Cannot plan a batch from an empty queue")
    cap = max(1, min(max_outputs, len(queue)))
    batch = PayoutBatch()
    value = 0
    while True:
        request = queue.popleft()
        batch.members.append(request)
        value += request.amount
        if value >= max_batch_value or len(batch.members) >= cap:
            return batch


def plan_batches(
    requests: Sequence[PayoutRequest],
    max_batch_value: int = DEFAULT_MAX_BATCH_VALUE,
    max_outputs: int = DEFAULT_MAX_OUTPUTS,
) -> List[PayoutBatch]:
    """Return the partition :meth:`PayoutBatcher.pay_many` would send."""

    queue = deque(requests)
    batches: List[PayoutBatch] = []
    while queue:
        batches.append(plan_next_batch(queue, max_batch_value, max_outputs))
    return batches


class PayoutBatcher:
    """Drive batched ``sendmany`` payouts inside one wallet unlock."""

    def __init__(
        self,
        rpc: Any,
        events: EventEmitter | None = None,
        session: WalletSession | None = None,
        credential_source: CredentialSource = prompt_passphrase,
        config: PayoutConfig | None = None,
    ) -> None:
        self.rpc = rpc
        if session is not None:
            if events is not None and events is not session.events:
                raise ValueError("events must be the emitter the wallet session already uses")
            events = session.events
        self.events = events or EventEmitter()
        self.session = session or WalletSession(rpc, self.events)
        self.credential_source = credential_source
        self.config = config or PayoutConfig()

    def _passphrase(self, passphrase: str | None) -> str:
        if passphrase is None:
            return self.credential_source()
        return passphrase

    def pay_many(
        self,
        requests: Sequence[PayoutRequest],
        passphrase: str | None = None,
        unlock_seconds: int | None = None,
        max_batch_value: int | None = None,
        max_outputs: int | None = None,
    ) -> List[PayoutRequest]:
        """Pay every request and return them annotated, in their original order.

        Limits default to :attr:`config`. The wallet is unlocked once before the
        first batch and locked once after the last, whatever the batches did.
        Within a batch ``vout`` is numbered from 1 in dequeue order; when two
        members share an address they still get distinct numbers although the
        node merges them into one output.
        """

        requests = list(requests)
        if not requests:
            return requests

        if unlock_seconds is None:
            unlock_seconds = self.config.unlock_seconds
        max_batch_value = max_batch_value if max_batch_value is not None else self.config.max_batch_value
        max_outputs = max_outputs if max_outputs is not None else self.config.max_outputs
        max_outputs = min(max_outputs, len(requests))

        secret = self._passphrase(passphrase)
        queue: Deque[PayoutRequest] = deque(requests)

        def send_batches() -> None:
            while queue:
                batch = plan_next_batch(queue, max_batch_value, max_outputs)
                self._send_batch(batch)

        self.session.run_unlocked(secret, unlock_seconds, send_batches)
        self.events.emit(DONE)
        sent = sum(1 for request in requests if request.succeeded)
        logger.info("Payout run finished: %d of %d requests sent", sent, len(requests))
        return requests

    def _send_batch(self, batch: PayoutBatch) -> None:
        outputs = batch.outputs
        if batch.has_repeated_address:
            logger.warning(
                "Batch repeats an address across %d members; vout numbers will not match merged outputs",
                len(batch.members),
            )
        try:
            txid = self.rpc.sendmany(outputs)
        except Exception as exc:
            logger.info(
                "Batch of %d payouts (%d sats) failed: %s", len(batch.members), batch.value, exc
            )
            for request in batch.members:
                request.txid = None
                request.vout = None
                request.error = exc
            self.events.emit(FAILURE, BatchResult(outputs=outputs, error=exc))
            return

        logger.info(
            "Batch of %d payouts (%d sats) sent in %s", len(batch.members), batch.value, txid
        )
        for vout, request in enumerate(batch.members, start=1):
            request.txid = txid
            request.vout = vout
            request.error = None
        self.events.emit(SUCCESS, BatchResult(outputs=outputs, txid=txid))

    def unlock_and_send_to_address(
        self,
        address: str,
        amount: int,
        passphrase: str | None = None,
        unlock_seconds: int | None = None,
    ) -> str:
        """Send a single payment inside its own unlock/lock bracket."""

        secret = self._passphrase(passphrase)
        if unlock_seconds is None:
            unlock_seconds = self.config.unlock_seconds
        with self.session.unlocked(secret, unlock_seconds):
            txid = self.rpc.sendtoaddress(address, amount)
        logger.info("Sent %d sats to %s in %s", amount, address, txid)
        return txid
