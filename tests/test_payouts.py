from __future__ import annotations

import logging
from typing import Any

import pytest

from batchpay.config import RPCConfig
from batchpay.events import DONE, FAILURE, LOCKED, SUCCESS, UNLOCKED, BatchResult, EventEmitter
from batchpay.payouts import PayoutBatcher, PayoutRequest, plan_batches
from batchpay.rpc_client import NodeRPCClient, RPCError, RPCTransportError
from batchpay.wallet import WalletSession

BTC = 100_000_000


class StubRPC:
    """Records wallet calls; ``send_errors`` is consumed one entry per sendmany."""

    def __init__(self, send_errors: list[Exception | None] | None = None) -> None:
        self.send_errors = list(send_errors or [])
        self.calls: list[tuple] = []
        self.sent: list[dict[str, int]] = []

    def walletpassphrase(self, passphrase, timeout):
        self.calls.append(("walletpassphrase", timeout))

    def walletlock(self):
        self.calls.append(("walletlock",))

    def sendmany(self, amounts):
        self.calls.append(("sendmany",))
        self.sent.append(dict(amounts))
        error = self.send_errors.pop(0) if self.send_errors else None
        if error is not None:
            raise error
        return f"txid{len(self.sent)}"

    def sendtoaddress(self, address, amount):
        self.calls.append(("sendtoaddress", address, amount))
        return "single-txid"


class RecordingClient(NodeRPCClient):
    def __init__(self) -> None:
        super().__init__(RPCConfig(user="u", password="p"))
        self.requests: list[tuple[str, Any]] = []

    def call(self, method, params=None):
        self.requests.append((method, params))
        if method == "sendmany":
            return "txid-a"
        return None


def _requests(*pairs: tuple[str, int]) -> list[PayoutRequest]:
    return [PayoutRequest(address=address, amount=amount) for address, amount in pairs]


def _recording_events() -> tuple[EventEmitter, list]:
    events = EventEmitter()
    seen: list = []
    events.on(UNLOCKED, lambda duration: seen.append((UNLOCKED, duration)))
    events.on(LOCKED, lambda: seen.append((LOCKED,)))
    events.on(SUCCESS, lambda result: seen.append((SUCCESS, result)))
    events.on(FAILURE, lambda result: seen.append((FAILURE, result)))
    events.on(DONE, lambda: seen.append((DONE,)))
    return events, seen


def test_single_request_sends_one_coin_denominated_call() -> None:
    rpc = RecordingClient()
    batcher = PayoutBatcher(rpc)

    results = batcher.pay_many(
        _requests(("addrA", 3 * BTC)), passphrase="pw", max_batch_value=10 * BTC, max_outputs=1
    )

    assert rpc.requests == [
        ("walletpassphrase", ["pw", 10800]),
        ("sendmany", ["", {"addrA": 3.0}]),
        ("walletlock", None),
    ]
    assert results[0].txid == "txid-a"
    assert results[0].vout == 1


def test_batch_adds_then_checks_value_cap() -> None:
    rpc = StubRPC()
    batcher = PayoutBatcher(rpc)

    results = batcher.pay_many(
        _requests(("addrA", 2 * BTC), ("addrB", 2 * BTC)),
        passphrase="pw",
        max_batch_value=3 * BTC,
        max_outputs=5,
    )

    assert rpc.sent == [{"addrA": 2 * BTC, "addrB": 2 * BTC}]
    assert [(r.txid, r.vout) for r in results] == [("txid1", 1), ("txid1", 2)]


def test_failed_batch_marks_members_and_later_batches_still_run() -> None:
    insufficient = RPCError(-6, "Insufficient funds")
    rpc = StubRPC(send_errors=[insufficient, None])
    events, seen = _recording_events()
    batcher = PayoutBatcher(rpc, events=events)

    results = batcher.pay_many(
        _requests(("a", BTC), ("b", BTC), ("c", BTC), ("d", BTC)),
        passphrase="pw",
        unlock_seconds=60,
        max_batch_value=100 * BTC,
        max_outputs=2,
    )

    assert [r.error for r in results[:2]] == [insufficient, insufficient]
    assert all(r.error.code == -6 for r in results[:2])
    assert all(r.txid is None and r.vout is None for r in results[:2])
    assert [(r.txid, r.vout, r.error) for r in results[2:]] == [("txid2", 1, None), ("txid2", 2, None)]
    assert rpc.calls[-1] == ("walletlock",)

    assert [entry[0] for entry in seen] == [UNLOCKED, FAILURE, SUCCESS, LOCKED, DONE]
    failure = seen[1][1]
    assert isinstance(failure, BatchResult)
    assert failure.outputs == {"a": BTC, "b": BTC}
    assert failure.error is insufficient
    assert seen[2][1].txid == "txid2"


def test_wallet_locked_even_when_every_batch_fails() -> None:
    rpc = StubRPC(send_errors=[RPCTransportError("down")] * 3)
    batcher = PayoutBatcher(rpc)

    results = batcher.pay_many(
        _requests(("a", 1), ("b", 1), ("c", 1)), passphrase="pw", max_outputs=1
    )

    assert all(isinstance(r.error, RPCTransportError) for r in results)
    assert rpc.calls.count(("walletpassphrase", 10800)) == 1
    assert rpc.calls.count(("walletlock",)) == 1
    assert rpc.calls[-1] == ("walletlock",)
    assert batcher.session.state.value == "locked"


@pytest.mark.parametrize(
    "amounts,max_value,max_outputs",
    [
        ([1, 2, 3, 4, 5, 6, 7], 6, 3),
        ([10, 10, 10], 5, 10),
        ([1] * 11, 1000, 4),
        ([5, 1, 1, 1, 9, 2], 7, 2),
        ([3, 3, 3], 100, 3),
    ],
)
def test_batches_partition_requests_in_order(amounts, max_value, max_outputs) -> None:
    requests = _requests(*[(f"addr{i}", amount) for i, amount in enumerate(amounts)])

    batches = plan_batches(requests, max_batch_value=max_value, max_outputs=max_outputs)

    flattened = [member for batch in batches for member in batch.members]
    assert flattened == requests
    for batch in batches:
        assert 1 <= len(batch.members) <= max_outputs
        # only the last member may push the batch over the value cap
        assert sum(m.amount for m in batch.members[:-1]) < max_value


def test_output_cap_covers_whole_queue_when_it_fits() -> None:
    batches = plan_batches(_requests(("a", 1), ("b", 1), ("c", 1)), max_batch_value=100, max_outputs=3)

    assert [len(batch.members) for batch in batches] == [3]


def test_oversized_request_is_sent_alone() -> None:
    batches = plan_batches(
        _requests(("whale", 50 * BTC), ("a", BTC)), max_batch_value=10 * BTC, max_outputs=5
    )

    assert [[m.address for m in batch.members] for batch in batches] == [["whale"], ["a"]]


def test_zero_output_cap_still_dequeues_one_request() -> None:
    batches = plan_batches(_requests(("a", 1), ("b", 1)), max_batch_value=100, max_outputs=0)

    assert [len(batch.members) for batch in batches] == [1, 1]


def test_repeated_address_is_merged_and_keeps_sequential_vouts(caplog) -> None:
    rpc = StubRPC()
    batcher = PayoutBatcher(rpc)

    with caplog.at_level(logging.WARNING, logger="batchpay.payouts"):
        results = batcher.pay_many(
            _requests(("a", 1), ("b", 2), ("a", 3)), passphrase="pw", max_outputs=3
        )

    assert rpc.sent == [{"a": 4, "b": 2}]
    assert [r.vout for r in results] == [1, 2, 3]
    assert "repeats an address" in caplog.text


def test_credential_source_used_once_when_passphrase_missing() -> None:
    rpc = StubRPC()
    prompts: list[int] = []

    def credential_source() -> str:
        prompts.append(1)
        return "prompted"

    batcher = PayoutBatcher(rpc, credential_source=credential_source)
    batcher.pay_many(_requests(("a", 1), ("b", 1)), max_outputs=1)

    assert prompts == [1]


def test_credential_source_skipped_with_inline_passphrase() -> None:
    def credential_source() -> str:
        raise AssertionError("should not prompt")

    batcher = PayoutBatcher(StubRPC(), credential_source=credential_source)
    batcher.pay_many(_requests(("a", 1)), passphrase="pw")


def test_empty_request_list_does_not_touch_wallet() -> None:
    rpc = StubRPC()

    assert PayoutBatcher(rpc).pay_many([], passphrase="pw") == []
    assert rpc.calls == []


def test_failing_observer_does_not_change_outcome() -> None:
    events = EventEmitter()

    def broken(_result):
        raise RuntimeError("observer down")

    events.on(SUCCESS, broken)
    results = PayoutBatcher(StubRPC(), events=events).pay_many(_requests(("a", 1)), passphrase="pw")

    assert results[0].succeeded


def test_unlock_and_send_to_address() -> None:
    rpc = StubRPC()

    txid = PayoutBatcher(rpc).unlock_and_send_to_address("addr", 5000, passphrase="pw", unlock_seconds=30)

    assert txid == "single-txid"
    assert rpc.calls == [("walletpassphrase", 30), ("sendtoaddress", "addr", 5000), ("walletlock",)]


@pytest.mark.parametrize("amount,error", [(-1, ValueError), (1.5, TypeError), (True, TypeError)])
def test_payout_request_validates_amount(amount, error) -> None:
    with pytest.raises(error):
        PayoutRequest(address="a", amount=amount)


def test_payout_request_to_dict_reports_error_text() -> None:
    request = PayoutRequest(address="a", amount=1, error=RPCError(-6, "Insufficient funds"))

    assert request.to_dict()["error"] == "RPC error -6: Insufficient funds"
    assert not request.succeeded


def test_retried_request_clears_previous_error() -> None:
    request = PayoutRequest(address="a", amount=1)
    batcher = PayoutBatcher(StubRPC(send_errors=[RPCTransportError("down"), None]))

    batcher.pay_many([request], passphrase="pw")
    assert isinstance(request.error, RPCTransportError)

    batcher.pay_many([request], passphrase="pw")

    assert request.succeeded
    assert request.error is None
    assert (request.txid, request.vout) == ("txid2", 1)


def test_failed_resend_clears_previous_txid() -> None:
    request = PayoutRequest(address="a", amount=1)
    batcher = PayoutBatcher(StubRPC(send_errors=[None, RPCError(-6, "Insufficient funds")]))

    batcher.pay_many([request], passphrase="pw")
    batcher.pay_many([request], passphrase="pw")

    assert request.txid is None
    assert request.vout is None
    assert request.error.code == -6


def test_batcher_reuses_session_emitter() -> None:
    rpc = StubRPC()
    events, seen = _recording_events()
    session = WalletSession(rpc, events)

    batcher = PayoutBatcher(rpc, session=session)
    batcher.pay_many(_requests(("a", 1)), passphrase="pw")

    assert batcher.events is events
    assert [entry[0] for entry in seen] == [UNLOCKED, SUCCESS, LOCKED, DONE]


def test_batcher_rejects_second_emitter_for_existing_session() -> None:
    rpc = StubRPC()
    session = WalletSession(rpc, EventEmitter())

    with pytest.raises(ValueError):
        PayoutBatcher(rpc, events=EventEmitter(), session=session)


def test_explicit_zero_unlock_seconds_is_passed_through() -> None:
    rpc = StubRPC()
    batcher = PayoutBatcher(rpc)

    batcher.pay_many(_requests(("a", 1)), passphrase="pw", unlock_seconds=0)
    batcher.unlock_and_send_to_address("a", 1, passphrase="pw", unlock_seconds=0)

    assert [call for call in rpc.calls if call[0] == "walletpassphrase"] == [
        ("walletpassphrase", 0),
        ("walletpassphrase", 0),
    ]
