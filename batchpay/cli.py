"""Command-line interface for batchpay.

Each subcommand builds a :class:`NodeRPCClient` from ``~/.batchpay.yaml`` and
the ``BATCHPAY_*`` environment, performs one operation and prints compact JSON
on stdout. Progress and diagnostics go to the log.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from .config import ConfigurationError, load_payout_config, load_rpc_config, set_default_config_path
from .events import FAILURE, SUCCESS, BatchResult, EventEmitter
from .fees import DEFAULT_CONF_TARGET, FeeEstimateError, calculate_fee_sats, estimate_fee_rate
from .node import get_balance, get_tip, validate_address
from .payouts import PayoutBatcher, PayoutRequest
from .rpc_client import NodeRPCClient, RPCFailure, format_rpc_hint
from .transactions import TransactionEnricher, TransactionLookupError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

COMPACT_JSON_SEPARATORS = (",", ":")


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _print_json(data: Any) -> None:
    print(json.dumps(data, separators=COMPACT_JSON_SEPARATORS))


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Batched payouts over node RPC")
    parser.add_argument("--config", default=None, help="Path to a batchpay YAML config file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    pay_parser = subparsers.add_parser(
        "pay-many", help="pay a JSON list of {address, amount} requests in batches"
    )
    pay_parser.add_argument(
        "payouts_file", help="JSON file holding a list of objects with address and amount (sats)"
    )
    pay_parser.add_argument(
        "--max-batch-value", type=_positive_int, default=None, help="Stop growing a batch at this many sats"
    )
    pay_parser.add_argument(
        "--max-outputs", type=_positive_int, default=None, help="Maximum payouts per transaction"
    )
    pay_parser.add_argument(
        "--unlock-seconds", type=_positive_int, default=None, help="Wallet unlock window"
    )

    send_parser = subparsers.add_parser("send", help="unlock the wallet and pay one address")
    send_parser.add_argument("--address", required=True, help="Destination address")
    send_parser.add_argument("--amount", required=True, type=_positive_int, help="Amount in sats")
    send_parser.add_argument(
        "--unlock-seconds", type=_positive_int, default=None, help="Wallet unlock window"
    )

    tx_parser = subparsers.add_parser("get-tx", help="fetch a transaction")
    tx_parser.add_argument("txid")
    tx_parser.add_argument(
        "--detail", action="store_true", help="Resolve inputs and compute the fee"
    )

    conf_parser = subparsers.add_parser("confirmations", help="confirmation count for a txid")
    conf_parser.add_argument("txid")

    fee_parser = subparsers.add_parser("estimate-fee", help="smart fee estimate in sat/B")
    fee_parser.add_argument(
        "--blocks", type=_positive_int, default=DEFAULT_CONF_TARGET, help="Confirmation target"
    )
    fee_parser.add_argument(
        "--size", type=_positive_int, default=None, help="Also report the fee for a tx of this many bytes"
    )

    subparsers.add_parser("balance", help="wallet balance in sats")
    subparsers.add_parser("tip", help="best block height and hash")

    validate_parser = subparsers.add_parser("validate-address", help="check an address with the node")
    validate_parser.add_argument("address")
    return parser


def _load_payout_requests(path: str) -> list[PayoutRequest]:
    try:
        raw = json.loads(Path(path).read_text())
    except OSError as exc:
        raise CLIError(f"cannot read payouts file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise CLIError(f"payouts file {path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, list):
        raise CLIError("payouts file must contain a JSON list")

    requests: list[PayoutRequest] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or "address" not in item or "amount" not in item:
            raise CLIError(f"payout #{index} must be an object with address and amount")
        try:
            requests.append(PayoutRequest(address=item["address"], amount=item["amount"]))
        except (TypeError, ValueError) as exc:
            raise CLIError(f"payout #{index}: {exc}") from exc
    return requests


def _log_batch(event: str) -> Any:
    def handler(result: BatchResult) -> None:
        if result.error is not None:
            hint = format_rpc_hint(result.error) if isinstance(result.error, RPCFailure) else None
            logger.warning("Batch %s: %s%s", event, result.error, f" ({hint})" if hint else "")
        else:
            logger.info("Batch %s: %d outputs in %s", event, len(result.outputs), result.txid)

    return handler


def cmd_pay_many(args: argparse.Namespace, rpc: NodeRPCClient) -> None:
    requests = _load_payout_requests(args.payouts_file)
    events = EventEmitter()
    events.on(SUCCESS, _log_batch(SUCCESS))
    events.on(FAILURE, _log_batch(FAILURE))
    batcher = PayoutBatcher(rpc, events=events, config=load_payout_config())
    results = batcher.pay_many(
        requests,
        unlock_seconds=args.unlock_seconds,
        max_batch_value=args.max_batch_value,
        max_outputs=args.max_outputs,
    )
    _print_json([request.to_dict() for request in results])


def cmd_send(args: argparse.Namespace, rpc: NodeRPCClient) -> None:
    batcher = PayoutBatcher(rpc, config=load_payout_config())
    txid = batcher.unlock_and_send_to_address(
        args.address, args.amount, unlock_seconds=args.unlock_seconds
    )
    _print_json({"txid": txid})


def cmd_get_tx(args: argparse.Namespace, rpc: NodeRPCClient) -> None:
    tx = TransactionEnricher(rpc).get_transaction(args.txid, detail=args.detail)
    if tx is None:
        raise CLIError(f"transaction {args.txid} not found")
    _print_json(tx)


def cmd_confirmations(args: argparse.Namespace, rpc: NodeRPCClient) -> None:
    _print_json({"txid": args.txid, "confirmations": TransactionEnricher(rpc).get_confirmations(args.txid)})


def cmd_estimate_fee(args: argparse.Namespace, rpc: NodeRPCClient) -> None:
    rate = estimate_fee_rate(rpc, args.blocks)
    result: dict[str, Any] = {"blocks": args.blocks, "sat_per_byte": rate}
    if args.size:
        result["fee_sats"] = calculate_fee_sats(rate, args.size)
    _print_json(result)


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        set_default_config_path(args.config)
        rpc = NodeRPCClient(load_rpc_config())
        if args.command == "pay-many":
            cmd_pay_many(args, rpc)
        elif args.command == "send":
            cmd_send(args, rpc)
        elif args.command == "get-tx":
            cmd_get_tx(args, rpc)
        elif args.command == "confirmations":
            cmd_confirmations(args, rpc)
        elif args.command == "estimate-fee":
            cmd_estimate_fee(args, rpc)
        elif args.command == "balance":
            _print_json({"balance": get_balance(rpc)})
        elif args.command == "tip":
            tip = get_tip(rpc)
            _print_json({"height": tip.height, "hash": tip.hash})
        elif args.command == "validate-address":
            _print_json({"address": args.address, "isvalid": validate_address(rpc, args.address)})
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except RPCFailure as exc:
        hint = format_rpc_hint(exc)
        parser.exit(1, f"error: {exc}\n" + (f"Hint: {hint}\n" if hint else ""))
    except (CLIError, ConfigurationError, FeeEstimateError, TransactionLookupError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
