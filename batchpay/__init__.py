"""Batched payouts and transaction enrichment for Bitcoin Core style nodes."""

from .config import ConfigurationError, PayoutConfig, RPCConfig, load_payout_config, load_rpc_config
from .events import BatchResult, EventEmitter
from .fees import FeeEstimateError, estimate_fee_rate
from .payouts import PayoutBatch, PayoutBatcher, PayoutRequest, plan_batches
from .rpc_client import (
    NodeRPCClient,
    PartialResultError,
    RPCError,
    RPCFailure,
    RPCTransportError,
    classify_response,
    is_conclusive,
)
from .transactions import TransactionEnricher, TransactionLookupError
from .wallet import WalletSession, WalletState

__all__ = [
    "BatchResult",
    "ConfigurationError",
    "EventEmitter",
    "FeeEstimateError",
    "NodeRPCClient",
    "PartialResultError",
    "PayoutBatch",
    "PayoutBatcher",
    "PayoutConfig",
    "PayoutRequest",
    "RPCConfig",
    "RPCError",
    "RPCFailure",
    "RPCTransportError",
    "TransactionEnricher",
    "TransactionLookupError",
    "WalletSession",
    "WalletState",
    "classify_response",
    "estimate_fee_rate",
    "is_conclusive",
    "load_payout_config",
    "load_rpc_config",
    "plan_batches",
]
