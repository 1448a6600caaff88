"""Single-call node queries converted to batchpay's units."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .fees import coins_to_sats


@dataclass(frozen=True)
class ChainTip:
    height: int
    hash: str


def get_balance(rpc_client: Any) -> int:
    """Return the wallet balance in satoshis."""

    balance_info = rpc_client.getwalletinfo()
    return coins_to_sats(balance_info["balance"])


def get_best_block_hash(rpc_client: Any) -> str:
    return rpc_client.getbestblockhash()


def get_tip(rpc_client: Any) -> ChainTip:
    info = rpc_client.getblockchaininfo()
    return ChainTip(height=int(info["blocks"]), hash=info["bestblockhash"])


def get_block(rpc_client: Any, block_hash: str) -> Dict[str, Any]:
    return rpc_client.getblock(block_hash)


def validate_address(rpc_client: Any, address: str) -> bool:
    return bool(rpc_client.validateaddress(address).get("isvalid"))
