"""Transaction lookups with input provenance, fee and confirmation data."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .fees import coins_to_sats
from .rpc_client import RPC_INVALID_ADDRESS_OR_KEY, RPCError

logger = logging.getLogger(__name__)


class TransactionLookupError(RuntimeError):
    """Raised when an input's source transaction cannot be fetched."""


def _first_address(script_pub_key: Dict[str, Any]) -> str | None:
    # Core >= 22 reports a single "address"; older nodes an "addresses" list.
    address = script_pub_key.get("address")
    if address:
        return address
    addresses = script_pub_key.get("addresses") or []
    return addresses[0] if addresses else None


class TransactionEnricher:
    """Resolve each input's source output to derive fee and confirmation status.

    Requires a node with ``txindex`` (or inputs whose source transactions are
    still in the mempool or wallet) so arbitrary transactions can be fetched.
    """

    def __init__(self, rpc: Any) -> None:
        self.rpc = rpc

    def get_raw_transaction(self, txid: str) -> Optional[Dict[str, Any]]:
        """Return the verbose transaction, or ``None`` if the node does not know it."""

        try:
            return self.rpc.getrawtransaction(txid, verbose=True)
        except RPCError as exc:
            if exc.code == RPC_INVALID_ADDRESS_OR_KEY:
                logger.debug("Transaction %s not found", txid)
                return None
            raise

    def get_transaction(self, txid: str, detail: bool = False) -> Optional[Dict[str, Any]]:
        """Fetch ``txid``; with ``detail`` also resolve inputs one level deep.

        Each ``vin`` entry gains ``value``, ``address`` and ``confirmations``
        copied from the output it spends. The transaction gains
        ``unconfirmed_inputs`` and ``fee`` (satoshis, inputs minus outputs).
        Coinbase inputs have no source; ``fee`` is ``None`` for coinbase transactions.
        """

        tx = self.get_raw_transaction(txid)
        if tx is None or not detail:
            return tx

        for tx_input in tx.get("vin", []):
            if "coinbase" in tx_input:
                continue
            prev_tx = self.get_transaction(tx_input["txid"], detail=False)
            if prev_tx is None:
                raise TransactionLookupError(
                    f"Source transaction {tx_input['txid']} for input of {txid} not found"
                )
            utxo = prev_tx["vout"][tx_input["vout"]]
            tx_input["value"] = utxo["value"]
            tx_input["address"] = _first_address(utxo.get("scriptPubKey", {}))
            tx_input["confirmations"] = prev_tx.get("confirmations", 0)

        resolved = [tx_input for tx_input in tx.get("vin", []) if "value" in tx_input]
        tx["unconfirmed_inputs"] = any(tx_input["confirmations"] < 1 for tx_input in resolved)
        total_input_value = sum(coins_to_sats(tx_input["value"]) for tx_input in resolved)
        total_output_value = sum(coins_to_sats(output["value"]) for output in tx.get("vout", []))
        # coinbase transactions create value, so they have no fee
        coinbase = len(resolved) != len(tx.get("vin", []))
        tx["fee"] = None if coinbase else total_input_value - total_output_value
        return tx

    def get_confirmations(self, txid: str) -> Optional[int]:
        """Return ``None`` for unknown, ``0`` for mempool, else the node's count."""

        tx = self.get_transaction(txid)
        if tx is None:
            return None
        if tx.get("blockhash") is None:
            return 0
        return tx.get("confirmations", 0)
