"""Fee-rate estimation and unit conversion helpers."""

from __future__ import annotations

import logging
import math
from typing import Any

from .config import SATS_PER_COIN
from .rpc_client import PartialResultError

logger = logging.getLogger(__name__)

DEFAULT_CONF_TARGET = 6


class FeeEstimateError(RuntimeError):
    """Raised when the node cannot produce a fee estimate."""


def coins_to_sats(amount: float | int | str) -> int:
    """Convert a node-reported coin amount to integer satoshis.

    Each amount is rounded to the nearest satoshi on its own so that sums of
    converted values are exact.
    """

    return int(round(float(amount) * SATS_PER_COIN))


def coin_per_kvb_to_sat_per_kvb(rate: float | int) -> int:
    """Convert a coin/kvB fee rate to whole sat/kvB."""

    return int(round(float(rate) * SATS_PER_COIN))


def sat_per_byte_to_coin_per_kvb(rate: float | int) -> float:
    """Convert a sat/B fee rate back to coin/kvB."""

    return float(rate) * 1000 / SATS_PER_COIN


def calculate_fee_sats(fee_rate_sat_b: float, size: int) -> int:
    """Return the ceil'd fee in satoshis for a transaction of ``size`` bytes."""

    return int(math.ceil(fee_rate_sat_b * size))


def estimate_fee_rate(rpc_client: Any, target_blocks: int = DEFAULT_CONF_TARGET) -> float:
    """Return the node's smart fee estimate in satoshis per byte.

    The node quotes coin/kvB; the quote is scaled to whole sat/kvB first and
    then divided by 1000, so ``estimate * 1000`` recovers the sat/kvB value.
    Nothing is cached.
    """

    try:
        response = rpc_client.estimatesmartfee(target_blocks) or {}
    except PartialResultError as exc:
        # nodes without fee data answer with an "errors" list instead of a feerate
        raise FeeEstimateError(
            f"estimatesmartfee({target_blocks}) returned no fee rate: {exc.message}"
        ) from exc
    fee_rate = response.get("feerate")
    if fee_rate is None:
        errors = response.get("errors") or ["no feerate returned"]
        raise FeeEstimateError(
            f"estimatesmartfee({target_blocks}) returned no fee rate: {errors[0]}"
        )

    sats_per_kb = coin_per_kvb_to_sat_per_kvb(fee_rate)
    sats_per_byte = sats_per_kb / 1000
    logger.debug(
        "Fee estimate for %d blocks: %s/kvB -> %.3f sat/B", target_blocks, fee_rate, sats_per_byte
    )
    return sats_per_byte
