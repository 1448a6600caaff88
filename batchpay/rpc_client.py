"""JSON-RPC client for Bitcoin Core style nodes.

Every response passes through :func:`classify_response` before it reaches the
rest of the package, so callers only ever see one of three failure shapes:

``RPCTransportError``
    The call could not be completed (connection, authentication, timeout or a
    response that is not a JSON-RPC envelope). Not conclusive; retrying may
    succeed.
``RPCError``
    The node understood the request and returned a structured ``{code,
    message}`` error object. Conclusive.
``PartialResultError``
    The node returned a result that embeds an ``errors`` list. Conclusive, no
    code.

Retry policy is left to callers; nothing in this module retries.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Mapping, Optional

import requests
from requests import RequestException, Response

from .config import SATS_PER_COIN, RPCConfig, load_rpc_config

logger = logging.getLogger(__name__)

RPC_INVALID_ADDRESS_OR_KEY = -5
RPC_WALLET_INSUFFICIENT_FUNDS = -6


class RPCFailure(RuntimeError):
    """Base class for every failed node call."""

    conclusive = False

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class RPCError(RPCFailure):
    """Raised when the node responds with a structured RPC error."""

    conclusive = True

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message, code)

    def __str__(self) -> str:
        return f"RPC error {self.code}: {self.message}"


class PartialResultError(RPCFailure):
    """Raised when a success-shaped result carries an ``errors`` list."""

    conclusive = True


class RPCTransportError(RPCFailure):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_conclusive(error: BaseException | None) -> bool:
    """Return ``True`` when *error* is a definitive rejection by the node."""

    return isinstance(error, RPCFailure) and error.conclusive


def classify_response(payload: Any) -> Any:
    """Return the ``result`` of a decoded JSON-RPC envelope or raise.

    >>> classify_response({"result": "ok", "error": None})
    'ok'
    """

    if not isinstance(payload, dict):
        raise RPCTransportError("RPC server returned a response that is not a JSON-RPC object")
    error = payload.get("error")
    if error:
        if isinstance(error, dict):
            raise RPCError(error.get("code", -1), str(error.get("message", "unknown")))
        raise RPCError(-1, str(error))
    result = payload.get("result")
    if isinstance(result, dict) and result.get("errors"):
        errors = result["errors"]
        first = errors[0] if isinstance(errors, list) else errors
        raise PartialResultError(str(first))
    return result


def format_rpc_hint(error_obj: dict[str, Any] | RPCFailure | None) -> str | None:
    """Return a human-friendly hint for common node JSON-RPC errors."""

    if error_obj is None:
        return None

    code = None
    message = ""
    if isinstance(error_obj, RPCFailure):
        code = error_obj.code
        message = error_obj.message
    elif isinstance(error_obj, dict):
        code = error_obj.get("code")
        message = str(error_obj.get("message", ""))

    if isinstance(error_obj, RPCTransportError):
        return (
            "The node could not be reached. The payout was not confirmed as rejected; it is safe "
            "to retry once the node is reachable."
        )
    if code in {-4, -6} or "insufficient funds" in message.lower():
        return "The wallet could not fund the batch. Fund the wallet or lower the batch value cap."
    if code == -13 or "wallet locked" in message.lower():
        return "The wallet is locked. The unlock window may have expired; rerun with a longer unlock time."
    if code == -14:
        return "The wallet passphrase was rejected."
    if code == -5 and "address" in message.lower():
        return "One of the payout addresses is not valid for this node's network."
    if code == -5:
        return "The node does not know this transaction. Enable txindex to look up arbitrary transactions."
    if code == -26 and "min relay fee not met" in message:
        return "The node rejected the transaction because the fee is below its minrelaytxfee policy."
    return None


def sats_to_coins(amount: int) -> float:
    """Convert an integer satoshi amount to the node's coin unit."""

    return amount / SATS_PER_COIN


class NodeRPCClient:
    """Typed JSON-RPC client for Bitcoin Core compatible nodes.

    The client is intentionally thin: each helper maps directly to an RPC
    method exposed by the node and returns the parsed JSON result. Amounts
    passed to the send helpers are satoshis and are converted to coins here.
    """

    def __init__(self, config: RPCConfig) -> None:
        self.config = config
        self._session = requests.Session()
        self._base_url = config.base_url
        self._wallet = config.wallet

    @classmethod
    def from_env(cls) -> "NodeRPCClient":
        """Instantiate a client using environment variables or config file."""

        return cls(load_rpc_config())

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "1.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        # walletpassphrase params carry the secret
        logger.debug("RPC call %s params=%s", method, "<redacted>" if method == "walletpassphrase" else params)
        try:
            response = self._session.post(
                self._url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                auth=(self.config.user, self.config.password),
                timeout=self.config.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                "RPC connection failed. Ensure your node is reachable, authentication is valid, "
                "and BATCHPAY_RPC_* variables (or ~/.batchpay.yaml) point to the right host and port."
            ) from exc
        return classify_response(self._decode(response))

    def _decode(self, response: Response) -> Any:
        # Core reports RPC errors as HTTP 500/404 with a JSON body; only
        # bodies without an error object are transport failures.
        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok:
            if isinstance(body, dict) and body.get("error"):
                return body
            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            if response.status_code == 401:
                raise RPCTransportError(
                    "Unauthorized (401). Ensure BATCHPAY_RPC_USER (or your .batchpay.yaml) contains valid credentials.",
                    status_code=response.status_code,
                )
            raise RPCTransportError(
                "RPC server returned an HTTP error; check the URL, wallet path, authentication, and BATCHPAY_RPC_* settings.",
                status_code=response.status_code,
            )
        if body is None:
            logger.debug("RPC JSON parse error: %s", response.text)
            raise RPCTransportError("RPC server returned malformed JSON", status_code=response.status_code)
        return body

    @property
    def _url(self) -> str:
        if self._wallet:
            return f"{self._base_url}/wallet/{self._wallet}"
        return self._base_url

    def set_wallet(self, wallet: str | None) -> None:
        """Switch the RPC client to a different loaded wallet."""

        self._wallet = wallet

    # Wallet -------------------------------------------------------------

    def walletpassphrase(self, passphrase: str, timeout: int) -> None:
        return self.call("walletpassphrase", [passphrase, timeout])

    def walletlock(self) -> None:
        return self.call("walletlock")

    def sendmany(self, amounts: Mapping[str, int], options: Dict[str, Any] | None = None) -> str:
        """Pay ``amounts`` (address -> satoshis) in one transaction."""

        params: list[Any] = ["", {address: sats_to_coins(amount) for address, amount in amounts.items()}]
        if options:
            params.append(options)
        return self.call("sendmany", params)

    def sendtoaddress(self, address: str, amount: int) -> str:
        return self.call("sendtoaddress", [address, sats_to_coins(amount)])

    def getwalletinfo(self) -> Dict[str, Any]:
        return self.call("getwalletinfo")

    # Chain --------------------------------------------------------------

    def getblockchaininfo(self) -> Dict[str, Any]:
        return self.call("getblockchaininfo")

    def getbestblockhash(self) -> str:
        return self.call("getbestblockhash")

    def getblock(self, block_hash: str, verbosity: int = 1) -> Dict[str, Any]:
        return self.call("getblock", [block_hash, verbosity])

    def getrawtransaction(self, txid: str, verbose: bool = False) -> Any:
        return self.call("getrawtransaction", [txid, int(verbose)])

    def decoderawtransaction(self, raw_tx: str) -> Dict[str, Any]:
        return self.call("decoderawtransaction", [raw_tx])

    def sendrawtransaction(self, raw_tx: str) -> str:
        return self.call("sendrawtransaction", [raw_tx])

    def estimatesmartfee(self, conf_target: int) -> Dict[str, Any]:
        return self.call("estimatesmartfee", [conf_target])

    def validateaddress(self, address: str) -> Dict[str, Any]:
        return self.call("validateaddress", [address])
