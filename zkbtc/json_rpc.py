# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - bitcoind JSON-RPC client

Minimal JSON-RPC 1.0 client for the handful of bitcoind calls we need
(https://www.jsonrpc.org/specification_v1).

Generic RPC clients call raise_for_status() and throw away the body when
bitcoind answers with HTTP 500, which is exactly where bitcoind puts the
reason a transaction was refused. Here the transport returns the raw body
whatever the status, and each caller parses it for its own method.

Usage:
    ctx = RpcContext(version="1.0", wallet="mywallet",
                     address="http://127.0.0.1:18331", auth="user:pass")
    hex_tx, tx = await fund_raw_transaction(ctx, StructuredTransaction(tx))
    hex_tx, tx = await sign_transaction(ctx, HexTransaction(hex_tx))
    txid = await send_raw_transaction(ctx, HexTransaction(hex_tx))
"""

import json
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

import httpx
from bitcoin.core import CTransaction

from .constants import (
    BITCOIN_JSON_RPC_VERSION,
    DEFAULT_RPC_ADDRESS,
    EXPLORER_TX_URL,
    JSON_RPC_AUTH,
    JSON_RPC_ENDPOINT,
    JSON_RPC_TEST_WALLET,
    JSON_RPC_TIMEOUT,
)
from .errors import (
    RpcDecodeError,
    RpcError,
    RpcTransportError,
    TransactionDecodeError,
)
from .transaction import TransactionRef, deserialize_hex

log = logging.getLogger(__name__)

# bitcoind echoes the id back; nothing here relies on it
JSON_RPC_ID = "zkbtc"

_TXID_RE = re.compile(r"^[0-9a-fA-F]{64}$")


# =============================================================================
# CONTEXT
# =============================================================================

@dataclass(frozen=True)
class RpcContext:
    """
    Connection settings for one bitcoind node.

    Build it once per process and pass it to every call.

    Fields:
      - version: value of the "jsonrpc" field, omitted from requests if None
      - wallet: wallet name, requests go to <address>/wallet/<wallet>
      - address: node URL, DEFAULT_RPC_ADDRESS if None
      - auth: "user:password" for HTTP Basic auth, no auth if None
      - transport: httpx transport override (tests point it at a stub node)
    """
    version: Optional[str] = None
    wallet: Optional[str] = None
    address: Optional[str] = None
    auth: Optional[str] = field(default=None, repr=False)
    transport: Optional[httpx.AsyncBaseTransport] = field(
        default=None, repr=False, compare=False
    )

    def __post_init__(self):
        log.info(f"- using RPC node at address {self.endpoint}")
        if self.auth is not None:
            log.info("- using given RPC credentials")
        else:
            log.info("- using no RPC credentials")
        if self.wallet is not None:
            log.info(f"- using wallet {self.wallet}")
        else:
            log.info("- using default wallet")

    @property
    def endpoint(self) -> str:
        return self.address or DEFAULT_RPC_ADDRESS

    @property
    def url(self) -> str:
        if self.wallet is not None:
            return f"{self.endpoint}/wallet/{self.wallet}"
        return self.endpoint

    @classmethod
    def for_testing(cls) -> "RpcContext":
        """Context for the shared development node."""
        return cls(
            version=BITCOIN_JSON_RPC_VERSION,
            wallet=JSON_RPC_TEST_WALLET,
            address=JSON_RPC_ENDPOINT,
            auth=JSON_RPC_AUTH,
        )


# =============================================================================
# TRANSPORT
# =============================================================================

def build_request(ctx: RpcContext, method: str, params: Sequence[Any]) -> dict:
    """JSON-RPC 1.0 envelope for one call."""
    request = {}
    if ctx.version is not None:
        request["jsonrpc"] = ctx.version
    request["id"] = JSON_RPC_ID
    request["method"] = method
    request["params"] = list(params)
    return request


async def _post(ctx: RpcContext, method: str, params: Sequence[Any]) -> httpx.Response:
    request = build_request(ctx, method, params)

    auth = None
    if ctx.auth is not None:
        user, _, password = ctx.auth.partition(":")
        auth = (user, password)

    url = ctx.url
    log.info(f"- sending request to {url} with body: {json.dumps(request, indent=2)}")

    try:
        async with httpx.AsyncClient(timeout=JSON_RPC_TIMEOUT,
                                     transport=ctx.transport) as client:
            response = await client.post(url, content=json.dumps(request), auth=auth,
                                         headers={"Content-Type": "application/json"})
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise RpcTransportError(method, str(e) or type(e).__name__) from e

    log.info(f"- status_code: {response.status_code}")
    return response


async def json_rpc_request(ctx: RpcContext, method: str,
                           params: Sequence[Any]) -> str:
    """
    POST one JSON-RPC request and return the response body verbatim.

    The HTTP status is logged, never raised on: an HTTP 500 from bitcoind
    still carries the JSON-RPC error object. Only failures that leave no
    body at all (connection refused, timeout, bad URL) raise.

    Raises:
        RpcTransportError: no response was received
    """
    response = await _post(ctx, method, params)
    return response.text


async def _call(ctx: RpcContext, method: str, params: Sequence[Any]) -> Any:
    response = await _post(ctx, method, params)
    return parse_rpc_response(method, response.text, response.status_code)


def parse_rpc_response(method: str, body: str, status_code: Optional[int] = None) -> Any:
    """
    Extract the result of a JSON-RPC response body.

    `status_code` is only used to report bodies that cannot be decoded,
    such as the empty 401 bitcoind sends for bad credentials.

    Raises:
        RpcError: the body carries an error object
        RpcDecodeError: the body is not a JSON-RPC response
    """
    try:
        response = json.loads(body, parse_float=Decimal)
    except json.JSONDecodeError as e:
        raise RpcDecodeError(method, f"body is not JSON ({e}): {body[:200]!r}",
                             body, status_code) from e

    if not isinstance(response, dict):
        raise RpcDecodeError(method, "body is not a JSON-RPC response object",
                             body, status_code)

    error = response.get("error")
    if error is not None:
        if isinstance(error, dict):
            raise RpcError(method, error.get("code"), str(error.get("message", "")))
        raise RpcError(method, None, str(error))

    if "result" not in response:
        raise RpcDecodeError(method, "response has neither result nor error",
                             body, status_code)
    return response["result"]


# =============================================================================
# RESULTS
# =============================================================================

def _field(method: str, result: Any, key: str, kind):
    if not isinstance(result, dict):
        raise RpcDecodeError(method, f"expected an object, got {type(result).__name__}")
    if key not in result:
        raise RpcDecodeError(method, f"missing field '{key}'")
    value = result[key]
    # bool is an int, reject it where a number is expected
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise RpcDecodeError(method, f"field '{key}' has type {type(value).__name__}")
    return value


@dataclass
class FundRawTransactionResult:
    hex: str
    fee: Decimal
    changepos: int

    @classmethod
    def from_result(cls, result: Any) -> "FundRawTransactionResult":
        method = "fundrawtransaction"
        return cls(
            hex=_field(method, result, "hex", str),
            fee=Decimal(_field(method, result, "fee", (Decimal, int))),
            changepos=_field(method, result, "changepos", int),
        )


@dataclass
class SignRawTransactionResult:
    hex: str
    complete: bool
    errors: List[dict] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: Any) -> "SignRawTransactionResult":
        method = "signrawtransactionwithwallet"
        errors = result.get("errors", []) if isinstance(result, dict) else []
        if not isinstance(errors, list):
            raise RpcDecodeError(method, "field 'errors' is not a list")
        return cls(
            hex=_field(method, result, "hex", str),
            complete=_field(method, result, "complete", bool),
            errors=errors,
        )

    def error_summary(self) -> str:
        if not self.errors:
            return "no error detail"
        return "; ".join(
            str(e.get("error", e)) if isinstance(e, dict) else str(e)
            for e in self.errors
        )


def _decode_tx(method: str, tx_hex: str) -> CTransaction:
    try:
        return deserialize_hex(tx_hex)
    except TransactionDecodeError as e:
        raise RpcDecodeError(method, str(e)) from e


# =============================================================================
# PIPELINE
# =============================================================================

async def fund_raw_transaction(ctx: RpcContext,
                               tx: TransactionRef) -> Tuple[str, CTransaction]:
    """
    Add wallet inputs (and change) so the transaction pays its fee.

    Returns:
        (hex, tx) of the funded transaction
    """
    method = "fundrawtransaction"
    parsed = FundRawTransactionResult.from_result(await _call(ctx, method, [tx.to_hex()]))
    funded = _decode_tx(method, parsed.hex)
    log.info(f"- funded tx (in hex): {parsed.hex}")
    log.debug(f"- funding fee: {parsed.fee} BTC, change output: {parsed.changepos}")
    return parsed.hex, funded


async def sign_transaction(ctx: RpcContext, tx: TransactionRef,
                           allow_incomplete: bool = False) -> Tuple[str, CTransaction]:
    """
    Sign every input the node's wallet holds keys for.

    An incomplete signature is an error unless allow_incomplete is set,
    which is the case when the remaining input is signed by the committee.

    Returns:
        (hex, tx) of the signed transaction
    """
    method = "signrawtransactionwithwallet"
    parsed = SignRawTransactionResult.from_result(await _call(ctx, method, [tx.to_hex()]))
    if not parsed.complete:
        if not allow_incomplete:
            raise RpcError(method, None, f"signing incomplete: {parsed.error_summary()}")
        log.warning(f"- wallet signature incomplete: {parsed.error_summary()}")
    signed = _decode_tx(method, parsed.hex)
    log.info(f"- signed tx (in hex): {parsed.hex}")
    return parsed.hex, signed


async def send_raw_transaction(ctx: RpcContext, tx: TransactionRef) -> str:
    """
    Broadcast a transaction.

    Returns:
        txid reported by the node
    """
    method = "sendrawtransaction"
    txid = await _call(ctx, method, [tx.to_hex()])
    if not isinstance(txid, str) or not _TXID_RE.match(txid):
        raise RpcDecodeError(method, f"expected a txid, got {txid!r}")
    log.info(f"- txid broadcast to the network: {txid}")
    log.info(f"- on an explorer: {EXPLORER_TX_URL}{txid}")
    return txid
