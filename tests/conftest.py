import json

import httpx
import pytest
from bitcoin.core import (
    COutPoint,
    CScript,
    CScriptWitness,
    CTransaction,
    CTxIn,
    CTxInWitness,
    CTxOut,
    CTxWitness,
)

from zkbtc.committee.ceremony import generate_committee
from zkbtc.json_rpc import RpcContext


def make_tx(n_in=1, n_out=2, witness=False, locktime=0):
    vin = [CTxIn(COutPoint(bytes([i + 1]) * 32, i), CScript(), 0xfffffffd) for i in range(n_in)]
    vout = [
        CTxOut(10_000 * (i + 1), CScript(b"\x51\x20" + bytes([i]) * 32))
        for i in range(n_out)
    ]
    if witness:
        wit = CTxWitness([CTxInWitness(CScriptWitness([bytes([7]) * 64])) for _ in vin])
    else:
        wit = CTxWitness()
    return CTransaction(vin, vout, locktime, 2, wit)


class StubNode:
    """
    Fake bitcoind. `replies` maps an RPC method to (http_status, body);
    a dict body is JSON-encoded. Every request is recorded.
    """

    def __init__(self, replies):
        self.replies = replies
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append((request, payload))
        status, body = self.replies[payload["method"]]
        if not isinstance(body, str):
            body = json.dumps(body)
        return httpx.Response(status, text=body)

    def params(self, method):
        return [p["params"] for _, p in self.requests if p["method"] == method]

    def context(self, **kwargs) -> RpcContext:
        kwargs.setdefault("version", "1.0")
        return RpcContext(transport=httpx.MockTransport(self), **kwargs)


def rpc_result(result):
    return 200, {"result": result, "error": None, "id": "zkbtc"}


def rpc_error(code, message, status=500):
    return status, {"result": None, "error": {"code": code, "message": message}, "id": "zkbtc"}


@pytest.fixture(scope="session")
def committee():
    """A 2-of-3 committee with an even-y group key."""
    return generate_committee(3, 2)
