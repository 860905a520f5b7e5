import asyncio
import hashlib

import httpx
import pytest
from fastapi.testclient import TestClient

from zkbtc.committee import node, orchestrator
from zkbtc.committee.ceremony import generate_committee
from zkbtc.errors import CommitteeConfigError, SigningError
from zkbtc.frost import SigningCommitments, SigningPackage, commit, verify_signature

MESSAGE = hashlib.sha256(b"spend from the zkbitcoin pool").digest()


class CommitteeRouter(httpx.AsyncBaseTransport):
    """Routes orchestrator requests to in-process node apps by port."""

    def __init__(self, apps):
        self.transports = {port: httpx.ASGITransport(app=app) for port, app in apps.items()}
        self.calls = []

    async def handle_async_request(self, request):
        self.calls.append((request.url.port, request.url.path))
        return await self.transports[request.url.port].handle_async_request(request)


class CommitteeRouterWithGaps(CommitteeRouter):
    """Members without an app are unreachable."""

    async def handle_async_request(self, request):
        if request.url.port not in self.transports:
            raise httpx.ConnectError("connection refused", request=request)
        return await super().handle_async_request(request)


def node_apps(committee):
    return {
        8890 + ordinal: node.create_app(committee.key_packages[member_id], committee.pubkey_package)
        for ordinal, member_id in enumerate(sorted(committee.key_packages))
    }


@pytest.fixture
def node_client(committee):
    app = node.create_app(committee.key_packages[1], committee.pubkey_package)
    with TestClient(app) as client:
        yield client


# =============================================================================
# COMMITTEE NODE
# =============================================================================

def test_node_health(node_client):
    resp = node_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "identifier": 1}


def test_node_rounds(committee, node_client):
    resp = node_client.post("/round1", json={"session_id": "s1"})
    assert resp.status_code == 200
    commitments = SigningCommitments.from_dict(resp.json()["commitments"])
    assert commitments.identifier == 1

    package = SigningPackage(message=MESSAGE, commitments={1: commitments})
    resp = node_client.post("/round2", json={"session_id": "s1",
                                             "signing_package": package.to_dict()})
    # a single signer is below the threshold of two
    assert resp.status_code == 400

    # nonces were consumed by the refused attempt
    resp = node_client.post("/round2", json={"session_id": "s1",
                                             "signing_package": package.to_dict()})
    assert resp.status_code == 404


def test_node_rejects_reused_session(node_client):
    assert node_client.post("/round1", json={"session_id": "dup"}).status_code == 200
    assert node_client.post("/round1", json={"session_id": "dup"}).status_code == 409


def test_node_unknown_session(node_client):
    resp = node_client.post("/round2", json={"session_id": "never", "signing_package": {}})
    assert resp.status_code == 404


def test_node_malformed_package(node_client):
    node_client.post("/round1", json={"session_id": "bad"})
    resp = node_client.post("/round2", json={"session_id": "bad",
                                             "signing_package": {"message": "zz"}})
    assert resp.status_code == 400


def test_node_refuses_foreign_key_package(committee):
    other = generate_committee(3, 2)
    with pytest.raises(CommitteeConfigError):
        node.create_app(other.key_packages[1], committee.pubkey_package)


@pytest.mark.parametrize("address, expected", [
    (None, ("127.0.0.1", 8890)),
    ("0.0.0.0:9000", ("0.0.0.0", 9000)),
    ("http://127.0.0.1:8891", ("127.0.0.1", 8891)),
    (":7000", ("127.0.0.1", 7000)),
])
def test_split_address(address, expected):
    assert node.split_address(address, "127.0.0.1:8890") == expected


@pytest.mark.parametrize("address", ["localhost", "host:port"])
def test_split_address_rejects(address):
    with pytest.raises(CommitteeConfigError):
        node.split_address(address, "127.0.0.1:8890")


# =============================================================================
# ORCHESTRATOR
# =============================================================================

@pytest.mark.asyncio
async def test_orchestrator_collects_threshold_signature(committee):
    router = CommitteeRouter(node_apps(committee))
    orch = orchestrator.Orchestrator(committee.pubkey_package, committee.config, transport=router)

    signature = await orch.sign(MESSAGE)

    assert verify_signature(committee.pubkey_package.verifying_key, MESSAGE, signature)
    # the first two members by identifier, two rounds each
    assert sorted(router.calls) == [
        (8890, "/round1"), (8890, "/round2"), (8891, "/round1"), (8891, "/round2"),
    ]


@pytest.mark.asyncio
async def test_orchestrator_reports_unreachable_member(committee):
    apps = node_apps(committee)
    del apps[8891]
    orch = orchestrator.Orchestrator(committee.pubkey_package, committee.config,
                                     transport=CommitteeRouterWithGaps(apps))
    with pytest.raises(SigningError, match="member 2"):
        await orch.sign(MESSAGE)


@pytest.mark.asyncio
async def test_orchestrator_reports_refusing_member(committee):
    def refuse(request):
        return httpx.Response(503, text="maintenance")

    orch = orchestrator.Orchestrator(committee.pubkey_package, committee.config,
                                     transport=httpx.MockTransport(refuse))
    with pytest.raises(SigningError, match="503"):
        await orch.sign(MESSAGE)


def test_orchestrator_api(committee):
    router = CommitteeRouter(node_apps(committee))
    orch = orchestrator.Orchestrator(committee.pubkey_package, committee.config, transport=router)
    app = orchestrator.create_app(orch, "testnet")

    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}

        info = client.get("/committee").json()
        assert info["threshold"] == 2
        assert sorted(info["members"]) == ["1", "2", "3"]
        assert info["verifying_key"] == committee.pubkey_package.verifying_key
        assert info["address"].startswith("tb1p")

        resp = client.post("/sign", json={"message": MESSAGE.hex()})
        assert resp.status_code == 200
        signature = bytes.fromhex(resp.json()["signature"])
        assert verify_signature(committee.pubkey_package.verifying_key, MESSAGE, signature)


def test_orchestrator_api_rejects_bad_messages(committee):
    orch = orchestrator.Orchestrator(committee.pubkey_package, committee.config)
    with TestClient(orchestrator.create_app(orch)) as client:
        assert client.post("/sign", json={"message": "not hex"}).status_code == 400
        assert client.post("/sign", json={"message": "00" * 31}).status_code == 400
        assert client.post("/sign", json={}).status_code == 422


def test_orchestrator_api_maps_signing_failures(committee):
    def refuse(request):
        return httpx.Response(500, text="boom")

    orch = orchestrator.Orchestrator(committee.pubkey_package, committee.config,
                                     transport=httpx.MockTransport(refuse))
    with TestClient(orchestrator.create_app(orch)) as client:
        resp = client.post("/sign", json={"message": MESSAGE.hex()})
        assert resp.status_code == 502


# =============================================================================
# PENDING NONCES
# =============================================================================

class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_pending_nonces_expire(committee):
    clock = FakeClock()
    pending = node.PendingNonces(ttl=60, clock=clock)
    nonces, _ = commit(committee.key_packages[1])

    assert pending.put("old", nonces)
    clock.now += 61
    assert pending.put("new", nonces)
    assert len(pending) == 1
    assert pending.pop("old") is None
    assert pending.pop("new") is nonces


def test_pending_nonces_bounded(committee):
    pending = node.PendingNonces(max_sessions=3)
    nonces, _ = commit(committee.key_packages[1])

    for i in range(5):
        assert pending.put(f"s{i}", nonces)
    assert len(pending) == 3
    # the oldest sessions made room
    assert pending.pop("s0") is None
    assert pending.pop("s4") is nonces


def test_node_abort_drops_session(node_client):
    node_client.post("/round1", json={"session_id": "gone"})
    assert node_client.post("/abort", json={"session_id": "gone"}).json() == {"dropped": True}
    assert node_client.post("/abort", json={"session_id": "gone"}).json() == {"dropped": False}
    resp = node_client.post("/round2", json={"session_id": "gone", "signing_package": {}})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_failed_sessions_leave_no_nonces(committee):
    apps = node_apps(committee)
    del apps[8891]
    orch = orchestrator.Orchestrator(committee.pubkey_package, committee.config,
                                     transport=CommitteeRouterWithGaps(apps))
    for _ in range(50):
        with pytest.raises(SigningError):
            await orch.sign(MESSAGE)
    assert len(apps[8890].state.pending) == 0


@pytest.mark.asyncio
async def test_round1_failure_cancels_other_requests(committee):
    started, cancelled = [], []

    async def handler(request):
        if request.url.port == 8891:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path == "/round1":
            started.append(request.url.port)
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(request.url.port)
                raise
        return httpx.Response(200, json={"dropped": False})

    orch = orchestrator.Orchestrator(committee.pubkey_package, committee.config,
                                     transport=httpx.MockTransport(handler))
    with pytest.raises(SigningError, match="member 2"):
        await asyncio.wait_for(orch.sign(MESSAGE), timeout=5)
    assert cancelled == started
